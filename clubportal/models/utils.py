# ClubPortal - https://larpmanager.com
# Copyright (C) 2025 Scanagatta Mauro
#
# This file is part of ClubPortal and is dual-licensed:
#
# 1. Under the terms of the GNU Affero General Public License (AGPL) version 3,
#    as published by the Free Software Foundation. You may use, modify, and
#    distribute this file under those terms.
#
# 2. Under a commercial license, allowing use in closed-source or proprietary
#    environments without the obligations of the AGPL.
#
# If you have obtained this file under the AGPL, and you make it available over
# a network, you must also make the complete source code available under the same license.
#
# For more information or to purchase a commercial license, contact:
# commercial@larpmanager.com
#
# SPDX-License-Identifier: AGPL-3.0-or-later OR Proprietary
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from uuid import uuid4

from django.core.validators import RegexValidator

CENTS = Decimal("0.01")

AlphanumericValidator = RegexValidator(r"^[0-9a-z_-]*$", "Only characters allowed are: 0-9, a-z, _, -.")


def my_uuid_short():
    """Generate short UUID string of 12 characters.

    Returns:
        str: 12-character UUID string

    """
    return my_uuid(12)


def my_uuid(length: int | None = None) -> str:
    """Generate a UUID hex string, optionally truncated to specified length."""
    uuid_hex_string = uuid4().hex
    if length is None:
        return uuid_hex_string
    return uuid_hex_string[:length]


def to_amount(value) -> Decimal:
    """Convert a gateway amount (string, float or Decimal) to a two-decimal Decimal.

    Args:
        value: Amount as reported by the payment gateway

    Returns:
        Decimal rounded to cents, zero when the value is empty or not numeric

    """
    if value is None or value == "":
        return Decimal("0.00")
    try:
        return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return Decimal("0.00")


def decimal_to_str(decimal_value: Decimal) -> str:
    """Format a decimal amount the way gateways expect it, e.g. ``50.00``."""
    return f"{to_amount(decimal_value):.2f}"