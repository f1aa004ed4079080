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


class ClubError(Exception):
    """Base class for the errors raised by the registration lifecycle.

    Attributes:
        message (str): Human readable description, safe to show to members
    """

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ClubError):
    """Exception raised when the input of an operation is malformed or not allowed."""

    pass


class PaymentRequiredError(ValidationError):
    """Exception raised when checking in a registration that has not been paid.

    Attributes:
        registration_id (int): The unpaid registration
    """

    def __init__(self, registration_id: int, message: str = "") -> None:
        super().__init__(message or "Payment required before check-in")
        self.registration_id = registration_id


class NotFoundError(ClubError):
    """Generic exception for content not found scenarios."""

    pass


class RegistrationNotFoundError(NotFoundError):
    pass


class MemberNotFoundError(NotFoundError):
    pass


class ReminderNotFoundError(NotFoundError):
    pass


class ConflictError(ClubError):
    """Exception raised when an operation clashes with the current state of a record."""

    pass


class UpstreamError(ClubError):
    """Exception raised when an external service fails or cannot be reached."""

    pass


class GatewayError(UpstreamError):
    """Exception raised when the payment gateway fails to answer properly.

    Attributes:
        status_code (int, optional): HTTP status returned by the gateway, if any
        debug_id (str, optional): Gateway correlation id for support requests
    """

    def __init__(self, message: str = "", status_code: int | None = None, debug_id: str | None = None) -> None:
        super().__init__(message or "Payment system error, please retry later")
        self.status_code = status_code
        self.debug_id = debug_id
