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

from decimal import Decimal

from django.db import models
from django.utils.translation import gettext_lazy as _

from clubportal.models.base import BaseModel
from clubportal.models.utils import AlphanumericValidator


class EventStatus(models.TextChoices):
    DRAFT = "d", _("Draft")
    PUBLISHED = "p", _("Published")
    CANCELLED = "x", _("Cancelled")
    COMPLETED = "c", _("Completed")


class Event(BaseModel):
    name = models.CharField(max_length=150, verbose_name=_("Name"))

    slug = models.SlugField(max_length=100, validators=[AlphanumericValidator], db_index=True, unique=True)

    kind = models.CharField(max_length=50, blank=True, verbose_name=_("Type"))

    special = models.BooleanField(
        default=False,
        verbose_name=_("Special event"),
        help_text=_("Attendance counts towards the special event badges"),
    )

    status = models.CharField(max_length=1, choices=EventStatus.choices, default=EventStatus.DRAFT, db_index=True)

    start = models.DateTimeField(verbose_name=_("Start"))

    end = models.DateTimeField(verbose_name=_("End"))

    location_name = models.CharField(max_length=200, blank=True)

    location_address = models.CharField(max_length=300, blank=True)

    price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))

    def is_free(self) -> bool:
        return self.price <= 0

    def is_closed(self) -> bool:
        """Return True if the event no longer accepts reminders or check-ins."""
        return self.status in (EventStatus.CANCELLED, EventStatus.COMPLETED)
