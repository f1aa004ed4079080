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
from django.db.models import Q
from django.db.models.constraints import UniqueConstraint
from django.utils.translation import gettext_lazy as _

from clubportal.models.base import BaseModel
from clubportal.models.event import Event
from clubportal.models.member import Member
from clubportal.models.utils import my_uuid_short


class PaymentStatus(models.TextChoices):
    PENDING = "p", _("Pending")
    PAID = "y", _("Paid")
    FAILED = "f", _("Failed")


class Registration(BaseModel):
    search = models.CharField(max_length=150, editable=False)

    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name="registrations")

    member = models.ForeignKey(Member, on_delete=models.CASCADE, related_name="registrations")

    payment_status = models.CharField(
        max_length=1,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True,
    )

    # Price at the time of registration, used to open the gateway order
    amount_requested = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))

    # Amount the gateway reported as captured
    amount_paid = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))

    payment_reference = models.CharField(max_length=100, blank=True, null=True, db_index=True)

    gateway_order = models.CharField(max_length=100, blank=True, null=True, db_index=True)

    payment_error = models.CharField(max_length=300, blank=True, default="")

    payment_date = models.DateTimeField(null=True, blank=True)

    checked_in = models.BooleanField(default=False)

    checked_in_at = models.DateTimeField(null=True, blank=True)

    # Null for self-service check-ins
    checked_in_by = models.ForeignKey(
        Member,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="checkins_performed",
    )

    cancellation_date = models.DateTimeField(null=True, blank=True)

    special_cod = models.CharField(
        max_length=12,
        verbose_name=_("Unique code"),
        unique=True,
        default=my_uuid_short,
        db_index=True,
    )

    def __str__(self) -> str:
        return f"{self.event} - {self.member}"

    def is_terminal(self) -> bool:
        """Return True once the current payment attempt has been resolved."""
        return self.payment_status in (PaymentStatus.PAID, PaymentStatus.FAILED)

    def is_check_in_allowed(self) -> bool:
        """Paid registrations, and any registration to a free event, may check in."""
        # noinspection PyUnresolvedReferences
        return self.payment_status == PaymentStatus.PAID or self.event.is_free()

    class Meta:
        indexes = [
            models.Index(fields=["event", "member", "cancellation_date"], name="reg_event_member_cancel"),
            # Index for the reminder audience and stale payment queries
            models.Index(
                fields=["event", "payment_status"],
                condition=Q(deleted__isnull=True, cancellation_date__isnull=True),
                name="reg_event_status_active",
            ),
        ]

        ordering = ["-created"]

        constraints = [
            UniqueConstraint(
                fields=["event", "member"],
                condition=Q(deleted=None, cancellation_date=None),
                name="unique_active_registration",
            ),
        ]
