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

from django.db import models
from django.db.models.constraints import UniqueConstraint
from django.utils.translation import gettext_lazy as _

from clubportal.models.base import BaseModel
from clubportal.models.event import Event
from clubportal.models.member import Member


class NotificationType(models.TextChoices):
    BADGE_EARNED = "badge_earned", _("Badge earned")
    EVENT_REMINDER = "event_reminder", _("Event reminder")
    PAYMENT = "payment", _("Payment")


class Notification(BaseModel):
    """In-app notification shown on the member dashboard."""

    member = models.ForeignKey(Member, on_delete=models.CASCADE, related_name="notifications")

    typ = models.CharField(max_length=30, choices=NotificationType.choices)

    title = models.CharField(max_length=200)

    body = models.TextField(blank=True)

    link = models.CharField(max_length=200, blank=True)

    read = models.BooleanField(default=False)

    class Meta:
        ordering = ["-created"]

    def __str__(self) -> str:
        return f"{self.member} - {self.title}"


class ReminderAudience(models.TextChoices):
    REGISTERED = "r", _("All registered participants")
    UNPAID = "u", _("Participants with a pending payment")
    PAID = "p", _("Participants who completed the payment")


class ReminderStatus(models.TextChoices):
    PENDING = "p", _("Pending")
    PARTIALLY_SENT = "t", _("Partially sent")
    SENT = "s", _("Sent")
    FAILED = "f", _("Failed")
    CANCELLED = "c", _("Cancelled")


class ReminderJob(BaseModel):
    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name="reminders")

    days_before = models.IntegerField(default=1)

    scheduled_for = models.DateTimeField(db_index=True)

    audience = models.CharField(max_length=1, choices=ReminderAudience.choices, default=ReminderAudience.REGISTERED)

    subject = models.CharField(max_length=200, blank=True)

    body = models.TextField(
        blank=True,
        help_text=_("Available placeholders: {{ first_name }}, {{ name }}, {{ event }}"),
    )

    generic = models.BooleanField(default=True, verbose_name=_("Use the standard reminder text"))

    status = models.CharField(
        max_length=1,
        choices=ReminderStatus.choices,
        default=ReminderStatus.PENDING,
        db_index=True,
    )

    sent_at = models.DateTimeField(null=True, blank=True)

    sent_count = models.IntegerField(default=0)

    failed_count = models.IntegerField(default=0)

    class Meta:
        ordering = ["scheduled_for"]

    def __str__(self) -> str:
        return f"{self.event} - {self.days_before}d ({self.get_status_display()})"


class DeliveryStatus(models.TextChoices):
    CLAIMED = "c", _("Claimed")
    SENT = "s", _("Sent")
    FAILED = "f", _("Failed")


class ReminderDelivery(models.Model):
    """Delivery state of one reminder job for one recipient."""

    job = models.ForeignKey(ReminderJob, on_delete=models.CASCADE, related_name="deliveries")

    member = models.ForeignKey(Member, on_delete=models.CASCADE, related_name="reminder_deliveries")

    status = models.CharField(max_length=1, choices=DeliveryStatus.choices, default=DeliveryStatus.CLAIMED)

    attempts = models.IntegerField(default=1)

    claimed_at = models.DateTimeField()

    sent_at = models.DateTimeField(null=True, blank=True)

    error = models.CharField(max_length=500, blank=True, default="")

    class Meta:
        constraints = [
            UniqueConstraint(fields=["job", "member"], name="unique_reminder_delivery"),
        ]

    def __str__(self) -> str:
        return f"{self.job_id} -> {self.member_id} ({self.get_status_display()})"
