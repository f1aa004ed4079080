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

import logging

from django.conf import settings as conf_settings
from django.db import models
from django.db.models.constraints import UniqueConstraint
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from safedelete.models import HARD_DELETE

from clubportal.models.base import BaseModel
from clubportal.models.utils import my_uuid

logger = logging.getLogger(__name__)


class Member(BaseModel):
    user = models.OneToOneField(conf_settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="member")

    email = models.CharField(max_length=200, editable=False)

    search = models.CharField(max_length=200, editable=False)

    language = models.CharField(
        max_length=3,
        choices=conf_settings.LANGUAGES,
        default="en",
        null=True,
        verbose_name=_("Navigation language"),
        help_text=_("Preferred navigation language"),
    )

    name = models.CharField(max_length=100, verbose_name=_("Name"))

    surname = models.CharField(max_length=100, verbose_name=_("Surname"))

    qr_uuid = models.CharField(
        max_length=32,
        default=my_uuid,
        unique=True,
        db_index=True,
        editable=False,
        verbose_name=_("Check-in code"),
        help_text=_("Code printed on the membership card QR"),
    )

    class Meta:
        ordering = ["surname", "name"]

    def __str__(self) -> str:
        if self.name or self.surname:
            return self.display_real()
        return str(self.user)

    def display_real(self) -> str:
        """Return full real name as 'name surname'."""
        return f"{self.name} {self.surname}"

    def first_name(self) -> str:
        """Return the name used to greet the member in notifications."""
        if self.name:
            return self.name
        return str(_("Member"))


class MembershipStatus(models.TextChoices):
    PENDING = "p", _("Pending")
    ACTIVE = "a", _("Active")
    SUSPENDED = "s", _("Suspended")
    CANCELLED = "c", _("Cancelled")
    EXPIRED = "e", _("Expired")


class Membership(BaseModel):
    member = models.OneToOneField(Member, on_delete=models.CASCADE, related_name="membership")

    status = models.CharField(
        max_length=1,
        choices=MembershipStatus.choices,
        default=MembershipStatus.PENDING,
        db_index=True,
    )

    subscription_id = models.CharField(max_length=100, blank=True, null=True, db_index=True)

    current_period_end = models.DateTimeField(blank=True, null=True)

    def __str__(self) -> str:
        return f"{self.member} - {self.get_status_display()}"

    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE


class BadgeCategory(models.TextChoices):
    ATTENDANCE = "a", _("Attendance")
    MILESTONE = "m", _("Milestone")
    SPECIAL = "s", _("Special")


class Badge(BaseModel):
    name = models.CharField(max_length=100, unique=True, verbose_name=_("Name"), help_text=_("Short name"))

    descr = models.CharField(
        max_length=500, blank=True, verbose_name=_("Description"), help_text=_("Extended description")
    )

    icon = models.CharField(max_length=20, blank=True)

    category = models.CharField(max_length=1, choices=BadgeCategory.choices, default=BadgeCategory.ATTENDANCE)

    criteria = models.JSONField(
        blank=True,
        null=True,
        verbose_name=_("Criteria"),
        help_text=_("Automatic award rule, for example {\"type\": \"event_count\", \"count\": 5}"),
    )

    active = models.BooleanField(default=True)

    order = models.IntegerField(default=0)

    class Meta:
        ordering = ["order", "name"]

    def show(self) -> dict:
        """Return a dictionary representation for display purposes.

        Returns:
            Dictionary with id, name, description, icon and category

        """
        # noinspection PyUnresolvedReferences
        return {
            "id": self.id,
            "name": self.name,
            "descr": self.descr,
            "icon": self.icon,
            "category": self.get_category_display(),
        }


class UserBadge(BaseModel):
    member = models.ForeignKey(Member, on_delete=models.CASCADE, related_name="user_badges")

    badge = models.ForeignKey(Badge, on_delete=models.CASCADE, related_name="user_badges")

    # Event whose attendance triggered the award, if any
    event = models.ForeignKey("clubportal.Event", on_delete=models.SET_NULL, null=True, blank=True)

    earned = models.DateTimeField(default=timezone.now)

    # Revoked awards are removed for good, so the pair can be granted again
    _safedelete_policy = HARD_DELETE

    class Meta:
        constraints = [
            UniqueConstraint(
                fields=["member", "badge"],
                name="unique_user_badge",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.member} - {self.badge}"
