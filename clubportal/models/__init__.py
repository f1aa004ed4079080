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

from clubportal.models.accounting import InvoiceStatus, PaymentInvoice, PaymentType, ProcessedWebhook
from clubportal.models.event import Event, EventStatus
from clubportal.models.member import Badge, BadgeCategory, Member, Membership, MembershipStatus, UserBadge
from clubportal.models.notification import (
    DeliveryStatus,
    Notification,
    NotificationType,
    ReminderAudience,
    ReminderDelivery,
    ReminderJob,
    ReminderStatus,
)
from clubportal.models.registration import PaymentStatus, Registration

__all__ = [
    "Badge",
    "BadgeCategory",
    "DeliveryStatus",
    "Event",
    "EventStatus",
    "InvoiceStatus",
    "Member",
    "Membership",
    "MembershipStatus",
    "Notification",
    "NotificationType",
    "PaymentInvoice",
    "PaymentStatus",
    "PaymentType",
    "ProcessedWebhook",
    "Registration",
    "ReminderAudience",
    "ReminderDelivery",
    "ReminderJob",
    "ReminderStatus",
    "UserBadge",
]
