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

from django.core.management.base import BaseCommand
from django.utils import timezone

from clubportal.accounting.payment import expire_pending_registrations
from clubportal.models.event import Event, EventStatus
from clubportal.utils.badge import recalculate_badges
from clubportal.utils.tasks import notify_admins


class Command(BaseCommand):
    """Django management command for the daily maintenance.

    Handles periodic tasks including:
    - Expiring registrations whose payment never completed
    - Closing events that are over
    - Awarding badges missed by check-ins
    """

    help = "Automate processes "

    def handle(self, *args, **options):
        try:
            self.go()
        except Exception as e:
            notify_admins("Automate", "", e)

    def go(self) -> None:
        expired = expire_pending_registrations()
        self.stdout.write(f"Expired {expired} pending registrations")

        completed = Event.objects.filter(status=EventStatus.PUBLISHED, end__lt=timezone.now())
        for event in completed:
            event.status = EventStatus.COMPLETED
            event.save()
        self.stdout.write(f"Completed {len(completed)} events")

        summary = recalculate_badges()
        self.stdout.write(f"Awarded {summary['total_awarded']} badges")
