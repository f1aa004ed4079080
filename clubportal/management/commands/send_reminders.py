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

import logging
from typing import Any

from django.core.management.base import BaseCommand

from clubportal.mail.remind import process_reminder, process_reminders
from clubportal.utils.exceptions import ReminderNotFoundError
from clubportal.utils.tasks import notify_admins

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Send the event reminders that are due.

    Meant to run from cron every few minutes; running it more often, or twice
    at the same time, never sends a reminder twice to the same member.
    """

    help = "Send due event reminders"

    def add_arguments(self, parser):
        parser.add_argument("--job", type=int, help="Send only this reminder, even if not due yet")

    def handle(self, *args: Any, **options: Any) -> None:
        try:
            if options.get("job"):
                result = process_reminder(options["job"])
            else:
                result = process_reminders()
        except ReminderNotFoundError as e:
            self.stderr.write(e.message)
            return
        except Exception as e:
            notify_admins("Send reminders", "Error sending reminders", e)
            logger.exception("Error in send_reminders command")
            return

        self.stdout.write(f"Processed {result.processed} reminders: {result.sent} sent, {result.skipped} skipped")
        for failure in result.failures:
            retry = "will retry" if failure.will_retry else "gave up"
            self.stdout.write(f"  job {failure.job_id} member {failure.member_id}: {failure.error} ({retry})")
