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

from django.core.management.base import BaseCommand, CommandError

from clubportal.models.member import Member
from clubportal.utils.badge import recalculate_badges


class Command(BaseCommand):
    help = "Award the badges members qualify for but have not received"

    def add_arguments(self, parser):
        parser.add_argument("--member", type=int, help="Only recalculate this member")

    def handle(self, *args, **options):
        member = None
        if options.get("member"):
            member = Member.objects.filter(pk=options["member"]).first()
            if not member:
                msg = f"Member {options['member']} not found"
                raise CommandError(msg)

        summary = recalculate_badges(member)
        for member_id, badges in summary["members"].items():
            self.stdout.write(f"Member {member_id}: {', '.join(badges)}")
        self.stdout.write(f"Awarded {summary['total_awarded']} badges")
