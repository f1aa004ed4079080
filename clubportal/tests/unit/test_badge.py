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

from datetime import datetime
from unittest.mock import patch

from clubportal.models.member import Badge, Membership, MembershipStatus, UserBadge
from clubportal.tests.unit.base import BaseTestCase
from clubportal.utils.badge import (
    DEFAULT_BADGES,
    AttendanceStats,
    award_badges,
    qualifies,
    recalculate_badges,
    revoke_badges_if_unqualified,
    seed_default_badges,
)


class TestBadgeRules(BaseTestCase):
    """Test badge rule evaluation"""

    def test_event_count(self):
        member = self.create_member()
        for _i in range(3):
            self.paid_registration(member=member, checked_in=True)
        stats = AttendanceStats(member)

        assert qualifies(self.create_badge("Three", {"type": "event_count", "count": 3}), stats)
        assert not qualifies(self.create_badge("Four", {"type": "event_count", "count": 4}), stats)

    def test_invalid_count_never_matches(self):
        member = self.create_member()
        self.paid_registration(member=member, checked_in=True)
        stats = AttendanceStats(member)

        assert not qualifies(self.create_badge("Missing", {"type": "event_count"}), stats)
        assert not qualifies(self.create_badge("Text", {"type": "event_count", "count": "1"}), stats)
        assert not qualifies(self.create_badge("Bool", {"type": "event_count", "count": True}), stats)

    def test_unknown_rule_and_manual_badges(self):
        member = self.create_member()
        self.paid_registration(member=member, checked_in=True)
        stats = AttendanceStats(member)

        assert not qualifies(self.create_badge("Mystery", {"type": "moon_phase"}), stats)
        assert not qualifies(self.create_badge("Manual", None), stats)
        assert not qualifies(self.create_badge("Empty", {}), stats)

    def test_special_count(self):
        member = self.create_member()
        self.paid_registration(member=member, event=self.create_event(special=True), checked_in=True)
        self.paid_registration(member=member, checked_in=True)
        stats = AttendanceStats(member)

        assert stats.attended == 2
        assert stats.special_attended == 1
        assert qualifies(self.create_badge("Special one", {"type": "special_count", "count": 1}), stats)
        assert not qualifies(self.create_badge("Special two", {"type": "special_count", "count": 2}), stats)

    def test_unique_months(self):
        member = self.create_member()
        for moment in (datetime(2025, 1, 10, 21), datetime(2025, 1, 24, 21), datetime(2025, 3, 7, 22)):
            self.paid_registration(member=member, checked_in=True, checked_in_at=moment)
        stats = AttendanceStats(member)

        assert stats.months == 2
        assert qualifies(self.create_badge("Seasons", {"type": "unique_months", "count": 2}), stats)

    def test_membership_active(self):
        member = self.create_member()
        badge = self.create_badge("Supporter", {"type": "membership_active"})

        assert not qualifies(badge, AttendanceStats(member))
        Membership.objects.create(member=member, status=MembershipStatus.ACTIVE)
        assert qualifies(badge, AttendanceStats(member))


class TestAwardBadges(BaseTestCase):
    """Test awarding, revoking and recalculating badges"""

    def test_award_only_once(self, mailoutbox, django_capture_on_commit_callbacks):
        member = self.create_member()
        self.paid_registration(member=member, checked_in=True)
        self.create_badge("First", {"type": "first_event"})

        with django_capture_on_commit_callbacks(execute=True):
            assert [badge.name for badge in award_badges(member)] == ["First"]
            assert award_badges(member) == []
        assert UserBadge.objects.filter(member=member).count() == 1
        assert len(mailoutbox) == 1
        assert member.notifications.filter(title__contains="First").exists()

    def test_concurrent_award_is_reported_once(self, mailoutbox, django_capture_on_commit_callbacks):
        member = self.create_member()
        self.paid_registration(member=member, checked_in=True)
        badge = self.create_badge("First", {"type": "first_event"})

        def granted_meanwhile(candidate, stats):
            # another evaluation inserts the row after the held badges were read
            UserBadge.objects.get_or_create(member=member, badge=candidate)
            return True

        with patch("clubportal.utils.badge.qualifies", side_effect=granted_meanwhile):
            with django_capture_on_commit_callbacks(execute=True):
                assert award_badges(member) == []

        assert UserBadge.objects.filter(member=member, badge=badge).count() == 1
        assert mailoutbox == []
        assert not member.notifications.exists()

    def test_inactive_badge_is_skipped(self):
        member = self.create_member()
        self.paid_registration(member=member, checked_in=True)
        self.create_badge("Retired", {"type": "first_event"}, active=False)

        assert award_badges(member) == []

    def test_revoke_when_no_longer_qualified(self):
        member = self.create_member()
        registration = self.paid_registration(member=member, checked_in=True)
        self.create_badge("First", {"type": "first_event"})
        award_badges(member)

        assert revoke_badges_if_unqualified(member) == []

        registration.checked_in = False
        registration.save()
        assert revoke_badges_if_unqualified(member) == ["First"]
        assert not UserBadge.objects.filter(member=member).exists()

    def test_recalculate_badges(self):
        regular = self.create_member()
        newcomer = self.create_member()
        absent = self.create_member()
        for _i in range(3):
            self.paid_registration(member=regular, checked_in=True)
        self.paid_registration(member=newcomer, checked_in=True)
        self.paid_registration(member=absent)
        seed_default_badges()

        summary = recalculate_badges()

        assert summary["total_awarded"] == 3
        assert sorted(summary["members"][regular.id]) == ["First Light", "Night Owl"]
        assert summary["members"][newcomer.id] == ["First Light"]
        assert absent.id not in summary["members"]

        # already up to date
        assert recalculate_badges()["total_awarded"] == 0
        assert recalculate_badges(regular) == {"total_awarded": 0, "members": {}}

    def test_seed_default_badges(self):
        Badge.objects.create(name="First Light", descr="Customized")

        assert seed_default_badges() == len(DEFAULT_BADGES) - 1
        assert seed_default_badges() == 0
        assert Badge.objects.get(name="First Light").descr == "Customized"
        assert Badge.objects.get(name="Regular Observer").criteria == {"type": "event_count", "count": 5}
