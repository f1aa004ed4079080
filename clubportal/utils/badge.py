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

"""Rule-based achievement badges awarded from event attendance."""

from __future__ import annotations

import logging
from typing import Any

from django.db import transaction

from clubportal.mail.member import send_badge_earned_notification
from clubportal.models.event import Event
from clubportal.models.member import Badge, BadgeCategory, Member, Membership, MembershipStatus, UserBadge
from clubportal.models.registration import Registration

logger = logging.getLogger(__name__)


class AttendanceStats:
    """Attendance figures of a member, computed lazily and reused across badge rules."""

    def __init__(self, member: Member, special: bool = False) -> None:
        self.member = member
        self.special = special
        self._attended = None
        self._special_attended = None
        self._months = None
        self._membership_active = None

    def _checked_in(self):
        return Registration.objects.filter(member=self.member, checked_in=True)

    @property
    def attended(self) -> int:
        if self._attended is None:
            self._attended = self._checked_in().count()
        return self._attended

    @property
    def special_attended(self) -> int:
        if self._special_attended is None:
            self._special_attended = self._checked_in().filter(event__special=True).count()
        return self._special_attended

    @property
    def months(self) -> int:
        """Number of distinct calendar months with at least one attendance."""
        if self._months is None:
            months = set()
            for checked_in_at, start in self._checked_in().values_list("checked_in_at", "event__start"):
                moment = checked_in_at or start
                if moment:
                    months.add((moment.year, moment.month))
            self._months = len(months)
        return self._months

    @property
    def membership_active(self) -> bool:
        if self._membership_active is None:
            self._membership_active = Membership.objects.filter(
                member=self.member, status=MembershipStatus.ACTIVE
            ).exists()
        return self._membership_active


def _count(criteria: dict) -> int | None:
    count = criteria.get("count")
    if isinstance(count, bool) or not isinstance(count, int):
        return None
    return count


def _at_least(value: int, criteria: dict) -> bool:
    count = _count(criteria)
    return count is not None and value >= count


BADGE_RULES = {
    "first_event": lambda stats, criteria: stats.attended >= 1,
    "event_count": lambda stats, criteria: _at_least(stats.attended, criteria),
    "special_event": lambda stats, criteria: stats.special or stats.special_attended >= 1,
    "special_count": lambda stats, criteria: _at_least(stats.special_attended, criteria),
    "membership_active": lambda stats, criteria: stats.membership_active,
    "unique_months": lambda stats, criteria: _at_least(stats.months, criteria),
}


def is_rule_based(badge: Badge) -> bool:
    return isinstance(badge.criteria, dict) and bool(badge.criteria.get("type"))


def qualifies(badge: Badge, stats: AttendanceStats) -> bool:
    """Return True if the attendance satisfies the badge rule; unknown rules never match."""
    if not is_rule_based(badge):
        return False
    rule = BADGE_RULES.get(badge.criteria["type"])
    if rule is None:
        logger.warning("Badge %s has unknown rule %s", badge.id, badge.criteria["type"])
        return False
    return bool(rule(stats, badge.criteria))


def award_badges(member: Member, event: Event | None = None, special: bool = False) -> list[Badge]:
    """Grant every active badge the member now qualifies for.

    Each grant is a single insert guarded by the (member, badge) unique
    constraint: when two evaluations race, only one of them creates the row and
    reports the badge.

    Args:
        member: Member to evaluate
        event: Event whose attendance triggered the evaluation, stored on the award
        special: Whether the triggering attendance counts as a special event

    Returns:
        list[Badge]: badges newly granted by this call

    """
    stats = AttendanceStats(member, special=special or bool(event and event.special))
    held = set(UserBadge.objects.filter(member=member).values_list("badge_id", flat=True))

    granted = []
    for badge in Badge.objects.filter(active=True, criteria__isnull=False):
        if badge.id in held or not qualifies(badge, stats):
            continue

        with transaction.atomic():
            _user_badge, created = UserBadge.objects.get_or_create(
                member=member,
                badge=badge,
                defaults={"event": event},
            )
        if not created:
            continue

        logger.info("Badge %s awarded to member %s", badge.name, member.id)
        send_badge_earned_notification(member, badge)
        granted.append(badge)

    return granted


def revoke_badges_if_unqualified(member: Member) -> list[str]:
    """Remove rule-based badges the member no longer qualifies for.

    Badges without a rule are assigned by hand and are never revoked.

    Returns:
        list[str]: names of the revoked badges

    """
    stats = AttendanceStats(member)
    revoked = []
    for user_badge in UserBadge.objects.filter(member=member).select_related("badge"):
        badge = user_badge.badge
        if not is_rule_based(badge) or qualifies(badge, stats):
            continue
        user_badge.delete()
        logger.info("Badge %s revoked from member %s", badge.name, member.id)
        revoked.append(badge.name)
    return revoked


def recalculate_badges(member: Member | None = None) -> dict[str, Any]:
    """Award missing badges to one member, or to every member with attendance.

    Returns:
        dict: ``total_awarded`` and ``members``, mapping member ids to granted badge names

    """
    if member is not None:
        members = [member]
    else:
        member_ids = (
            Registration.objects.filter(checked_in=True).values_list("member_id", flat=True).distinct().order_by()
        )
        members = Member.objects.filter(pk__in=list(member_ids))

    awards = {}
    total = 0
    for target in members:
        granted = award_badges(target)
        if granted:
            awards[target.id] = [badge.name for badge in granted]
            total += len(granted)

    return {"total_awarded": total, "members": awards}


DEFAULT_BADGES = [
    {
        "name": "First Light",
        "icon": "\U0001f52d",
        "category": BadgeCategory.ATTENDANCE,
        "criteria": {"type": "first_event"},
        "descr": "Attended your first club event",
    },
    {
        "name": "Night Owl",
        "icon": "\U0001f989",
        "category": BadgeCategory.ATTENDANCE,
        "criteria": {"type": "event_count", "count": 3},
        "descr": "Attended 3 events",
    },
    {
        "name": "Regular Observer",
        "icon": "⭐",
        "category": BadgeCategory.ATTENDANCE,
        "criteria": {"type": "event_count", "count": 5},
        "descr": "Attended 5 events",
    },
    {
        "name": "Dedicated Astronomer",
        "icon": "\U0001f31f",
        "category": BadgeCategory.MILESTONE,
        "criteria": {"type": "event_count", "count": 10},
        "descr": "Attended 10 events",
    },
    {
        "name": "Veteran Stargazer",
        "icon": "\U0001f3c6",
        "category": BadgeCategory.MILESTONE,
        "criteria": {"type": "event_count", "count": 25},
        "descr": "A true club veteran with 25 events",
    },
    {
        "name": "Constellation Collector",
        "icon": "✨",
        "category": BadgeCategory.MILESTONE,
        "criteria": {"type": "event_count", "count": 50},
        "descr": "50 events under your belt",
    },
    {
        "name": "Century Club",
        "icon": "\U0001f4af",
        "category": BadgeCategory.MILESTONE,
        "criteria": {"type": "event_count", "count": 100},
        "descr": "An incredible 100 events attended",
    },
    {
        "name": "Special Guest",
        "icon": "\U0001f319",
        "category": BadgeCategory.SPECIAL,
        "criteria": {"type": "special_event"},
        "descr": "Attended a special event",
    },
]


def seed_default_badges() -> int:
    """Create the default badge set, leaving existing badges untouched.

    Returns:
        int: number of badges created

    """
    created_count = 0
    for order, definition in enumerate(DEFAULT_BADGES, start=1):
        _badge, created = Badge.objects.get_or_create(
            name=definition["name"],
            defaults={**definition, "active": True, "order": order},
        )
        if created:
            created_count += 1
    return created_count
