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
from dataclasses import dataclass, field

from django.db import transaction
from django.utils import timezone

from clubportal.models.event import EventStatus
from clubportal.models.member import Member
from clubportal.models.registration import Registration
from clubportal.utils.badge import award_badges, revoke_badges_if_unqualified
from clubportal.utils.exceptions import (
    MemberNotFoundError,
    PaymentRequiredError,
    RegistrationNotFoundError,
    ValidationError,
)
from clubportal.utils.tasks import after_commit, notify_admins

logger = logging.getLogger(__name__)


@dataclass
class CheckInResult:
    registration: Registration
    already_checked_in: bool = False
    new_badges: list[str] = field(default_factory=list)


def get_member_by_qr(qr_identifier: str) -> Member:
    if not qr_identifier:
        msg = "Missing member code"
        raise ValidationError(msg)
    member = Member.objects.filter(qr_uuid=qr_identifier).select_related("user").first()
    if not member:
        msg = "No member matches this code"
        raise MemberNotFoundError(msg)
    return member


def check_in(qr_identifier: str, event_id, staff: Member | None = None) -> CheckInResult:
    """Record the attendance of a member at an event and award the badges it unlocks.

    Scanning an already checked-in member is a normal occurrence: the
    registration is returned unchanged and badges are not evaluated again.
    A failure while evaluating badges is reported but never undoes the check-in.

    Args:
        qr_identifier: Code printed on the member card
        event_id: Event the member is attending
        staff: Staff member performing the scan, None for self check-in

    Returns:
        CheckInResult: the registration, whether it was already checked in, and the names
        of the badges granted by this check-in

    Raises:
        ValidationError: If an argument is missing or the event was cancelled
        MemberNotFoundError: If no member matches the code
        RegistrationNotFoundError: If the member is not registered to the event
        PaymentRequiredError: If the registration is unpaid and the event is not free

    """
    if not event_id:
        msg = "Missing event"
        raise ValidationError(msg)

    member = get_member_by_qr(qr_identifier)

    with transaction.atomic():
        registration = (
            Registration.objects.select_for_update()
            .filter(member=member, event_id=event_id, cancellation_date__isnull=True)
            .first()
        )
        if not registration:
            msg = f"{member} is not registered to this event"
            raise RegistrationNotFoundError(msg)

        if registration.checked_in:
            logger.info("Registration %s already checked in", registration.id)
            return CheckInResult(registration=registration, already_checked_in=True)

        # noinspection PyUnresolvedReferences
        event = registration.event
        if event.status == EventStatus.CANCELLED:
            msg = "Event was cancelled"
            raise ValidationError(msg)

        if not registration.is_check_in_allowed():
            raise PaymentRequiredError(registration.id)

        registration.checked_in = True
        registration.checked_in_at = timezone.now()
        registration.checked_in_by = staff
        registration.save()

        new_badges = _evaluate_badges(registration)

    logger.info("Registration %s checked in, new badges: %s", registration.id, new_badges)
    return CheckInResult(registration=registration, new_badges=new_badges)


def _evaluate_badges(registration: Registration) -> list[str]:
    # savepoint: a failure rolls back the badges only
    try:
        with transaction.atomic():
            # noinspection PyUnresolvedReferences
            granted = award_badges(registration.member, registration.event)
    except Exception as err:
        logger.exception("Badge evaluation failed for registration %s", registration.id)
        after_commit(notify_admins, "Badge evaluation failed", f"Registration {registration.id}", err)
        return []
    return [badge.name for badge in granted]


def undo_check_in(registration: Registration) -> list[str]:
    """Reverse a check-in and revoke the badges that depended on it.

    Returns:
        list[str]: names of the revoked badges

    """
    with transaction.atomic():
        registration = Registration.objects.select_for_update().get(pk=registration.pk)
        if not registration.checked_in:
            return []
        registration.checked_in = False
        registration.checked_in_at = None
        registration.checked_in_by = None
        registration.save()
        # noinspection PyUnresolvedReferences
        revoked = revoke_badges_if_unqualified(registration.member)

    logger.info("Check-in of registration %s undone, revoked badges: %s", registration.id, revoked)
    return revoked
