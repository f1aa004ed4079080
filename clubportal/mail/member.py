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

from django.utils import formats
from django.utils.translation import activate
from django.utils.translation import gettext_lazy as _

from clubportal.mail.base import get_url, hdr, notify_member
from clubportal.models.member import Badge, Member, Membership
from clubportal.models.notification import NotificationType
from clubportal.models.registration import Registration
from clubportal.models.utils import decimal_to_str
from clubportal.utils.tasks import after_commit, my_send_mail


def send_badge_earned_notification(member: Member, badge: Badge) -> None:
    """Notify the member, in-app and by email, of a newly earned badge.

    Args:
        member: Member that received the badge
        badge: Badge just awarded

    """
    activate(member.language or "en")
    info = badge.show()
    title = _("You earned the %(badge)s badge") % {"badge": info["name"]} + "!"
    notify_member(member, NotificationType.BADGE_EARNED, str(title), info["descr"], "badges")

    subject = hdr() + _("Achievement assignment: %(badge)s") % {"badge": info["name"]}
    body = _("You have been awarded an achievement") + "!" + "<br /><br />"
    if info["descr"]:
        body += _("Description") + f": {info['descr']}<br /><br />"
    body += _("Display your achievements in your <a href='%(url)s'>profile</a>") % {"url": get_url("badges")} + "."
    after_commit(my_send_mail, str(subject), str(body), member)


def send_payment_confirmation(registration: Registration) -> None:
    """Confirm a captured registration payment to the member."""
    # noinspection PyUnresolvedReferences
    member = registration.member
    # noinspection PyUnresolvedReferences
    event = registration.event
    activate(member.language or "en")

    amount = decimal_to_str(registration.amount_paid)
    title = _("Payment received for %(event)s") % {"event": event.name}
    notify_member(member, NotificationType.PAYMENT, str(title), "", "my-events")

    subject = hdr(registration) + _("Payment received")
    body = _("We have received your payment of %(amount)s for %(event)s") % {"amount": amount, "event": event.name}
    body += "!<br /><br />" + _("Date") + f": {formats.date_format(event.start, 'DATETIME_FORMAT')}"
    if event.location_name:
        body += "<br />" + _("Location") + f": {event.location_name}"
    body += "<br /><br />" + _("Reference") + f": {registration.payment_reference}"
    after_commit(my_send_mail, str(subject), str(body), member)


def send_payment_failed(registration: Registration) -> None:
    # noinspection PyUnresolvedReferences
    member = registration.member
    activate(member.language or "en")
    # noinspection PyUnresolvedReferences
    title = _("Payment for %(event)s was not completed") % {"event": registration.event.name}
    notify_member(member, NotificationType.PAYMENT, str(title), registration.payment_error, "my-events")


def send_membership_activated(membership: Membership) -> None:
    """Welcome a member whose subscription has just become active."""
    # noinspection PyUnresolvedReferences
    member = membership.member
    activate(member.language or "en")
    subject = hdr() + _("Membership activated")
    body = _("We confirm that your membership is now active. We welcome you to our community") + "!"
    if membership.current_period_end:
        body += "<br /><br />" + _("Next renewal") + f": {formats.date_format(membership.current_period_end)}"
    notify_member(member, NotificationType.PAYMENT, str(_("Membership activated")), "", "billing")
    after_commit(my_send_mail, str(subject), str(body), member)
