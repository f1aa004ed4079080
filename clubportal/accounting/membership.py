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

"""Recurring membership subscriptions."""

from __future__ import annotations

import json
import logging

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from clubportal.accounting.gateway import GatewayOrder, PayPalClient, get_gateway
from clubportal.mail.member import send_membership_activated
from clubportal.models.accounting import InvoiceStatus, PaymentInvoice, PaymentType
from clubportal.models.member import Member, Membership, MembershipStatus
from clubportal.models.utils import to_amount
from clubportal.utils.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

# Gateway subscription statuses mapped to the local membership status
SUBSCRIPTION_STATUS = {
    "APPROVAL_PENDING": MembershipStatus.PENDING,
    "APPROVED": MembershipStatus.PENDING,
    "ACTIVE": MembershipStatus.ACTIVE,
    "SUSPENDED": MembershipStatus.SUSPENDED,
    "CANCELLED": MembershipStatus.CANCELLED,
    "EXPIRED": MembershipStatus.EXPIRED,
}


def start_membership_checkout(
    member: Member,
    return_url: str,
    cancel_url: str,
    gateway: PayPalClient | None = None,
) -> GatewayOrder:
    """Open a membership subscription for the member.

    Raises:
        ConflictError: If the member already has an active membership

    """
    gateway = gateway or get_gateway()

    with transaction.atomic():
        membership, _created = Membership.objects.select_for_update().get_or_create(member=member)
        if membership.is_active():
            msg = "Membership already active"
            raise ConflictError(msg)

        order = gateway.create_subscription(
            return_url,
            cancel_url,
            metadata={"member": member.id},
            subscriber_email=member.email or None,
            subscriber_name=member.name or None,
        )
        membership.subscription_id = order.id
        membership.status = MembershipStatus.PENDING
        membership.save()

    return order


def _parse_period_end(value):
    if not value:
        return None
    period_end = parse_datetime(value)
    if period_end and timezone.is_aware(period_end):
        period_end = timezone.make_naive(period_end)
    return period_end


def _find_membership(subscription_id: str, data: dict | None = None) -> Membership:
    membership = Membership.objects.select_for_update().filter(subscription_id=subscription_id).first()
    if membership:
        return membership

    # fall back on the member id stored on the subscription when it was opened
    try:
        member_id = json.loads((data or {}).get("custom_id") or "{}").get("member")
    except (ValueError, AttributeError):
        member_id = None
    if member_id and Member.objects.filter(pk=member_id).exists():
        membership, _created = Membership.objects.select_for_update().get_or_create(member_id=member_id)
        membership.subscription_id = subscription_id
        return membership

    msg = f"No membership for subscription {subscription_id}"
    raise NotFoundError(msg)


def activate_membership(subscription_id: str, gateway: PayPalClient | None = None) -> Membership:
    """Confirm a subscription with the gateway and activate the membership.

    Args:
        subscription_id: Gateway subscription id
        gateway: Payment gateway client, defaults to the configured one

    Returns:
        Membership: the updated membership

    Raises:
        NotFoundError: If no membership matches the subscription

    """
    gateway = gateway or get_gateway()
    data = gateway.get_subscription(subscription_id)
    status = SUBSCRIPTION_STATUS.get(data.get("status", ""), MembershipStatus.PENDING)

    with transaction.atomic():
        membership = _find_membership(subscription_id, data)
        was_active = membership.is_active()
        membership.status = status
        membership.current_period_end = _parse_period_end((data.get("billing_info") or {}).get("next_billing_time"))
        membership.save()

        if membership.is_active() and not was_active:
            last_payment = (data.get("billing_info") or {}).get("last_payment") or {}
            PaymentInvoice.objects.update_or_create(
                cod=subscription_id,
                defaults={
                    "member_id": membership.member_id,
                    "typ": PaymentType.MEMBERSHIP,
                    "status": InvoiceStatus.CHECKED,
                    "mc_gross": to_amount((last_payment.get("amount") or {}).get("value")),
                    "causal": f"Membership {membership.member_id}",
                },
            )
            send_membership_activated(membership)

    logger.info("Membership of member %s is now %s", membership.member_id, membership.status)
    return membership


def update_membership_status(subscription_id: str, status: str, data: dict | None = None) -> Membership:
    """Apply a subscription status change notified by the gateway."""
    with transaction.atomic():
        membership = _find_membership(subscription_id, data)
        membership.status = status
        if data:
            period_end = _parse_period_end((data.get("billing_info") or {}).get("next_billing_time"))
            if period_end:
                membership.current_period_end = period_end
        membership.save()

    logger.info("Membership of member %s set to %s", membership.member_id, status)
    return membership
