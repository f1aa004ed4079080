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

from django.db import IntegrityError, transaction

from clubportal.accounting.gateway import GatewayOrder, PayPalClient, get_gateway
from clubportal.models.accounting import InvoiceStatus, PaymentInvoice, PaymentType
from clubportal.models.event import Event, EventStatus
from clubportal.models.member import Member
from clubportal.models.registration import PaymentStatus, Registration
from clubportal.utils.exceptions import ConflictError, ValidationError

logger = logging.getLogger(__name__)


def get_active_registration(member: Member, event: Event) -> Registration | None:
    return Registration.objects.filter(member=member, event=event, cancellation_date__isnull=True).first()


def register_member(member: Member, event: Event) -> Registration:
    """Record the intent of a member to attend an event.

    Args:
        member: Member registering
        event: Event being registered to

    Returns:
        Registration: the PENDING registration, or the active one if it already exists

    Raises:
        ValidationError: If the event is not open for registrations

    """
    if event.status != EventStatus.PUBLISHED:
        msg = f"Event {event.name} is not open for registrations"
        raise ValidationError(msg)

    registration = get_active_registration(member, event)
    if registration:
        return registration

    try:
        with transaction.atomic():
            registration = Registration.objects.create(
                member=member,
                event=event,
                payment_status=PaymentStatus.PENDING,
                amount_requested=event.price,
            )
    except IntegrityError:
        # a concurrent request created it first
        registration = get_active_registration(member, event)
        if not registration:
            raise

    logger.info("Member %s registered to event %s", member.id, event.id)
    return registration


def start_checkout(
    registration: Registration,
    return_url: str,
    cancel_url: str,
    gateway: PayPalClient | None = None,
) -> GatewayOrder:
    """Open a gateway order for a registration payment.

    A FAILED registration is moved back to PENDING here: this is the only way a
    failed payment can be retried.

    Args:
        registration: Registration to pay
        return_url: Where the payer lands after approval, receives the ``token`` query parameter
        cancel_url: Where the payer lands after cancelling
        gateway: Payment gateway client, defaults to the configured one

    Returns:
        GatewayOrder: the order id and the approval link to redirect the payer to

    Raises:
        ConflictError: If the registration is already paid
        ValidationError: If the registration is cancelled or nothing is due

    """
    gateway = gateway or get_gateway()

    with transaction.atomic():
        registration = Registration.objects.select_for_update().get(pk=registration.pk)

        if registration.payment_status == PaymentStatus.PAID:
            msg = "Registration already paid"
            raise ConflictError(msg)

        if registration.cancellation_date:
            msg = "Registration was cancelled"
            raise ValidationError(msg)

        if registration.amount_requested <= 0:
            msg = "No payment due for this registration"
            raise ValidationError(msg)

        if registration.payment_status == PaymentStatus.FAILED:
            logger.info("Retrying payment of registration %s", registration.id)
            registration.payment_status = PaymentStatus.PENDING
            registration.payment_error = ""

        # noinspection PyUnresolvedReferences
        event = registration.event
        order = gateway.create_order(
            registration.amount_requested,
            return_url,
            cancel_url,
            metadata={"registration": registration.id, "event": event.slug},
            description=event.name,
        )

        registration.gateway_order = order.id
        registration.save()

        PaymentInvoice.objects.create(
            member_id=registration.member_id,
            reg=registration,
            typ=PaymentType.REGISTRATION,
            status=InvoiceStatus.CREATED,
            mc_gross=registration.amount_requested,
            currency=gateway.currency,
            causal=f"Registration {registration.special_cod}",
            cod=order.id,
        )

    return order
