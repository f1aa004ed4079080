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

"""Payment capture state machine for event registrations.

A registration starts PENDING when the member declares the intent to attend.
The capture either moves it to PAID, with the amount reported by the gateway,
or to FAILED. Both are terminal for the current attempt: capturing again is a
no-op returning the recorded outcome. A FAILED registration can only go back
to PENDING through an explicit new checkout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings as conf_settings
from django.db import transaction
from django.utils import timezone

from clubportal.accounting.gateway import PayPalClient, get_gateway
from clubportal.mail.member import send_payment_confirmation, send_payment_failed
from clubportal.models.accounting import InvoiceStatus, PaymentInvoice, PaymentType
from clubportal.models.registration import PaymentStatus, Registration
from clubportal.utils.exceptions import GatewayError, RegistrationNotFoundError, ValidationError
from clubportal.utils.tasks import after_commit, notify_admins

logger = logging.getLogger(__name__)

DECLINED_MESSAGE = "Payment declined or cancelled"

EXPIRED_MESSAGE = "Payment not completed in time"


@dataclass
class CaptureOutcome:
    registration: Registration
    status: str
    already_processed: bool = False
    declined: bool = False
    message: str = ""

    @property
    def paid(self) -> bool:
        return self.status == PaymentStatus.PAID


def _lock_registration(registration_id) -> Registration:
    try:
        return Registration.objects.select_for_update().get(pk=registration_id)
    except (Registration.DoesNotExist, ValueError, TypeError) as err:
        msg = f"Registration {registration_id} not found"
        raise RegistrationNotFoundError(msg) from err


def capture_payment(registration_id, token: str, gateway: PayPalClient | None = None) -> CaptureOutcome:
    """Capture the gateway order of a registration and record the outcome.

    The registration row stays locked for the whole operation, so concurrent
    captures of the same registration are serialized and only the first one
    reaches the gateway.

    Args:
        registration_id: Primary key of the registration being paid
        token: Gateway order id returned with the payer redirect
        gateway: Payment gateway client, defaults to the configured one

    Returns:
        CaptureOutcome: final status, and whether it was already recorded or declined

    Raises:
        ValidationError: If an argument is missing or the token belongs to another order
        RegistrationNotFoundError: If no registration matches the id
        GatewayError: If the gateway could not be reached; the registration is left FAILED

    """
    if not registration_id or not token:
        msg = "Registration and payment token are required"
        raise ValidationError(msg)

    gateway = gateway or get_gateway()
    gateway_error = None

    with transaction.atomic():
        registration = _lock_registration(registration_id)

        if registration.is_terminal():
            logger.info("Registration %s already %s, skipping capture", registration.id, registration.payment_status)
            return CaptureOutcome(
                registration=registration,
                status=registration.payment_status,
                already_processed=True,
                declined=registration.payment_status == PaymentStatus.FAILED,
                message=registration.payment_error,
            )

        if registration.gateway_order != token:
            msg = "Payment token does not match the registration order"
            raise ValidationError(msg)

        # the row lock is held across the gateway call, up to PAYPAL_TIMEOUT,
        # so a concurrent capture waits for this outcome instead of capturing twice
        try:
            result = gateway.capture_order(token)
        except GatewayError as err:
            logger.error("Capture of registration %s failed: %s", registration.id, err.message)
            _set_failed(registration, err.message)
            gateway_error = err
        else:
            if result.is_completed():
                _set_paid(registration, result.captured_amount, result.transaction_id, token, result.currency)
            else:
                logger.info("Capture of registration %s declined: %s", registration.id, result.status)
                _set_failed(registration, f"{DECLINED_MESSAGE} ({result.status})")

    if gateway_error:
        # FAILED is committed before the error reaches the caller
        raise gateway_error

    return CaptureOutcome(
        registration=registration,
        status=registration.payment_status,
        declined=registration.payment_status == PaymentStatus.FAILED,
        message=registration.payment_error,
    )


def _set_paid(registration: Registration, amount, transaction_id: str | None, token: str, currency: str = "") -> None:
    """Record a completed capture; must run inside the transaction holding the registration lock."""
    if amount != registration.amount_requested:
        msg = (
            f"Registration {registration.id}: requested {registration.amount_requested}, "
            f"gateway captured {amount} (order {token})"
        )
        logger.warning(msg)
        after_commit(notify_admins, "Payment amount mismatch", msg)

    registration.payment_status = PaymentStatus.PAID
    registration.amount_paid = amount
    registration.payment_reference = transaction_id or token
    registration.payment_error = ""
    registration.payment_date = timezone.now()
    registration.save()

    _close_invoice(registration, token, InvoiceStatus.CHECKED, amount, transaction_id, currency)
    send_payment_confirmation(registration)


def _set_failed(registration: Registration, reason: str) -> None:
    registration.payment_status = PaymentStatus.FAILED
    registration.payment_error = reason[:300]
    registration.save()

    if registration.gateway_order:
        _close_invoice(registration, registration.gateway_order, InvoiceStatus.FAILED)
    send_payment_failed(registration)


def _close_invoice(
    registration: Registration,
    cod: str,
    status: str,
    amount=None,
    transaction_id: str | None = None,
    currency: str = "",
) -> PaymentInvoice:
    defaults = {"status": status}
    if amount is not None:
        defaults["mc_gross"] = amount
    if transaction_id:
        defaults["txn_id"] = transaction_id
    if currency:
        defaults["currency"] = currency

    invoice, created = PaymentInvoice.objects.get_or_create(
        cod=cod,
        defaults={
            **defaults,
            "member_id": registration.member_id,
            "reg": registration,
            "typ": PaymentType.REGISTRATION,
            "causal": f"Registration {registration.special_cod}",
        },
    )
    if not created:
        for field, value in defaults.items():
            setattr(invoice, field, value)
        invoice.save()
    return invoice


def mark_payment_failed(registration_id, reason: str = DECLINED_MESSAGE) -> bool:
    """Move a pending registration to FAILED, e.g. on a denied capture notification.

    Args:
        registration_id: Primary key of the registration
        reason: Failure reason stored on the registration

    Returns:
        bool: True if the registration changed, False if it was already terminal

    """
    with transaction.atomic():
        registration = _lock_registration(registration_id)
        if registration.is_terminal():
            return False
        _set_failed(registration, reason)
    return True


def expire_pending_registrations(cutoff: datetime | None = None) -> int:
    """Fail paid registrations whose payment has been pending for too long.

    The registration is also cancelled, releasing the seat; a late capture of
    its order finds a terminal registration and is ignored.

    Args:
        cutoff: Registrations created before this moment expire, defaults to
            now minus PENDING_TTL_MINUTES

    Returns:
        int: Number of registrations expired

    """
    if cutoff is None:
        cutoff = timezone.now() - timedelta(minutes=conf_settings.PENDING_TTL_MINUTES)

    candidates = Registration.objects.filter(
        payment_status=PaymentStatus.PENDING,
        cancellation_date__isnull=True,
        event__price__gt=0,
        created__lt=cutoff,
    ).values_list("id", flat=True)

    expired = 0
    for registration_id in list(candidates):
        with transaction.atomic():
            registration = _lock_registration(registration_id)
            # captured or cancelled meanwhile
            if registration.payment_status != PaymentStatus.PENDING or registration.cancellation_date:
                continue
            registration.cancellation_date = timezone.now()
            _set_failed(registration, EXPIRED_MESSAGE)
        expired += 1

    if expired:
        logger.info("Expired %s pending registrations", expired)
    return expired
