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

"""PayPal webhook processing."""

from __future__ import annotations

import json
import logging
from typing import Any

from django.db import IntegrityError, transaction
from django.http import HttpRequest

from clubportal.accounting.gateway import PayPalClient, get_gateway
from clubportal.accounting.membership import activate_membership, update_membership_status
from clubportal.accounting.payment import DECLINED_MESSAGE, capture_payment, mark_payment_failed
from clubportal.models.accounting import ProcessedWebhook
from clubportal.models.member import MembershipStatus
from clubportal.models.registration import Registration
from clubportal.utils.exceptions import NotFoundError, ValidationError
from clubportal.utils.tasks import after_commit, notify_admins

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = {
    "BILLING.SUBSCRIPTION.CANCELLED": MembershipStatus.CANCELLED,
    "BILLING.SUBSCRIPTION.SUSPENDED": MembershipStatus.SUSPENDED,
    "BILLING.SUBSCRIPTION.EXPIRED": MembershipStatus.EXPIRED,
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED": MembershipStatus.SUSPENDED,
}


def paypal_webhook(request: HttpRequest, gateway: PayPalClient | None = None) -> dict:
    """Verify, deduplicate and dispatch a PayPal webhook delivery.

    Args:
        request: Django HTTP request with the raw webhook body
        gateway: Payment gateway client, defaults to the configured one

    Returns:
        dict: JSON-ready summary of what was done

    Raises:
        ValidationError: If the signature is invalid or the body is not a webhook event
        GatewayError: If the gateway could not be reached; the delivery is not marked processed
            and will be retried by the gateway

    """
    gateway = gateway or get_gateway()
    body = request.body

    if gateway.webhook_id and not gateway.verify_webhook(request.headers, body):
        logger.error("PayPal webhook signature verification failed")
        after_commit(
            notify_admins, "PayPal webhook signature verification failed", body.decode("utf-8", "replace")[:2000]
        )
        msg = "Invalid webhook signature"
        raise ValidationError(msg)

    try:
        event = json.loads(body)
        event_id = event["id"]
        event_type = event["event_type"]
    except (ValueError, KeyError, TypeError) as err:
        msg = "Invalid webhook body"
        raise ValidationError(msg) from err

    if ProcessedWebhook.objects.filter(event_id=event_id).exists():
        logger.info("Webhook event %s already processed, skipping", event_id)
        return {"received": True, "duplicate": True}

    resource = event.get("resource") or {}
    result = dispatch_webhook_event(event_type, resource, gateway)

    try:
        with transaction.atomic():
            ProcessedWebhook.objects.create(event_id=event_id, event_type=event_type)
    except IntegrityError:
        logger.info("Webhook event %s processed concurrently", event_id)

    return {"received": True, **result}


def _order_id(resource: dict[str, Any]) -> str | None:
    related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
    return related.get("order_id")


def _registration_for_order(order_id: str | None) -> Registration | None:
    if not order_id:
        return None
    return Registration.objects.filter(gateway_order=order_id).first()


def dispatch_webhook_event(event_type: str, resource: dict[str, Any], gateway: PayPalClient) -> dict:
    """Apply a single webhook event. Unknown event types are acknowledged and ignored."""
    if event_type in ("CHECKOUT.ORDER.APPROVED", "PAYMENT.CAPTURE.COMPLETED"):
        order_id = resource.get("id") if event_type == "CHECKOUT.ORDER.APPROVED" else _order_id(resource)
        registration = _registration_for_order(order_id)
        if not registration:
            logger.info("%s for unknown order %s", event_type, order_id)
            return {"handled": False}
        outcome = capture_payment(registration.id, order_id, gateway)
        return {"handled": True, "status": outcome.status, "already_processed": outcome.already_processed}

    if event_type == "PAYMENT.CAPTURE.DENIED":
        registration = _registration_for_order(_order_id(resource))
        if not registration:
            return {"handled": False}
        changed = mark_payment_failed(registration.id, f"{DECLINED_MESSAGE} (DENIED)")
        return {"handled": True, "already_processed": not changed}

    if event_type in ("BILLING.SUBSCRIPTION.ACTIVATED", "PAYMENT.SALE.COMPLETED"):
        subscription_id = resource.get("id")
        if event_type == "PAYMENT.SALE.COMPLETED":
            subscription_id = resource.get("billing_agreement_id")
        if not subscription_id:
            return {"handled": False}
        try:
            membership = activate_membership(subscription_id, gateway)
        except NotFoundError:
            logger.warning("%s for unknown subscription %s", event_type, subscription_id)
            return {"handled": False}
        return {"handled": True, "status": membership.status}

    if event_type in SUBSCRIPTION_EVENTS:
        try:
            membership = update_membership_status(resource.get("id", ""), SUBSCRIPTION_EVENTS[event_type], resource)
        except NotFoundError:
            logger.warning("%s for unknown subscription %s", event_type, resource.get("id"))
            return {"handled": False}
        return {"handled": True, "status": membership.status}

    logger.info("Unhandled webhook event type: %s", event_type)
    return {"handled": False}
