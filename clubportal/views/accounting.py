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
from urllib.parse import urlencode

from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, HttpResponseRedirect, JsonResponse
from django.shortcuts import get_object_or_404, redirect
from django.urls import reverse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from clubportal.accounting.gateway import get_gateway
from clubportal.accounting.payment import capture_payment
from clubportal.accounting.registration import register_member, start_checkout
from clubportal.accounting.webhook import paypal_webhook
from clubportal.mail.base import get_url
from clubportal.models.event import Event
from clubportal.models.registration import PaymentStatus
from clubportal.utils.exceptions import ClubError, GatewayError, RegistrationNotFoundError, ValidationError
from clubportal.views.api import error_response, get_request_member

logger = logging.getLogger(__name__)


def my_events_redirect(**params) -> HttpResponseRedirect:
    url = get_url("my-events")
    if params:
        url += "?" + urlencode(params)
    return redirect(url)


@require_GET
def acc_capture(request: HttpRequest) -> HttpResponseRedirect:
    """Landing page of the payer after approving the order on the gateway."""
    token = request.GET.get("token")
    registration_id = request.GET.get("registration")
    if not token or not registration_id:
        return my_events_redirect(error="missing_parameters")

    try:
        outcome = capture_payment(registration_id, token, get_gateway())
    except RegistrationNotFoundError:
        return my_events_redirect(error="registration_not_found")
    except ValidationError:
        return my_events_redirect(error="invalid_token")
    except GatewayError:
        return my_events_redirect(error="payment_system")

    if outcome.status == PaymentStatus.PAID:
        # noinspection PyUnresolvedReferences
        return my_events_redirect(registered=outcome.registration.event.slug)
    return my_events_redirect(error="payment_declined")


@login_required
@require_POST
def acc_checkout(request: HttpRequest, event_slug: str) -> JsonResponse:
    """Register the logged member to an event and open the payment order if one is due."""
    member = get_request_member(request)
    if not member:
        return JsonResponse({"error": "Member profile not found"}, status=404)
    event = get_object_or_404(Event, slug=event_slug)

    try:
        registration = register_member(member, event)
        if registration.payment_status == PaymentStatus.PAID:
            return JsonResponse({"registration": registration.id, "already_processed": True})
        if event.is_free():
            return JsonResponse({"registration": registration.id, "order": None, "approval_link": None})

        return_url = request.build_absolute_uri(reverse("acc_capture")) + "?" + urlencode(
            {"registration": registration.id}
        )
        cancel_url = get_url(f"events/{event.slug}") + "?cancelled=1"
        order = start_checkout(registration, return_url, cancel_url, get_gateway())
    except ClubError as e:
        return error_response(e)

    return JsonResponse({"registration": registration.id, "order": order.id, "approval_link": order.approval_link})


@csrf_exempt
@require_POST
def acc_webhook_paypal(request: HttpRequest) -> JsonResponse:
    try:
        result = paypal_webhook(request, get_gateway())
    except ClubError as e:
        return error_response(e)
    return JsonResponse(result)
