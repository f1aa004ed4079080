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

import hmac
import json
import logging

from django.conf import settings as conf_settings
from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from clubportal.accounting.payment import expire_pending_registrations
from clubportal.mail.remind import process_reminders
from clubportal.models.event import Event
from clubportal.models.member import Member
from clubportal.utils.checkin import CheckInResult, check_in
from clubportal.utils.exceptions import (
    ClubError,
    ConflictError,
    NotFoundError,
    PaymentRequiredError,
    UpstreamError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def error_response(error: ClubError) -> JsonResponse:
    """Translate a domain error into the matching JSON response."""
    if isinstance(error, ConflictError):
        return JsonResponse({"already_processed": True, "message": error.message})
    if isinstance(error, NotFoundError):
        status = 404
    elif isinstance(error, PaymentRequiredError):
        status = 402
    elif isinstance(error, ValidationError):
        status = 400
    elif isinstance(error, UpstreamError):
        status = 502
    else:
        status = 500
    return JsonResponse({"error": error.message}, status=status)


def get_param(request: HttpRequest, name: str) -> str | None:
    """Read a parameter from the form data, the JSON body or the query string."""
    value = request.POST.get(name)
    if value:
        return value
    if request.content_type == "application/json" and request.body:
        try:
            data = json.loads(request.body)
        except ValueError:
            data = {}
        if isinstance(data, dict) and data.get(name) not in (None, ""):
            return str(data[name])
    return request.GET.get(name)


def get_request_member(request: HttpRequest) -> Member | None:
    if not request.user.is_authenticated:
        return None
    return Member.objects.filter(user=request.user).first()


def check_in_response(result: CheckInResult) -> JsonResponse:
    registration = result.registration
    return JsonResponse(
        {
            "registration": registration.id,
            # noinspection PyUnresolvedReferences
            "member": str(registration.member),
            # noinspection PyUnresolvedReferences
            "event": registration.event.slug,
            "checked_in_at": registration.checked_in_at.isoformat() if registration.checked_in_at else None,
            "already_checked_in": result.already_checked_in,
            "new_badges": result.new_badges,
        }
    )


@require_POST
def api_check_in(request: HttpRequest, qr: str) -> JsonResponse:
    """Staff check-in of the member owning the scanned code.

    The event is passed as the ``event`` parameter (id).
    """
    if not request.user.is_authenticated or not request.user.is_staff:
        return JsonResponse({"error": "Staff access required"}, status=403)

    event_id = get_param(request, "event")
    if not event_id or not event_id.isdigit():
        return JsonResponse({"error": "Missing event"}, status=400)

    try:
        result = check_in(qr, int(event_id), get_request_member(request))
    except ClubError as e:
        return error_response(e)
    return check_in_response(result)


@login_required
@require_POST
def api_check_in_self(request: HttpRequest, event_slug: str) -> JsonResponse:
    """Self-service check-in of the logged member."""
    member = get_request_member(request)
    if not member:
        return JsonResponse({"error": "Member profile not found"}, status=404)
    event = get_object_or_404(Event, slug=event_slug)

    try:
        result = check_in(member.qr_uuid, event.id)
    except ClubError as e:
        return error_response(e)
    return check_in_response(result)


def is_cron_authorized(request: HttpRequest) -> bool:
    secret = conf_settings.CRON_SECRET
    provided = request.headers.get("X-Cron-Secret", "")
    if secret and provided and hmac.compare_digest(secret.encode(), provided.encode()):
        return True
    return request.user.is_authenticated and request.user.is_staff


@csrf_exempt
@require_POST
def api_cron_send_reminders(request: HttpRequest) -> JsonResponse:
    if not is_cron_authorized(request):
        return JsonResponse({"error": "Unauthorized"}, status=401)
    result = process_reminders()
    return JsonResponse(result.as_dict())


@csrf_exempt
@require_POST
def api_cron_expire_pending(request: HttpRequest) -> JsonResponse:
    if not is_cron_authorized(request):
        return JsonResponse({"error": "Unauthorized"}, status=401)
    expired = expire_pending_registrations()
    return JsonResponse({"expired": expired})
