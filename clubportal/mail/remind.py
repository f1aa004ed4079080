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

"""Scheduled event reminders.

Each due job is expanded into one work item per recipient. A work item is
claimed by inserting its ReminderDelivery row (or by moving a failed or stale
row back to CLAIMED with a conditional update), then sent, then marked SENT
with another conditional update. Two runs working on the same job can never
claim the same recipient at the same time, and a recipient already marked
SENT is never contacted again for that job.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from django.conf import settings as conf_settings
from django.core.validators import validate_email
from django.db import transaction
from django.db.models import F, Q
from django.template import Context, Template
from django.utils import formats, timezone
from django.utils.translation import gettext_lazy as _

from clubportal.mail.base import get_url, notify_member
from clubportal.models.event import Event
from clubportal.models.member import Member
from clubportal.models.notification import (
    DeliveryStatus,
    NotificationType,
    ReminderAudience,
    ReminderDelivery,
    ReminderJob,
    ReminderStatus,
)
from clubportal.models.registration import PaymentStatus, Registration
from clubportal.utils.exceptions import ReminderNotFoundError
from clubportal.utils.tasks import after_commit, my_send_simple_mail, notify_admins

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass
class PartialFailure:
    """A recipient of a reminder job that could not be reached during a run."""

    job_id: int
    member_id: int
    email: str
    error: str
    will_retry: bool


@dataclass
class ReminderRunResult:
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    failures: list[PartialFailure] = field(default_factory=list)
    details: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


# SCHEDULING


def reminder_due_time(start: datetime, days_before: int) -> datetime:
    """Return when a reminder sent ``days_before`` days ahead of ``start`` is due."""
    due = (start - timedelta(days=days_before)).replace(
        hour=conf_settings.REMINDER_SEND_HOUR, minute=0, second=0, microsecond=0
    )
    return min(due, start)


def schedule_reminder(
    event: Event,
    days_before: int = 1,
    audience: str = ReminderAudience.REGISTERED,
    subject: str = "",
    body: str = "",
) -> ReminderJob:
    """Create a reminder job for an event.

    Args:
        event: Event to remind
        days_before: Days before the event start the reminder goes out
        audience: Which registrations receive it
        subject: Custom subject, the standard text is used when both subject and body are empty
        body: Custom body, may use {{ first_name }}, {{ name }} and {{ event }}

    Returns:
        ReminderJob: the pending job

    """
    return ReminderJob.objects.create(
        event=event,
        days_before=days_before,
        scheduled_for=reminder_due_time(event.start, days_before),
        audience=audience,
        subject=subject,
        body=body,
        generic=not (subject or body),
    )


def reschedule_event_reminders(event: Event) -> int:
    """Move the pending reminders of an event after its start has changed."""
    updated = 0
    for job in ReminderJob.objects.filter(event=event, status=ReminderStatus.PENDING):
        job.scheduled_for = reminder_due_time(event.start, job.days_before)
        job.save(update_fields=["scheduled_for", "updated"])
        updated += 1
    return updated


# CONTENT


def _when(days_before: int) -> str:
    if days_before <= 0:
        return str(_("today"))
    if days_before == 1:
        return str(_("tomorrow"))
    return str(_("in %(days)d days") % {"days": days_before})


def build_generic_reminder(event: Event, days_before: int) -> tuple[str, str]:
    """Return subject and body template of the standard reminder."""
    if days_before <= 0:
        subject = _("Happening Today: %(event)s") % {"event": event.name}
    elif days_before == 1:
        subject = _("Reminder: %(event)s is Tomorrow") % {"event": event.name} + "!"
    else:
        subject = _("Reminder: %(event)s is %(when)s") % {"event": event.name, "when": _when(days_before)}

    body = "<p>" + _("Hi") + " {{ first_name }},</p>"
    body += "<p>" + _("This is a friendly reminder that <strong>{{ event }}</strong> is %(when)s") % {
        "when": _when(days_before)
    }
    body += "!</p><p>"
    body += _("Date") + f": {formats.date_format(event.start, 'DATE_FORMAT')}<br />"
    body += _("Time") + f": {formats.time_format(event.start, 'TIME_FORMAT')}<br />"
    if event.location_name:
        body += _("Location") + f": {event.location_name}<br />"
    if event.location_address:
        body += _("Address") + f": {event.location_address}<br />"
    body += "</p><p>"
    body += _("We look forward to seeing you there! If you can no longer attend, please update your registration")
    body += f".</p><p><a href='{get_url('my-events')}'>" + _("View My Events") + "</a></p>"
    return str(subject), str(body)


def get_reminder_content(job: ReminderJob) -> tuple[str, str]:
    # noinspection PyUnresolvedReferences
    event = job.event
    if job.generic or not (job.subject or job.body):
        return build_generic_reminder(event, job.days_before)
    subject = job.subject or str(_("Reminder: %(event)s") % {"event": event.name})
    return subject, job.body


def render_reminder(template_text: str, member: Member, event: Event, autoescape: bool = True) -> str:
    """Fill the recipient placeholders of a reminder text."""
    if not autoescape:
        template_text = "{% autoescape off %}" + template_text + "{% endautoescape %}"
    context = Context(
        {
            "first_name": member.first_name(),
            "name": member.display_real().strip() or member.first_name(),
            "event": event.name,
        }
    )
    return Template(template_text).render(context)


# RECIPIENTS


def get_recipients(job: ReminderJob):
    """Resolve the audience of a job against the current registrations."""
    # noinspection PyUnresolvedReferences
    event = job.event
    registrations = Registration.objects.filter(event=event, cancellation_date__isnull=True)

    if job.audience == ReminderAudience.UNPAID:
        if event.is_free():
            return Member.objects.none()
        registrations = registrations.filter(payment_status=PaymentStatus.PENDING)
    elif job.audience == ReminderAudience.PAID and not event.is_free():
        registrations = registrations.filter(payment_status=PaymentStatus.PAID)
    else:
        registrations = registrations.filter(payment_status__in=[PaymentStatus.PENDING, PaymentStatus.PAID])

    return Member.objects.filter(pk__in=registrations.values("member_id")).order_by("pk")


# DELIVERY


def claim_delivery(job: ReminderJob, member: Member, now: datetime) -> ReminderDelivery | None:
    """Claim the delivery of a job to a member.

    Returns:
        ReminderDelivery in CLAIMED state, or None if the member was already reached,
        is being handled by another run, or ran out of attempts

    """
    with transaction.atomic():
        delivery, created = ReminderDelivery.objects.get_or_create(
            job=job,
            member=member,
            defaults={"status": DeliveryStatus.CLAIMED, "claimed_at": now, "attempts": 1},
        )
    if created:
        return delivery

    stale_before = now - timedelta(seconds=conf_settings.REMINDER_CLAIM_TIMEOUT)
    claimable = Q(status=DeliveryStatus.FAILED) | Q(status=DeliveryStatus.CLAIMED, claimed_at__lt=stale_before)
    claimed = (
        ReminderDelivery.objects.filter(pk=delivery.pk, attempts__lt=conf_settings.REMINDER_MAX_ATTEMPTS)
        .filter(claimable)
        .update(status=DeliveryStatus.CLAIMED, claimed_at=now, attempts=F("attempts") + 1)
    )
    if not claimed:
        return None

    if delivery.status == DeliveryStatus.CLAIMED:
        logger.warning(
            "Reclaiming stale reminder delivery %s (job %s, member %s): the member may receive it twice",
            delivery.id,
            job.id,
            member.id,
        )
    delivery.refresh_from_db()
    return delivery


def dispatch_reminder(job: ReminderJob, member: Member, subject: str, body: str) -> None:
    """Send one reminder by email, together with its in-app notification.

    Raises:
        django.core.exceptions.ValidationError: If the member email is not valid
        Exception: Any error raised by the mail backend

    """
    validate_email(member.email)
    # noinspection PyUnresolvedReferences
    event = job.event
    with transaction.atomic():
        notify_member(
            member,
            NotificationType.EVENT_REMINDER,
            str(_("Event Reminder: %(event)s") % {"event": event.name}),
            f"{event.name} " + str(_("is %(when)s") % {"when": _when(job.days_before)}),
            "my-events",
        )
        my_send_simple_mail(subject, body, member.email)


def _mark_sent(delivery: ReminderDelivery, now: datetime) -> bool:
    return bool(
        ReminderDelivery.objects.filter(
            pk=delivery.pk, status=DeliveryStatus.CLAIMED, claimed_at=delivery.claimed_at
        ).update(status=DeliveryStatus.SENT, sent_at=now, error="")
    )


def _mark_failed(delivery: ReminderDelivery, error: str) -> None:
    ReminderDelivery.objects.filter(
        pk=delivery.pk, status=DeliveryStatus.CLAIMED, claimed_at=delivery.claimed_at
    ).update(status=DeliveryStatus.FAILED, error=error[:500])


def _error_text(err: Exception) -> str:
    messages = getattr(err, "messages", None)
    if messages:
        return "; ".join(str(message) for message in messages)
    return str(err) or err.__class__.__name__


def _update_job_status(job: ReminderJob, now: datetime) -> None:
    deliveries = ReminderDelivery.objects.filter(job=job)
    max_attempts = conf_settings.REMINDER_MAX_ATTEMPTS
    sent_count = deliveries.filter(status=DeliveryStatus.SENT).count()
    failed = deliveries.filter(status=DeliveryStatus.FAILED)
    failed_count = failed.count()
    retryable = failed.filter(attempts__lt=max_attempts).exists() or deliveries.filter(
        status=DeliveryStatus.CLAIMED
    ).exists()

    if retryable:
        status = ReminderStatus.PARTIALLY_SENT
    elif failed_count:
        status = ReminderStatus.FAILED
    else:
        status = ReminderStatus.SENT

    ReminderJob.objects.filter(pk=job.pk).update(
        status=status,
        sent_at=now,
        sent_count=sent_count,
        failed_count=failed_count,
        updated=now,
    )
    job.status = status
    job.sent_count = sent_count
    job.failed_count = failed_count

    if status == ReminderStatus.FAILED:
        after_commit(
            notify_admins,
            f"Reminder {job.id} failed",
            f"{job}: {job.failed_count} recipients could not be reached after {max_attempts} attempts",
        )


def process_job(
    job: ReminderJob,
    now: datetime,
    result: ReminderRunResult,
    dispatcher: Callable[[ReminderJob, Member, str, str], None] = dispatch_reminder,
) -> None:
    """Send a due job to every recipient not reached yet, recording the outcome in ``result``."""
    # noinspection PyUnresolvedReferences
    event = job.event
    if event.is_closed():
        ReminderJob.objects.filter(pk=job.pk).update(status=ReminderStatus.CANCELLED, updated=now)
        job.status = ReminderStatus.CANCELLED
        logger.info("Reminder %s cancelled, event %s is %s", job.id, event.id, event.get_status_display())
        return

    subject, body = get_reminder_content(job)
    sent = skipped = failed = 0

    for member in get_recipients(job):
        delivery = claim_delivery(job, member, now)
        if delivery is None:
            skipped += 1
            continue

        try:
            dispatcher(
                job,
                member,
                render_reminder(subject, member, event, autoescape=False),
                render_reminder(body, member, event),
            )
        except Exception as err:
            error = _error_text(err)
            logger.warning("Reminder %s to member %s failed: %s", job.id, member.id, error)
            _mark_failed(delivery, error)
            failed += 1
            result.failures.append(
                PartialFailure(
                    job_id=job.id,
                    member_id=member.id,
                    email=member.email,
                    error=error,
                    will_retry=delivery.attempts < conf_settings.REMINDER_MAX_ATTEMPTS,
                )
            )
            continue

        if not _mark_sent(delivery, now):
            logger.warning("Reminder delivery %s was reclaimed while sending", delivery.id)
        sent += 1

    _update_job_status(job, now)

    result.processed += 1
    result.sent += sent
    result.skipped += skipped
    result.details.append(
        {
            "job": job.id,
            "event": event.name,
            "days_before": job.days_before,
            "status": job.status,
            "sent": sent,
            "skipped": skipped,
            "failed": failed,
        }
    )


def get_due_jobs(now: datetime):
    return (
        ReminderJob.objects.filter(
            status__in=[ReminderStatus.PENDING, ReminderStatus.PARTIALLY_SENT],
            scheduled_for__lte=now,
        )
        .select_related("event")
        .order_by("scheduled_for", "pk")
    )


def process_reminders(
    now: datetime | None = None,
    dispatcher: Callable[[ReminderJob, Member, str, str], None] | None = None,
) -> ReminderRunResult:
    """Send every due reminder.

    Safe to run concurrently and repeatedly: each recipient receives a job at
    most once, and a failure on one recipient never stops the others.

    Args:
        now: Reference time, defaults to the current time
        dispatcher: Callable sending one reminder, defaults to email plus in-app notification

    Returns:
        ReminderRunResult: counters, per-job details and the per-recipient failures

    """
    now = now or timezone.now()
    dispatcher = dispatcher or dispatch_reminder
    result = ReminderRunResult()

    for job in get_due_jobs(now):
        try:
            process_job(job, now, result, dispatcher)
        except Exception as err:
            # the remaining jobs still run; this one is picked up again next time
            logger.exception("Reminder %s could not be processed", job.id)
            result.details.append({"job": job.id, "status": job.status, "error": _error_text(err)})
            after_commit(notify_admins, f"Reminder {job.id} failed", "Error processing reminder", err)

    if result.processed:
        logger.info(
            "Processed %s reminders: %s sent, %s skipped, %s failed",
            result.processed,
            result.sent,
            result.skipped,
            len(result.failures),
        )
    return result


def process_reminder(job_id, now: datetime | None = None, dispatcher=None) -> ReminderRunResult:
    """Run a single job right away, regardless of its schedule.

    Raises:
        ReminderNotFoundError: If the job does not exist or was already completed

    """
    job = (
        ReminderJob.objects.filter(
            pk=job_id, status__in=[ReminderStatus.PENDING, ReminderStatus.PARTIALLY_SENT]
        )
        .select_related("event")
        .first()
    )
    if not job:
        msg = f"No pending reminder {job_id}"
        raise ReminderNotFoundError(msg)

    result = ReminderRunResult()
    process_job(job, now or timezone.now(), result, dispatcher or dispatch_reminder)
    return result
