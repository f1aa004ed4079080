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

from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.utils import timezone

from clubportal.mail.remind import (
    build_generic_reminder,
    get_recipients,
    get_reminder_content,
    process_reminder,
    process_reminders,
    reminder_due_time,
    schedule_reminder,
)
from clubportal.models.event import EventStatus
from clubportal.models.notification import (
    DeliveryStatus,
    Notification,
    NotificationType,
    ReminderAudience,
    ReminderDelivery,
    ReminderJob,
    ReminderStatus,
)
from clubportal.models.registration import PaymentStatus
from clubportal.tests.unit.base import BaseTestCase
from clubportal.utils.exceptions import ReminderNotFoundError


class TestReminderScheduling(BaseTestCase):
    """Test reminder scheduling and content"""

    def test_reminder_due_time(self, settings):
        settings.REMINDER_SEND_HOUR = 9
        start = datetime(2030, 5, 10, 21, 30)

        assert reminder_due_time(start, 1) == datetime(2030, 5, 9, 9, 0)
        assert reminder_due_time(start, 0) == datetime(2030, 5, 10, 9, 0)
        assert reminder_due_time(datetime(2030, 5, 10, 7, 0), 0) == datetime(2030, 5, 10, 7, 0)

    def test_schedule_reminder(self):
        event = self.create_event(start=datetime(2030, 5, 10, 21, 30))

        generic = schedule_reminder(event, days_before=2)
        custom = schedule_reminder(event, subject="Bring a jacket", body="It gets cold, {{ first_name }}")

        assert generic.generic
        assert generic.status == ReminderStatus.PENDING
        assert generic.scheduled_for == datetime(2030, 5, 8, 9, 0)
        assert not custom.generic
        assert custom.audience == ReminderAudience.REGISTERED

    def test_moving_event_reschedules_pending_reminders(self):
        event = self.create_event(start=datetime(2030, 5, 10, 21, 30))
        pending = schedule_reminder(event, days_before=1)
        sent = schedule_reminder(event, days_before=3)
        ReminderJob.objects.filter(pk=sent.pk).update(status=ReminderStatus.SENT)

        event.start = datetime(2030, 6, 1, 22, 0)
        event.save()

        pending.refresh_from_db()
        sent.refresh_from_db()
        assert pending.scheduled_for == datetime(2030, 5, 31, 9, 0)
        assert sent.scheduled_for == datetime(2030, 5, 7, 9, 0)

    def test_generic_subjects(self):
        event = self.create_event(name="Perseids Night")

        assert build_generic_reminder(event, 0)[0] == "Happening Today: Perseids Night"
        assert build_generic_reminder(event, 1)[0] == "Reminder: Perseids Night is Tomorrow!"
        assert build_generic_reminder(event, 3)[0] == "Reminder: Perseids Night is in 3 days"

        body = build_generic_reminder(event, 1)[1]
        assert "{{ first_name }}" in body
        assert "Observatory Hill" in body


class TestReminderRecipients(BaseTestCase):
    """Test audience resolution"""

    def _registrations(self, event):
        pending = self.create_registration(event=event)
        paid = self.paid_registration(event=event)
        self.create_registration(event=event, payment_status=PaymentStatus.FAILED)
        self.paid_registration(event=event, cancellation_date=timezone.now())
        return pending.member, paid.member

    def test_paid_event_audiences(self):
        event = self.create_event(price=Decimal("50.00"))
        pending, paid = self._registrations(event)

        registered = self.create_job(event=event, audience=ReminderAudience.REGISTERED)
        unpaid = self.create_job(event=event, audience=ReminderAudience.UNPAID)
        paid_only = self.create_job(event=event, audience=ReminderAudience.PAID)

        assert list(get_recipients(registered)) == [pending, paid]
        assert list(get_recipients(unpaid)) == [pending]
        assert list(get_recipients(paid_only)) == [paid]

    def test_free_event_audiences(self):
        event = self.create_event(price=Decimal("0.00"))
        pending, paid = self._registrations(event)

        unpaid = self.create_job(event=event, audience=ReminderAudience.UNPAID)
        paid_only = self.create_job(event=event, audience=ReminderAudience.PAID)

        assert list(get_recipients(unpaid)) == []
        assert list(get_recipients(paid_only)) == [pending, paid]


class TestProcessReminders(BaseTestCase):
    """Test reminder delivery"""

    def _job_with_recipients(self, count=3, **kwargs):
        event = self.create_event(name="Lunar Eclipse")
        members = [self.paid_registration(event=event).member for _i in range(count)]
        return self.create_job(event=event, **kwargs), members

    def test_run_twice_sends_once(self, mailoutbox):
        job, members = self._job_with_recipients(3)

        first = process_reminders()
        second = process_reminders()

        assert first.processed == 1
        assert first.sent == 3
        assert first.failures == []
        assert second.sent == 0
        assert len(mailoutbox) == 3
        assert sorted(message.to[0] for message in mailoutbox) == sorted(member.email for member in members)
        assert mailoutbox[0].subject == "Reminder: Lunar Eclipse is Tomorrow!"
        assert "Hi Test," in mailoutbox[0].alternatives[0][0]

        job.refresh_from_db()
        assert job.status == ReminderStatus.SENT
        assert job.sent_count == 3
        assert job.sent_at is not None
        assert Notification.objects.filter(typ=NotificationType.EVENT_REMINDER).count() == 3

        # forcing the job again reaches nobody new
        job.status = ReminderStatus.PENDING
        job.save()
        again = process_reminder(job.id)
        assert again.sent == 0
        assert again.skipped == 3
        assert len(mailoutbox) == 3

    def test_invalid_email_is_reported_and_retried(self, mailoutbox, settings, django_capture_on_commit_callbacks):
        settings.REMINDER_MAX_ATTEMPTS = 3
        event = self.create_event()
        first = self.paid_registration(event=event).member
        broken = self.paid_registration(event=event, member=self.create_member(email="not-an-email")).member
        third = self.paid_registration(event=event).member
        job = self.create_job(event=event)

        result = process_reminders()

        assert result.sent == 2
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.member_id == broken.id
        assert failure.job_id == job.id
        assert failure.email == "not-an-email"
        assert failure.will_retry
        assert sorted(message.to[0] for message in mailoutbox) == sorted([first.email, third.email])
        job.refresh_from_db()
        assert job.status == ReminderStatus.PARTIALLY_SENT
        assert job.failed_count == 1
        assert result.as_dict()["details"][0]["failed"] == 1

        second = process_reminders()
        assert second.sent == 0
        assert second.skipped == 2
        assert second.failures[0].will_retry

        with django_capture_on_commit_callbacks(execute=True):
            third_run = process_reminders()
        assert not third_run.failures[0].will_retry
        job.refresh_from_db()
        assert job.status == ReminderStatus.FAILED
        delivery = ReminderDelivery.objects.get(job=job, member=broken)
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.attempts == 3
        assert any(message.subject == f"Reminder {job.id} failed" for message in mailoutbox)

        # nothing is due anymore
        assert process_reminders().processed == 0

    def test_dispatcher_error_does_not_stop_others(self):
        job, members = self._job_with_recipients(3)
        reached = []

        def dispatcher(job, member, subject, body):
            if member == members[1]:
                raise ConnectionError("SMTP unavailable")
            reached.append(member)

        result = process_reminders(dispatcher=dispatcher)

        assert reached == [members[0], members[2]]
        assert result.failures[0].error == "SMTP unavailable"
        job.refresh_from_db()
        assert job.status == ReminderStatus.PARTIALLY_SENT

    def test_failed_job_alert_during_mail_outage(self, mailoutbox, settings, django_capture_on_commit_callbacks):
        settings.REMINDER_MAX_ATTEMPTS = 1
        first_event = self.create_event()
        self.paid_registration(event=first_event, member=self.create_member(email="not-an-email"))
        failed_job = self.create_job(event=first_event, scheduled_for=timezone.now() - timedelta(hours=2))
        job, members = self._job_with_recipients(1)

        with patch("clubportal.utils.tasks._send_message", side_effect=ConnectionError("smtp down")):
            with django_capture_on_commit_callbacks(execute=True) as callbacks:
                result = process_reminders()

        assert result.processed == 2
        assert len(callbacks) == 2
        failed_job.refresh_from_db()
        assert failed_job.status == ReminderStatus.FAILED
        delivery = ReminderDelivery.objects.get(job=job)
        assert delivery.member == members[0]
        assert delivery.status == DeliveryStatus.FAILED
        assert mailoutbox == []

    def test_job_error_does_not_stop_batch(self, mailoutbox, django_capture_on_commit_callbacks):
        broken_job, _members = self._job_with_recipients(1, scheduled_for=timezone.now() - timedelta(hours=2))
        job, members = self._job_with_recipients(1)

        def content(candidate):
            if candidate.pk == broken_job.pk:
                raise RuntimeError("template missing")
            return get_reminder_content(candidate)

        with patch("clubportal.mail.remind.get_reminder_content", side_effect=content):
            with django_capture_on_commit_callbacks(execute=True):
                result = process_reminders()

        assert result.processed == 1
        assert result.sent == 1
        assert result.details[0] == {"job": broken_job.id, "status": ReminderStatus.PENDING, "error": "template missing"}
        assert any(message.to == [members[0].email] for message in mailoutbox)
        assert any(message.subject == f"Reminder {broken_job.id} failed" for message in mailoutbox)
        broken_job.refresh_from_db()
        assert broken_job.status == ReminderStatus.PENDING
        job.refresh_from_db()
        assert job.status == ReminderStatus.SENT

    def test_stale_claim_is_reclaimed(self, settings):
        settings.REMINDER_CLAIM_TIMEOUT = 600
        job, members = self._job_with_recipients(2)
        now = timezone.now()
        ReminderDelivery.objects.create(job=job, member=members[0], claimed_at=now - timedelta(hours=1))
        ReminderDelivery.objects.create(job=job, member=members[1], claimed_at=now - timedelta(seconds=30))
        reached = []

        result = process_reminders(now=now, dispatcher=lambda job, member, subject, body: reached.append(member))

        assert reached == [members[0]]
        assert result.skipped == 1
        stale = ReminderDelivery.objects.get(job=job, member=members[0])
        assert stale.status == DeliveryStatus.SENT
        assert stale.attempts == 2
        job.refresh_from_db()
        # the recent claim is still in progress
        assert job.status == ReminderStatus.PARTIALLY_SENT

    def test_custom_content(self, mailoutbox):
        event = self.create_event(name="Stars & Moons")
        self.paid_registration(event=event, member=self.create_member(name="Ada"))
        self.create_job(event=event, subject="{{ event }} tonight", body="<p>Hi {{ first_name }}</p>", generic=False)

        process_reminders()

        assert mailoutbox[0].subject == "Stars & Moons tonight"
        assert mailoutbox[0].body == "Hi Ada"

    def test_cancelled_event(self, mailoutbox):
        job, _members = self._job_with_recipients(2)
        job.event.status = EventStatus.CANCELLED
        job.event.save()

        result = process_reminders()

        assert result.sent == 0
        assert mailoutbox == []
        job.refresh_from_db()
        assert job.status == ReminderStatus.CANCELLED

    def test_future_job_only_on_demand(self):
        job, _members = self._job_with_recipients(1, scheduled_for=timezone.now() + timedelta(days=1))
        reached = []

        def dispatcher(job, member, subject, body):
            reached.append(member)

        assert process_reminders(dispatcher=dispatcher).processed == 0
        assert process_reminder(job.id, dispatcher=dispatcher).sent == 1
        assert len(reached) == 1

        with pytest.raises(ReminderNotFoundError):
            process_reminder(job.id)
