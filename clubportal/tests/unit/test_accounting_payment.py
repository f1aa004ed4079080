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

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.utils import timezone

from clubportal.accounting.gateway import CaptureResult, GatewayOrder
from clubportal.accounting.payment import (
    EXPIRED_MESSAGE,
    capture_payment,
    expire_pending_registrations,
    mark_payment_failed,
)
from clubportal.accounting.registration import register_member, start_checkout
from clubportal.models.accounting import InvoiceStatus, PaymentInvoice, PaymentType
from clubportal.models.event import EventStatus
from clubportal.models.notification import Notification
from clubportal.models.registration import PaymentStatus, Registration
from clubportal.tests.unit.base import BaseTestCase
from clubportal.utils.exceptions import (
    ConflictError,
    GatewayError,
    RegistrationNotFoundError,
    ValidationError,
)


class TestRegistration(BaseTestCase):
    """Test registration and checkout opening"""

    def test_register_member_creates_pending_registration(self):
        member = self.create_member()
        event = self.create_event(price=Decimal("50.00"))

        registration = register_member(member, event)

        assert registration.payment_status == PaymentStatus.PENDING
        assert registration.amount_requested == Decimal("50.00")
        assert registration.amount_paid == Decimal("0.00")

    def test_register_member_twice_returns_same_registration(self):
        member = self.create_member()
        event = self.create_event()

        first = register_member(member, event)
        second = register_member(member, event)

        assert first.id == second.id
        assert Registration.objects.filter(member=member, event=event).count() == 1

    def test_register_member_on_draft_event(self):
        event = self.create_event(status=EventStatus.DRAFT)

        with pytest.raises(ValidationError):
            register_member(self.create_member(), event)

    def test_start_checkout_opens_order_and_invoice(self):
        registration = self.create_registration()
        gateway = self.gateway(order_id="ORDER-ABC")

        order = start_checkout(registration, "https://club.example.com/ok", "https://club.example.com/ko", gateway)

        registration.refresh_from_db()
        assert order.id == "ORDER-ABC"
        assert registration.gateway_order == "ORDER-ABC"
        invoice = PaymentInvoice.objects.get(cod="ORDER-ABC")
        assert invoice.status == InvoiceStatus.CREATED
        assert invoice.typ == PaymentType.REGISTRATION
        assert invoice.mc_gross == Decimal("50.00")

        args, kwargs = gateway.create_order.call_args
        assert args[0] == Decimal("50.00")
        assert kwargs["metadata"] == {"registration": registration.id, "event": registration.event.slug}

    def test_start_checkout_on_paid_registration(self):
        registration = self.paid_registration()

        with pytest.raises(ConflictError):
            start_checkout(registration, "ok", "ko", self.gateway())

    def test_start_checkout_on_cancelled_registration(self):
        registration = self.create_registration(cancellation_date=timezone.now())

        with pytest.raises(ValidationError):
            start_checkout(registration, "ok", "ko", self.gateway())

    def test_start_checkout_on_free_event(self):
        registration = self.create_registration(event=self.create_event(price=Decimal("0.00")))
        gateway = self.gateway()

        with pytest.raises(ValidationError):
            start_checkout(registration, "ok", "ko", gateway)

        gateway.create_order.assert_not_called()


class TestCapturePayment(BaseTestCase):
    """Test the payment capture state machine"""

    def _open(self, gateway, price="50.00"):
        registration = self.create_registration(event=self.create_event(price=Decimal(price)))
        start_checkout(registration, "ok", "ko", gateway)
        registration.refresh_from_db()
        return registration

    def test_capture_marks_registration_paid(self, mailoutbox, django_capture_on_commit_callbacks):
        gateway = self.gateway(order_id="ORDER-1", capture=self.completed_capture("50.00", "CAP-XYZ"))
        registration = self._open(gateway)

        with django_capture_on_commit_callbacks(execute=True):
            outcome = capture_payment(registration.id, "ORDER-1", gateway)

        assert outcome.paid
        assert not outcome.already_processed
        registration.refresh_from_db()
        assert registration.payment_status == PaymentStatus.PAID
        assert registration.amount_paid == Decimal("50.00")
        assert registration.payment_reference == "CAP-XYZ"
        assert registration.payment_date is not None

        invoice = PaymentInvoice.objects.get(cod="ORDER-1")
        assert invoice.status == InvoiceStatus.CHECKED
        assert invoice.txn_id == "CAP-XYZ"

        assert len(mailoutbox) == 1
        assert "Payment received" in mailoutbox[0].subject
        assert mailoutbox[0].to == [registration.member.email]

    def test_capture_twice_reaches_gateway_once(self):
        gateway = self.gateway()
        registration = self._open(gateway)

        first = capture_payment(registration.id, "ORDER-1", gateway)
        second = capture_payment(registration.id, "ORDER-1", gateway)

        assert first.paid and not first.already_processed
        assert second.paid and second.already_processed
        assert gateway.capture_order.call_count == 1
        registration.refresh_from_db()
        assert registration.amount_paid == Decimal("50.00")

    def test_capture_declined(self):
        declined = CaptureResult(status="DECLINED", captured_amount=Decimal("0.00"))
        gateway = self.gateway(capture=declined)
        registration = self._open(gateway)

        outcome = capture_payment(registration.id, "ORDER-1", gateway)

        assert outcome.declined
        assert outcome.status == PaymentStatus.FAILED
        registration.refresh_from_db()
        assert registration.payment_status == PaymentStatus.FAILED
        assert "DECLINED" in registration.payment_error
        assert registration.amount_paid == Decimal("0.00")
        assert PaymentInvoice.objects.get(cod="ORDER-1").status == InvoiceStatus.FAILED
        assert Notification.objects.filter(member=registration.member).exists()

        # a failed attempt stays failed
        again = capture_payment(registration.id, "ORDER-1", gateway)
        assert again.already_processed
        assert again.status == PaymentStatus.FAILED
        assert gateway.capture_order.call_count == 1

    def test_capture_with_zero_amount_is_not_paid(self):
        gateway = self.gateway(capture=CaptureResult(status="COMPLETED", captured_amount=Decimal("0.00")))
        registration = self._open(gateway)

        outcome = capture_payment(registration.id, "ORDER-1", gateway)

        assert outcome.status == PaymentStatus.FAILED

    def test_gateway_timeout_then_retry(self):
        gateway = self.gateway(order_id="ORDER-1")
        gateway.capture_order.side_effect = GatewayError("Payment gateway timed out")
        registration = self._open(gateway)

        with pytest.raises(GatewayError):
            capture_payment(registration.id, "ORDER-1", gateway)

        registration.refresh_from_db()
        assert registration.payment_status == PaymentStatus.FAILED
        assert registration.payment_error == "Payment gateway timed out"
        assert PaymentInvoice.objects.get(cod="ORDER-1").status == InvoiceStatus.FAILED

        # the member starts a new checkout
        gateway.create_order.return_value = GatewayOrder(id="ORDER-2", approval_link="https://paypal.example/2")
        gateway.capture_order.side_effect = None
        start_checkout(registration, "ok", "ko", gateway)
        registration.refresh_from_db()
        assert registration.payment_status == PaymentStatus.PENDING
        assert registration.payment_error == ""
        assert registration.gateway_order == "ORDER-2"

        outcome = capture_payment(registration.id, "ORDER-2", gateway)

        assert outcome.paid
        registration.refresh_from_db()
        assert registration.amount_paid == Decimal("50.00")

    def test_token_mismatch(self):
        gateway = self.gateway(order_id="ORDER-1")
        registration = self._open(gateway)

        with pytest.raises(ValidationError):
            capture_payment(registration.id, "ORDER-OTHER", gateway)

        gateway.capture_order.assert_not_called()
        registration.refresh_from_db()
        assert registration.payment_status == PaymentStatus.PENDING

    def test_missing_arguments(self):
        with pytest.raises(ValidationError):
            capture_payment(None, "ORDER-1", self.gateway())
        with pytest.raises(ValidationError):
            capture_payment(1, "", self.gateway())

    def test_unknown_registration(self):
        with pytest.raises(RegistrationNotFoundError):
            capture_payment(999999, "ORDER-1", self.gateway())
        with pytest.raises(RegistrationNotFoundError):
            capture_payment("not-a-number", "ORDER-1", self.gateway())

    def test_amount_mismatch_is_recorded_and_reported(self, mailoutbox, django_capture_on_commit_callbacks):
        gateway = self.gateway(capture=self.completed_capture("45.00"))
        registration = self._open(gateway)

        with django_capture_on_commit_callbacks(execute=True):
            outcome = capture_payment(registration.id, "ORDER-1", gateway)

        assert outcome.paid
        registration.refresh_from_db()
        assert registration.amount_paid == Decimal("45.00")
        assert any(message.subject == "Payment amount mismatch" for message in mailoutbox)

    def test_mail_outage_keeps_capture(self, mailoutbox, django_capture_on_commit_callbacks):
        gateway = self.gateway(capture=self.completed_capture("45.00", "CAP-OUT"))
        registration = self._open(gateway)

        with patch("clubportal.utils.tasks._send_message", side_effect=ConnectionError("smtp down")):
            with django_capture_on_commit_callbacks(execute=True) as callbacks:
                outcome = capture_payment(registration.id, "ORDER-1", gateway)

        assert outcome.paid
        assert len(callbacks) == 2
        registration.refresh_from_db()
        assert registration.payment_status == PaymentStatus.PAID
        assert registration.payment_reference == "CAP-OUT"
        assert PaymentInvoice.objects.get(cod="ORDER-1").status == InvoiceStatus.CHECKED
        assert mailoutbox == []


class TestPaymentFailures(BaseTestCase):
    """Test failures recorded outside the capture"""

    def test_mark_payment_failed(self):
        registration = self.create_registration()

        assert mark_payment_failed(registration.id, "Denied")
        assert not mark_payment_failed(registration.id, "Denied")

        registration.refresh_from_db()
        assert registration.payment_status == PaymentStatus.FAILED
        assert registration.payment_error == "Denied"

    def test_mark_payment_failed_keeps_paid(self):
        registration = self.paid_registration()

        assert not mark_payment_failed(registration.id)
        registration.refresh_from_db()
        assert registration.payment_status == PaymentStatus.PAID

    def test_expire_pending_registrations(self):
        old = timezone.now() - timedelta(hours=1)
        stale = self.create_registration(created=old)
        free = self.create_registration(event=self.create_event(price=Decimal("0.00")), created=old)
        paid = self.paid_registration(created=old)
        recent = self.create_registration()

        assert expire_pending_registrations() == 1

        stale.refresh_from_db()
        assert stale.payment_status == PaymentStatus.FAILED
        assert stale.payment_error == EXPIRED_MESSAGE
        assert stale.cancellation_date is not None
        for registration in (free, recent):
            registration.refresh_from_db()
            assert registration.payment_status == PaymentStatus.PENDING
        paid.refresh_from_db()
        assert paid.payment_status == PaymentStatus.PAID

        # nothing left to expire
        assert expire_pending_registrations() == 0

    def test_late_capture_of_expired_registration(self):
        gateway = self.gateway()
        registration = self.create_registration()
        start_checkout(registration, "ok", "ko", gateway)
        expire_pending_registrations(cutoff=timezone.now() + timedelta(minutes=1))

        outcome = capture_payment(registration.id, "ORDER-1", gateway)

        assert outcome.already_processed
        assert outcome.status == PaymentStatus.FAILED
        gateway.capture_order.assert_not_called()
