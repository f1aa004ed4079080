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

from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from clubportal.mail.remind import reschedule_event_reminders
from clubportal.models.accounting import PaymentInvoice
from clubportal.models.event import Event
from clubportal.models.member import Member
from clubportal.models.registration import Registration

logger = logging.getLogger(__name__)


@receiver(pre_save, sender=Member)
def pre_save_member(sender, instance, *args, **kwargs):
    """Keep the denormalized email and search fields in sync with the user."""
    # noinspection PyUnresolvedReferences
    if instance.user_id and instance.user.email:
        instance.email = instance.user.email
    instance.search = f"{instance.name} {instance.surname} {instance.email}".strip()


@receiver(pre_save, sender=Registration)
def pre_save_registration(sender, instance, *args, **kwargs):
    # noinspection PyUnresolvedReferences
    instance.search = f"{instance.member} - {instance.event}"[:150]


@receiver(pre_save, sender=PaymentInvoice)
def pre_save_payment_invoice(sender, instance, *args, **kwargs):
    # noinspection PyUnresolvedReferences
    instance.search = f"{instance.member} {instance.causal} {instance.cod}"[:500]


@receiver(pre_save, sender=Event)
def pre_save_event(sender, instance, *args, **kwargs):
    instance._previous_start = None
    if instance.pk:
        instance._previous_start = Event.objects.filter(pk=instance.pk).values_list("start", flat=True).first()


@receiver(post_save, sender=Event)
def post_save_event(sender, instance, created, **kwargs):
    previous_start = getattr(instance, "_previous_start", None)
    if created or previous_start is None or previous_start == instance.start:
        return
    updated = reschedule_event_reminders(instance)
    if updated:
        logger.info("Rescheduled %s pending reminders of event %s", updated, instance.id)
