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

from django.db import models
from django.utils.translation import gettext_lazy as _

from clubportal.models.base import BaseModel
from clubportal.models.member import Member
from clubportal.models.registration import Registration


class PaymentType(models.TextChoices):
    REGISTRATION = "r", "registration"
    MEMBERSHIP = "m", "membership"


class InvoiceStatus(models.TextChoices):
    CREATED = "r", "Created"
    CHECKED = "k", "Checked"
    FAILED = "f", "Failed"


class PaymentInvoice(BaseModel):
    search = models.CharField(max_length=500, editable=False)

    member = models.ForeignKey(Member, on_delete=models.CASCADE)

    typ = models.CharField(max_length=1, choices=PaymentType.choices)

    status = models.CharField(max_length=1, choices=InvoiceStatus.choices, default=InvoiceStatus.CREATED, db_index=True)

    mc_gross = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        verbose_name=_("Gross"),
        help_text=_("Total payment sent"),
    )

    currency = models.CharField(max_length=3, default="USD")

    txn_id = models.CharField(max_length=100, null=True, blank=True)

    causal = models.CharField(max_length=200)

    # Gateway order or subscription id
    cod = models.CharField(max_length=100, unique=True, db_index=True)

    reg = models.ForeignKey(
        Registration,
        on_delete=models.CASCADE,
        related_name="invoices",
        null=True,
        blank=True,
    )

    class Meta:
        indexes = [models.Index(fields=["member", "status"], name="invoice_member_status")]

    def __str__(self):
        return f"({self.status}) Invoice for {self.member} - {self.causal} - {self.txn_id} {self.mc_gross}"


class ProcessedWebhook(models.Model):
    """Gateway webhook deliveries already handled, keyed by the gateway event id."""

    event_id = models.CharField(max_length=100, unique=True)

    event_type = models.CharField(max_length=100)

    processed = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.event_type} {self.event_id}"
