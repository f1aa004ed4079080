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

import decimal

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models
from django.db.models import Q

import clubportal.models.utils


def safedelete_fields():
    return [
        ("deleted", models.DateTimeField(db_index=True, editable=False, null=True)),
        ("deleted_by_cascade", models.BooleanField(default=False, editable=False)),
    ]


def base_fields():
    return [
        ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
        *safedelete_fields(),
        ("created", models.DateTimeField(default=django.utils.timezone.now, editable=False)),
        ("updated", models.DateTimeField(auto_now=True)),
    ]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Member",
            fields=[
                *base_fields(),
                ("email", models.CharField(editable=False, max_length=200)),
                ("search", models.CharField(editable=False, max_length=200)),
                (
                    "language",
                    models.CharField(
                        choices=[("en", "English"), ("it", "Italiano")],
                        default="en",
                        help_text="Preferred navigation language",
                        max_length=3,
                        null=True,
                        verbose_name="Navigation language",
                    ),
                ),
                ("name", models.CharField(max_length=100, verbose_name="Name")),
                ("surname", models.CharField(max_length=100, verbose_name="Surname")),
                (
                    "qr_uuid",
                    models.CharField(
                        db_index=True,
                        default=clubportal.models.utils.my_uuid,
                        editable=False,
                        help_text="Code printed on the membership card QR",
                        max_length=32,
                        unique=True,
                        verbose_name="Check-in code",
                    ),
                ),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="member",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["surname", "name"],
            },
        ),
        migrations.CreateModel(
            name="Event",
            fields=[
                *base_fields(),
                ("name", models.CharField(max_length=150, verbose_name="Name")),
                (
                    "slug",
                    models.SlugField(
                        max_length=100,
                        unique=True,
                        validators=[clubportal.models.utils.AlphanumericValidator],
                    ),
                ),
                ("kind", models.CharField(blank=True, max_length=50, verbose_name="Type")),
                (
                    "special",
                    models.BooleanField(
                        default=False,
                        help_text="Attendance counts towards the special event badges",
                        verbose_name="Special event",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("d", "Draft"), ("p", "Published"), ("x", "Cancelled"), ("c", "Completed")],
                        db_index=True,
                        default="d",
                        max_length=1,
                    ),
                ),
                ("start", models.DateTimeField(verbose_name="Start")),
                ("end", models.DateTimeField(verbose_name="End")),
                ("location_name", models.CharField(blank=True, max_length=200)),
                ("location_address", models.CharField(blank=True, max_length=300)),
                ("price", models.DecimalField(decimal_places=2, default=decimal.Decimal("0.00"), max_digits=10)),
            ],
            options={
                "ordering": ["-updated"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="Badge",
            fields=[
                *base_fields(),
                ("name", models.CharField(help_text="Short name", max_length=100, unique=True, verbose_name="Name")),
                (
                    "descr",
                    models.CharField(
                        blank=True, help_text="Extended description", max_length=500, verbose_name="Description"
                    ),
                ),
                ("icon", models.CharField(blank=True, max_length=20)),
                (
                    "category",
                    models.CharField(
                        choices=[("a", "Attendance"), ("m", "Milestone"), ("s", "Special")],
                        default="a",
                        max_length=1,
                    ),
                ),
                (
                    "criteria",
                    models.JSONField(
                        blank=True,
                        help_text='Automatic award rule, for example {"type": "event_count", "count": 5}',
                        null=True,
                        verbose_name="Criteria",
                    ),
                ),
                ("active", models.BooleanField(default=True)),
                ("order", models.IntegerField(default=0)),
            ],
            options={
                "ordering": ["order", "name"],
            },
        ),
        migrations.CreateModel(
            name="Membership",
            fields=[
                *base_fields(),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("p", "Pending"),
                            ("a", "Active"),
                            ("s", "Suspended"),
                            ("c", "Cancelled"),
                            ("e", "Expired"),
                        ],
                        db_index=True,
                        default="p",
                        max_length=1,
                    ),
                ),
                ("subscription_id", models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ("current_period_end", models.DateTimeField(blank=True, null=True)),
                (
                    "member",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="membership",
                        to="clubportal.member",
                    ),
                ),
            ],
            options={
                "ordering": ["-updated"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="UserBadge",
            fields=[
                *base_fields(),
                ("earned", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "badge",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="user_badges",
                        to="clubportal.badge",
                    ),
                ),
                (
                    "event",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to="clubportal.event",
                    ),
                ),
                (
                    "member",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="user_badges",
                        to="clubportal.member",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("member", "badge"), name="unique_user_badge"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Registration",
            fields=[
                *base_fields(),
                ("search", models.CharField(editable=False, max_length=150)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[("p", "Pending"), ("y", "Paid"), ("f", "Failed")],
                        db_index=True,
                        default="p",
                        max_length=1,
                    ),
                ),
                (
                    "amount_requested",
                    models.DecimalField(decimal_places=2, default=decimal.Decimal("0.00"), max_digits=10),
                ),
                ("amount_paid", models.DecimalField(decimal_places=2, default=decimal.Decimal("0.00"), max_digits=10)),
                ("payment_reference", models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ("gateway_order", models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ("payment_error", models.CharField(blank=True, default="", max_length=300)),
                ("payment_date", models.DateTimeField(blank=True, null=True)),
                ("checked_in", models.BooleanField(default=False)),
                ("checked_in_at", models.DateTimeField(blank=True, null=True)),
                ("cancellation_date", models.DateTimeField(blank=True, null=True)),
                (
                    "special_cod",
                    models.CharField(
                        db_index=True,
                        default=clubportal.models.utils.my_uuid_short,
                        max_length=12,
                        unique=True,
                        verbose_name="Unique code",
                    ),
                ),
                (
                    "checked_in_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="checkins_performed",
                        to="clubportal.member",
                    ),
                ),
                (
                    "event",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="registrations",
                        to="clubportal.event",
                    ),
                ),
                (
                    "member",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="registrations",
                        to="clubportal.member",
                    ),
                ),
            ],
            options={
                "ordering": ["-created"],
                "indexes": [
                    models.Index(fields=["event", "member", "cancellation_date"], name="reg_event_member_cancel"),
                    models.Index(
                        condition=Q(deleted__isnull=True, cancellation_date__isnull=True),
                        fields=["event", "payment_status"],
                        name="reg_event_status_active",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=Q(deleted=None, cancellation_date=None),
                        fields=("event", "member"),
                        name="unique_active_registration",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentInvoice",
            fields=[
                *base_fields(),
                ("search", models.CharField(editable=False, max_length=500)),
                (
                    "typ",
                    models.CharField(choices=[("r", "registration"), ("m", "membership")], max_length=1),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("r", "Created"), ("k", "Checked"), ("f", "Failed")],
                        db_index=True,
                        default="r",
                        max_length=1,
                    ),
                ),
                (
                    "mc_gross",
                    models.DecimalField(
                        decimal_places=2, help_text="Total payment sent", max_digits=10, null=True, verbose_name="Gross"
                    ),
                ),
                ("currency", models.CharField(default="USD", max_length=3)),
                ("txn_id", models.CharField(blank=True, max_length=100, null=True)),
                ("causal", models.CharField(max_length=200)),
                ("cod", models.CharField(db_index=True, max_length=100, unique=True)),
                (
                    "member",
                    models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="clubportal.member"),
                ),
                (
                    "reg",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="invoices",
                        to="clubportal.registration",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["member", "status"], name="invoice_member_status")],
            },
        ),
        migrations.CreateModel(
            name="ProcessedWebhook",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_id", models.CharField(max_length=100, unique=True)),
                ("event_type", models.CharField(max_length=100)),
                ("processed", models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name="Notification",
            fields=[
                *base_fields(),
                (
                    "typ",
                    models.CharField(
                        choices=[
                            ("badge_earned", "Badge earned"),
                            ("event_reminder", "Event reminder"),
                            ("payment", "Payment"),
                        ],
                        max_length=30,
                    ),
                ),
                ("title", models.CharField(max_length=200)),
                ("body", models.TextField(blank=True)),
                ("link", models.CharField(blank=True, max_length=200)),
                ("read", models.BooleanField(default=False)),
                (
                    "member",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to="clubportal.member",
                    ),
                ),
            ],
            options={
                "ordering": ["-created"],
            },
        ),
        migrations.CreateModel(
            name="ReminderJob",
            fields=[
                *base_fields(),
                ("days_before", models.IntegerField(default=1)),
                ("scheduled_for", models.DateTimeField(db_index=True)),
                (
                    "audience",
                    models.CharField(
                        choices=[
                            ("r", "All registered participants"),
                            ("u", "Participants with a pending payment"),
                            ("p", "Participants who completed the payment"),
                        ],
                        default="r",
                        max_length=1,
                    ),
                ),
                ("subject", models.CharField(blank=True, max_length=200)),
                (
                    "body",
                    models.TextField(
                        blank=True, help_text="Available placeholders: {{ first_name }}, {{ name }}, {{ event }}"
                    ),
                ),
                ("generic", models.BooleanField(default=True, verbose_name="Use the standard reminder text")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("p", "Pending"),
                            ("t", "Partially sent"),
                            ("s", "Sent"),
                            ("f", "Failed"),
                            ("c", "Cancelled"),
                        ],
                        db_index=True,
                        default="p",
                        max_length=1,
                    ),
                ),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("sent_count", models.IntegerField(default=0)),
                ("failed_count", models.IntegerField(default=0)),
                (
                    "event",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="reminders",
                        to="clubportal.event",
                    ),
                ),
            ],
            options={
                "ordering": ["scheduled_for"],
            },
        ),
        migrations.CreateModel(
            name="ReminderDelivery",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "status",
                    models.CharField(
                        choices=[("c", "Claimed"), ("s", "Sent"), ("f", "Failed")],
                        default="c",
                        max_length=1,
                    ),
                ),
                ("attempts", models.IntegerField(default=1)),
                ("claimed_at", models.DateTimeField()),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("error", models.CharField(blank=True, default="", max_length=500)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="deliveries",
                        to="clubportal.reminderjob",
                    ),
                ),
                (
                    "member",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="reminder_deliveries",
                        to="clubportal.member",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("job", "member"), name="unique_reminder_delivery"),
                ],
            },
        ),
    ]
