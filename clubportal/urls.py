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

from django.urls import path

from clubportal.views import accounting as views_a
from clubportal.views import api as views_api

urlpatterns = [
    path(
        "accounting/capture/",
        views_a.acc_capture,
        name="acc_capture",
    ),
    path(
        "accounting/checkout/<slug:event_slug>/",
        views_a.acc_checkout,
        name="acc_checkout",
    ),
    path(
        "accounting/webhook/paypal/",
        views_a.acc_webhook_paypal,
        name="acc_webhook_paypal",
    ),
    path(
        "api/check-in/self/<slug:event_slug>/",
        views_api.api_check_in_self,
        name="api_check_in_self",
    ),
    path(
        "api/check-in/<str:qr>/",
        views_api.api_check_in,
        name="api_check_in",
    ),
    path(
        "api/cron/send-reminders/",
        views_api.api_cron_send_reminders,
        name="api_cron_send_reminders",
    ),
    path(
        "api/cron/expire-pending/",
        views_api.api_cron_expire_pending,
        name="api_cron_expire_pending",
    ),
]
