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

from django.conf import settings as conf_settings

from clubportal.models.member import Member
from clubportal.models.notification import Notification


def hdr(obj=None) -> str:
    """Return the bracketed subject prefix, with the event name when available."""
    brand = getattr(conf_settings, "PAYPAL_BRAND_NAME", "ClubPortal")
    event = getattr(obj, "event", None)
    if event is not None:
        return f"[{brand}] [{event.name}] "
    return f"[{brand}] "


def get_url(path: str = "") -> str:
    """Return an absolute link to a page of the public site."""
    base = conf_settings.FRONTEND_URL.rstrip("/")
    if not path:
        return base
    return f"{base}/{path.lstrip('/')}"


def notify_member(member: Member, typ: str, title: str, body: str = "", link: str = "") -> Notification:
    """Create an in-app notification for the member dashboard."""
    return Notification.objects.create(member=member, typ=typ, title=title[:200], body=body, link=link[:200])
