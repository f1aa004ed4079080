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

"""Queued work and outgoing email."""

from __future__ import annotations

import logging
import re
import traceback
from functools import wraps
from typing import TYPE_CHECKING, Any

from background_task import background
from django.conf import settings as conf_settings
from django.core.mail import EmailMultiAlternatives, get_connection
from django.db import transaction
from django.utils.html import strip_tags

from clubportal.models.member import Member

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

# Scheduling options understood by django-background-tasks, not by the task itself
QUEUE_OPTIONS = ("schedule", "repeat", "repeat_until", "remove_existing_tasks", "verbose_name", "creator")


def background_auto(schedule: int = 0, **task_options: Any) -> Callable:
    """Register a function as a background task that can also run inline.

    With ``AUTO_BACKGROUND_TASKS`` enabled (tests, small installs without a
    task runner) calling the function executes it right away; otherwise the
    call is queued through django-background-tasks.

    Args:
        schedule: Default delay in seconds before the queued task runs
        **task_options: Extra options for ``background``, e.g. ``queue``

    Returns:
        Decorator producing the wrapped callable, with the queued task
        available as ``.task`` and the plain function as ``.task_function``

    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        queued = background(schedule=schedule, **task_options)(func)

        @wraps(func)
        def run(*args: Any, **kwargs: Any) -> Any:
            if not getattr(conf_settings, "AUTO_BACKGROUND_TASKS", False):
                return queued(*args, **kwargs)
            call_kwargs = {name: value for name, value in kwargs.items() if name not in QUEUE_OPTIONS}
            return func(*args, **call_kwargs)

        run.task = queued
        run.task_function = func
        return run

    return decorator


def after_commit(func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    """Run ``func`` once the current transaction commits, like a queued task would.

    Nothing runs if the transaction rolls back. Outside a transaction the call
    happens right away. A failure of ``func`` is logged and never reaches the
    code that scheduled it, so a mail outage cannot undo a committed change.
    """

    def run() -> None:
        try:
            func(*args, **kwargs)
        except Exception:
            logger.exception("Deferred %s failed", getattr(func, "__name__", func))

    transaction.on_commit(run)


# MAIL


def mail_error(subject: str, body: str, exception: Exception | None = None) -> None:
    """Report an undeliverable email to the administrators."""
    logger.error("Unable to send email %r: %s", subject, exception)
    logger.debug("Undelivered body: %s", body)

    report = f"{subject}<br /><br />{body}"
    if exception:
        report = f"{traceback.format_exc()}<br /><br />{report}"

    for _name, admin_email in conf_settings.ADMINS:
        try:
            _send_message("[ClubPortal] Mail error", report, admin_email)
        except Exception as admin_error:
            logger.error("Mail error report to %s failed too: %s", admin_email, admin_error)


def clean_sender(sender_name: str) -> str:
    """Reduce a display name to characters safe in a From header."""
    sender_name = sender_name.replace(":", " ").split(",")[0]
    sender_name = re.sub(r"[^a-zA-Z0-9\s\-\']", "", sender_name)
    return " ".join(sender_name.split())


def _build_email_message(subj: str, body: str, m_email: str, reply_to: str | None = None) -> EmailMultiAlternatives:
    brand = clean_sender(getattr(conf_settings, "PAYPAL_BRAND_NAME", "ClubPortal"))
    headers = {"List-Unsubscribe": f"<mailto:{conf_settings.DEFAULT_FROM_EMAIL}>"}
    if reply_to:
        headers["Reply-To"] = reply_to

    email = EmailMultiAlternatives(
        subject=subj,
        body=strip_tags(body),
        from_email=f"{brand} <{conf_settings.DEFAULT_FROM_EMAIL}>",
        to=[m_email],
        headers=headers,
    )
    email.attach_alternative(body, "text/html")
    return email


def _send_message(subj: str, body: str, m_email: str, reply_to: str | None = None) -> None:
    get_connection().send_messages([_build_email_message(subj, body, m_email, reply_to)])


def my_send_simple_mail(subj: str, body: str, m_email: str, reply_to: str | None = None) -> None:
    """Deliver an email now, with a plain text part derived from the HTML body.

    Raises:
        Exception: whatever the mail backend raised, after reporting it with ``mail_error``

    """
    try:
        _send_message(subj, body, m_email, reply_to)
    except Exception as err:
        mail_error(subj, body, err)
        raise

    if conf_settings.DEBUG:
        logger.info("Sent email %r to %s", subj, m_email)


@background_auto(queue="mail")
def my_send_mail_bkg(subj: str, body: str, m_email: str, reply_to: str | None = None) -> None:
    my_send_simple_mail(subj, body, m_email, reply_to)


def my_send_mail(
    subject: str,
    body: str,
    recipient: str | Member,
    reply_to: str | None = None,
    schedule: int = 0,
) -> None:
    """Queue an email for a member or an address.

    Args:
        subject: Subject line, repeated spaces are collapsed
        body: HTML body
        recipient: Member or email address; nothing is sent when it has no address
        reply_to: Optional Reply-To address
        schedule: Seconds to wait before sending

    """
    if isinstance(recipient, Member):
        recipient = recipient.email
    subject = re.sub(r" {2,}", " ", str(subject))

    if not recipient:
        logger.warning("Email %r has no recipient, skipped", subject)
        return

    my_send_mail_bkg(subject, str(body), recipient, reply_to, schedule=schedule)


def notify_admins(subject: str, message_text: str = "", exception: Exception | None = None) -> None:
    """Mail an operational alert to every address in ``ADMINS``.

    Args:
        subject: Alert subject
        message_text: Alert details
        exception: Exception whose traceback is appended, if any

    """
    message_text = str(message_text)
    if exception is not None:
        message_text += "\n" + "".join(traceback.format_exception(type(exception), exception, exception.__traceback__))

    for _name, admin_email in conf_settings.ADMINS:
        my_send_mail(subject, message_text, admin_email)
