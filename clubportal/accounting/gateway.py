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

"""PayPal REST integration used for registration payments and memberships."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Any

import requests
from django.conf import settings as conf_settings

from clubportal.models.utils import decimal_to_str, to_amount
from clubportal.utils.exceptions import GatewayError

logger = logging.getLogger(__name__)

# Seconds subtracted from the token lifetime so it is refreshed before it expires
TOKEN_EXPIRY_MARGIN = 300

CAPTURE_COMPLETED = "COMPLETED"

ALREADY_CAPTURED_ISSUE = "ORDER_ALREADY_CAPTURED"

WEBHOOK_HEADERS = {
    "auth_algo": "PAYPAL-AUTH-ALGO",
    "cert_url": "PAYPAL-CERT-URL",
    "transmission_id": "PAYPAL-TRANSMISSION-ID",
    "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
}


@dataclass
class GatewayOrder:
    """Order or subscription opened on the gateway, waiting for the payer approval."""

    id: str
    approval_link: str | None
    status: str = ""


@dataclass
class CaptureResult:
    status: str
    captured_amount: Decimal
    transaction_id: str | None = None
    currency: str = ""
    issue: str | None = None

    def is_completed(self) -> bool:
        return self.status == CAPTURE_COMPLETED and self.captured_amount > 0


class PayPalClient:
    """Thin client for the PayPal v1/v2 REST API.

    Every call is bounded by timeout seconds. Transport errors, server
    errors and unreadable answers are raised as :class:`GatewayError`, so
    callers only need to tell a clean answer from a system failure.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_base: str,
        timeout: float = 20,
        currency: str = "USD",
        brand_name: str = "",
        webhook_id: str = "",
        plan_id: str = "",
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.currency = currency
        self.brand_name = brand_name
        self.webhook_id = webhook_id
        self.plan_id = plan_id
        self._token = None
        self._token_expires_at = 0.0

    # AUTH

    def get_access_token(self) -> str:
        """Return a client-credentials token, reusing the cached one until it is close to expiry."""
        if self._token and self._token_expires_at > time.monotonic():
            return self._token

        if not self.client_id or not self.client_secret:
            msg = "PayPal credentials not configured"
            raise GatewayError(msg)

        try:
            response = requests.post(
                f"{self.api_base}/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("PayPal token request failed: %s", e)
            msg = "Unable to reach the payment gateway"
            raise GatewayError(msg) from e

        if response.status_code != 200:
            logger.error("PayPal token request refused: %s %s", response.status_code, response.text)
            msg = "Payment gateway authentication failed"
            raise GatewayError(msg, status_code=response.status_code)

        data = self._parse(response)
        try:
            self._token = data["access_token"]
            expires_in = int(data.get("expires_in", 0))
        except (KeyError, TypeError, ValueError) as e:
            msg = "Invalid token response from payment gateway"
            raise GatewayError(msg) from e

        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        return self._token

    # TRANSPORT

    @staticmethod
    def _parse(response: requests.Response) -> dict:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            msg = f"Unreadable answer from payment gateway: {response.text[:200]}"
            logger.error(msg)
            raise GatewayError(msg, status_code=response.status_code) from e
        if not isinstance(data, dict):
            msg = "Unexpected answer from payment gateway"
            raise GatewayError(msg, status_code=response.status_code)
        return data

    def _request(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        headers: dict | None = None,
        accept: tuple[int, ...] = (),
    ) -> tuple[int, dict]:
        """Perform an authenticated API call.

        Args:
            method: HTTP method
            path: API path, e.g. ``/v2/checkout/orders``
            payload: JSON body, if any
            headers: Extra request headers
            accept: Non-2xx status codes returned to the caller instead of raising

        Returns:
            Tuple of HTTP status code and decoded JSON body

        Raises:
            GatewayError: On transport errors, timeouts, unexpected statuses or invalid JSON

        """
        request_headers = {
            "Authorization": f"Bearer {self.get_access_token()}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)

        try:
            response = requests.request(
                method,
                f"{self.api_base}{path}",
                json=payload,
                headers=request_headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            logger.warning("PayPal %s %s timed out", method, path)
            msg = "Payment gateway timed out"
            raise GatewayError(msg) from e
        except requests.RequestException as e:
            logger.warning("PayPal %s %s failed: %s", method, path, e)
            msg = "Unable to reach the payment gateway"
            raise GatewayError(msg) from e

        status_code = response.status_code
        if 200 <= status_code < 300 or status_code in accept:
            return status_code, self._parse(response)

        if status_code == 401:
            # force a new token on the next call
            self._token = None

        debug_id = response.headers.get("PayPal-Debug-Id")
        logger.error("PayPal %s %s answered %s: %s", method, path, status_code, response.text[:500])
        msg = f"Payment gateway error ({status_code})"
        raise GatewayError(msg, status_code=status_code, debug_id=debug_id)

    @staticmethod
    def _find_link(data: dict, *rels: str) -> str | None:
        for link in data.get("links", []):
            if link.get("rel") in rels:
                return link.get("href")
        return None

    # ORDERS

    def create_order(
        self,
        amount: Decimal,
        return_url: str,
        cancel_url: str,
        metadata: dict | None = None,
        description: str = "",
    ) -> GatewayOrder:
        """Open a one-time payment order and return its id and approval link."""
        purchase_unit = {
            "amount": {"currency_code": self.currency, "value": decimal_to_str(amount)},
            "description": description[:127],
        }
        if metadata:
            purchase_unit["custom_id"] = json.dumps(metadata)[:127]

        _status, data = self._request(
            "POST",
            "/v2/checkout/orders",
            {
                "intent": "CAPTURE",
                "purchase_units": [purchase_unit],
                "application_context": {
                    "brand_name": self.brand_name,
                    "landing_page": "BILLING",
                    "user_action": "PAY_NOW",
                    "return_url": return_url,
                    "cancel_url": cancel_url,
                },
            },
        )
        if "id" not in data:
            msg = "Payment gateway did not return an order id"
            raise GatewayError(msg)
        return GatewayOrder(
            id=data["id"],
            approval_link=self._find_link(data, "approve", "payer-action"),
            status=data.get("status", ""),
        )

    def get_order(self, token: str) -> dict:
        _status, data = self._request("GET", f"/v2/checkout/orders/{token}")
        return data

    def capture_order(self, token: str) -> CaptureResult:
        """Capture an approved order.

        The request carries a ``PayPal-Request-Id`` derived from the order, so a
        retried capture is deduplicated by the gateway. When the order was
        already captured, the existing capture is fetched and returned.

        Args:
            token: Gateway order id returned to the payer redirect

        Returns:
            CaptureResult: COMPLETED with the captured amount, or the declined status

        Raises:
            GatewayError: If the gateway cannot be reached or answers with a server error

        """
        status_code, data = self._request(
            "POST",
            f"/v2/checkout/orders/{token}/capture",
            headers={"PayPal-Request-Id": f"capture-{token}"},
            accept=(400, 403, 404, 422),
        )
        if 200 <= status_code < 300:
            return self._parse_capture(data)

        issue = self._issue(data)
        if issue == ALREADY_CAPTURED_ISSUE:
            logger.info("PayPal order %s already captured, fetching existing capture", token)
            return self._parse_capture(self.get_order(token))

        logger.info("PayPal capture of %s refused: %s %s", token, status_code, issue)
        return CaptureResult(status=issue or "DECLINED", captured_amount=Decimal("0.00"), issue=issue)

    @staticmethod
    def _issue(data: dict) -> str | None:
        details = data.get("details") or []
        if details and isinstance(details[0], dict):
            return details[0].get("issue")
        return data.get("name")

    @staticmethod
    def _parse_capture(data: dict) -> CaptureResult:
        captures = []
        for unit in data.get("purchase_units", []):
            captures.extend((unit.get("payments") or {}).get("captures") or [])

        if not captures:
            return CaptureResult(status=data.get("status", ""), captured_amount=Decimal("0.00"))

        capture = captures[0]
        amount = capture.get("amount") or {}
        return CaptureResult(
            status=capture.get("status", data.get("status", "")),
            captured_amount=to_amount(amount.get("value")),
            transaction_id=capture.get("id"),
            currency=amount.get("currency_code", ""),
        )

    # SUBSCRIPTIONS

    def create_subscription(
        self,
        return_url: str,
        cancel_url: str,
        metadata: dict | None = None,
        plan_id: str | None = None,
        subscriber_email: str | None = None,
        subscriber_name: str | None = None,
    ) -> GatewayOrder:
        """Open a recurring membership subscription on the configured plan."""
        plan_id = plan_id or self.plan_id
        if not plan_id:
            msg = "Membership plan not configured"
            raise GatewayError(msg)

        payload: dict[str, Any] = {
            "plan_id": plan_id,
            "application_context": {
                "brand_name": self.brand_name,
                "user_action": "SUBSCRIBE_NOW",
                "payment_method": {
                    "payer_selected": "PAYPAL",
                    "payee_preferred": "IMMEDIATE_PAYMENT_REQUIRED",
                },
                "return_url": return_url,
                "cancel_url": cancel_url,
            },
        }
        if metadata:
            payload["custom_id"] = json.dumps(metadata)[:127]
        if subscriber_email:
            payload["subscriber"] = {"email_address": subscriber_email}
            if subscriber_name:
                payload["subscriber"]["name"] = {"given_name": subscriber_name}

        _status, data = self._request("POST", "/v1/billing/subscriptions", payload)
        if "id" not in data:
            msg = "Payment gateway did not return a subscription id"
            raise GatewayError(msg)
        return GatewayOrder(
            id=data["id"],
            approval_link=self._find_link(data, "approve"),
            status=data.get("status", ""),
        )

    def get_subscription(self, subscription_id: str) -> dict:
        _status, data = self._request("GET", f"/v1/billing/subscriptions/{subscription_id}")
        return data

    def cancel_subscription(self, subscription_id: str, reason: str = "Cancelled by user") -> None:
        self._request("POST", f"/v1/billing/subscriptions/{subscription_id}/cancel", {"reason": reason})

    # WEBHOOKS

    def verify_webhook(self, headers: Any, body: bytes | str) -> bool:
        """Ask the gateway whether a webhook delivery carries a valid signature.

        Args:
            headers: Request headers (case-insensitive mapping, e.g. ``request.headers``)
            body: Raw request body

        Returns:
            bool: True only if the gateway confirms the signature

        """
        if not self.webhook_id:
            return False

        try:
            webhook_event = json.loads(body)
        except ValueError:
            return False

        payload = {key: headers.get(header, "") for key, header in WEBHOOK_HEADERS.items()}
        payload["webhook_id"] = self.webhook_id
        payload["webhook_event"] = webhook_event

        status_code, data = self._request(
            "POST", "/v1/notifications/verify-webhook-signature", payload, accept=(400, 403, 422)
        )
        if status_code >= 300:
            return False
        return data.get("verification_status") == "SUCCESS"


@lru_cache(maxsize=1)
def get_gateway() -> PayPalClient:
    """Return the process-wide gateway client built from settings."""
    return PayPalClient(
        client_id=conf_settings.PAYPAL_CLIENT_ID,
        client_secret=conf_settings.PAYPAL_CLIENT_SECRET,
        api_base=conf_settings.PAYPAL_API_BASE,
        timeout=conf_settings.PAYPAL_TIMEOUT,
        currency=conf_settings.PAYMENT_CURRENCY,
        brand_name=conf_settings.PAYPAL_BRAND_NAME,
        webhook_id=conf_settings.PAYPAL_WEBHOOK_ID,
        plan_id=conf_settings.PAYPAL_MEMBERSHIP_PLAN_ID,
    )
