"""Async Paystack client: transaction initialization, verification, and
webhook signature checks.

Amounts go over the wire in the currency's minor unit (cents/kobo).
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import httpx

from beatbloom.config import settings


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class PaystackTransaction:
    """Result of POST /transaction/initialize."""

    reference: str
    authorization_url: str
    access_code: str


@dataclass
class PaystackVerification:
    """Result of GET /transaction/verify/:reference."""

    reference: str
    status: str
    amount_minor: int
    currency: str
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------

class PaystackError(Exception):
    """Raised when Paystack rejects a request or returns an unexpected body."""


class PaystackTimeoutError(PaystackError):
    """Raised when Paystack does not answer within the client timeout."""


class PaystackConnectionError(PaystackError):
    """Raised when the Paystack API is unreachable."""


# ---------------------------------------------------------------------------
# Signature verification
# ---------------------------------------------------------------------------

def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha512).hexdigest()


def verify_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """Check ``x-paystack-signature`` (HMAC-SHA512 of the raw body)."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(compute_signature(payload, secret), signature)


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


# ---------------------------------------------------------------------------
# PaystackClient
# ---------------------------------------------------------------------------

class PaystackClient:
    """Async client for the Paystack transaction API."""

    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def initialize_transaction(
        self,
        email: str,
        amount: Decimal,
        reference: str,
        currency: str = "USD",
        callback_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PaystackTransaction:
        """Start a hosted checkout for ``amount`` under our own ``reference``."""
        payload: dict[str, Any] = {
            "email": email,
            "amount": to_minor_units(amount),
            "reference": reference,
            "currency": currency,
            "metadata": metadata or {},
        }
        if callback_url:
            payload["callback_url"] = callback_url

        data = await self._request("POST", "/transaction/initialize", json=payload)
        try:
            return PaystackTransaction(
                reference=data["reference"],
                authorization_url=data["authorization_url"],
                access_code=data["access_code"],
            )
        except KeyError as exc:
            raise PaystackError(f"Missing field in initialize response: {exc}") from exc

    async def verify_transaction(self, reference: str) -> PaystackVerification:
        data = await self._request("GET", f"/transaction/verify/{reference}")
        try:
            return PaystackVerification(
                reference=data["reference"],
                status=data["status"],
                amount_minor=int(data["amount"]),
                currency=data.get("currency", "USD"),
                raw=data,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise PaystackError(f"Malformed verify response: {exc}") from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        """Send a request and return the ``data`` member of the envelope.

        Raises:
            PaystackTimeoutError: on request timeout.
            PaystackConnectionError: on connection failure.
            PaystackError: on a non-2xx status or ``status: false`` body.
        """
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=headers,
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise PaystackTimeoutError(
                f"Paystack request timed out after {self.timeout}s"
            ) from exc
        except httpx.ConnectError as exc:
            raise PaystackConnectionError(
                f"Cannot connect to Paystack at {self.base_url}"
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise PaystackError(
                f"Non-JSON response from Paystack ({response.status_code})"
            ) from exc

        if response.is_error or not body.get("status"):
            raise PaystackError(body.get("message") or f"HTTP {response.status_code}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise PaystackError("Paystack response has no data object")
        return data
