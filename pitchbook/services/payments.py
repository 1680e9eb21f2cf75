"""
Payment gateway – confirms online payments with the external provider.

The booking service only needs ``confirm_payment``; anything that satisfies
:class:`PaymentGateway` can be plugged in.  ``HttpPaymentGateway`` talks
JSON over HTTP to a provider at ``PAYMENT_API_URL``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import httpx

from pitchbook.errors import PaymentError

logger = logging.getLogger(__name__)

_CONFIRM_PATH = "/payments/confirm"

DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": "PitchBook/0.1",
    "Accept": "application/json",
    "Content-Type": "application/json",
}


@dataclass(frozen=True)
class PaymentRef:
    """Provider-side receipt for a settled payment."""

    reference: str
    amount: Decimal
    currency: str


class PaymentGateway(Protocol):
    async def confirm_payment(
        self, reservation_id: str, amount: Decimal, currency: str
    ) -> PaymentRef:
        """Charge *amount* for the reservation. Raises ``PaymentError``."""
        ...


def to_minor_units(amount: Decimal) -> int:
    """Providers take integer minor units (cents)."""
    return int((amount * 100).to_integral_value())


class HttpPaymentGateway:
    """Async HTTP client for the payment provider."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = dict(DEFAULT_HEADERS)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ── /payments/confirm ─────────────────────────────────────────────

    async def confirm_payment(
        self, reservation_id: str, amount: Decimal, currency: str
    ) -> PaymentRef:
        payload = {
            "reservation_id": reservation_id,
            "amount_minor": to_minor_units(amount),
            "currency": currency,
        }
        logger.debug("confirm_payment request: %s", payload)
        try:
            resp = await self._client.post(_CONFIRM_PATH, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            raise PaymentError(
                f"Provider rejected payment for {reservation_id}: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise PaymentError(f"Payment provider unreachable: {exc}") from exc
        except ValueError as exc:
            raise PaymentError("Payment provider returned invalid JSON") from exc

        if not isinstance(body, dict) or body.get("status") != "succeeded":
            status = body.get("status") if isinstance(body, dict) else None
            raise PaymentError(f"Payment for {reservation_id} not settled (status={status!r})")

        reference = body.get("reference") or body.get("id")
        if not reference:
            raise PaymentError("Payment provider returned no reference")
        return PaymentRef(reference=str(reference), amount=amount, currency=currency)
