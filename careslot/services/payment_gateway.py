"""
Payment gateway client (Paystack).

All amounts cross this boundary in minor units (kobo). Conversion from the
appointment's major-unit amount happens once, in `to_minor_units`, and is used
by both the initialize and refund paths.

Verification is idempotent and gets one retry on transport failure.
Initialization and refunds are never retried here: a refund that timed out may
still have been issued, so it is surfaced to the caller instead.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import httpx

from careslot.core.config import settings
from careslot.utils.errors import GatewayError

logger = logging.getLogger(__name__)


def to_minor_units(amount) -> int:
    return int((Decimal(str(amount or 0)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class PaymentInitialization:
    redirect_url: str
    reference: str


@dataclass
class PaymentVerification:
    success: bool
    amount_minor_units: int
    status: str


@dataclass
class RefundResult:
    success: bool


class PaymentGateway(ABC):

    @abstractmethod
    async def initialize(self, amount_minor_units: int, payer_contact: str, reference: str) -> PaymentInitialization:
        ...

    @abstractmethod
    async def verify(self, reference: str) -> PaymentVerification:
        ...

    @abstractmethod
    async def refund(self, reference: str, amount_minor_units: int) -> RefundResult:
        ...


class PaystackGateway(PaymentGateway):
    """Paystack REST client."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key or settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self.callback_url = f"{settings.API_URL.rstrip('/')}/payments/callback"
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _send(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        retry: bool = False,
    ) -> Dict[str, Any]:
        if not self.secret_key:
            raise GatewayError("Payment service is not configured")

        attempts = 2 if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    transport=self._transport,
                ) as client:
                    response = await client.request(method, path, json=json, headers=self._headers())
            except httpx.TransportError as e:
                logger.warning(f"Paystack {method} {path} failed (attempt {attempt}/{attempts}): {e}")
                if attempt < attempts:
                    continue
                raise GatewayError("Payment provider is unreachable") from e

            if response.status_code >= 500 and attempt < attempts:
                logger.warning(f"Paystack {method} {path} returned {response.status_code}, retrying")
                continue

            try:
                data = response.json()
            except ValueError:
                data = {}

            if response.is_error:
                message = data.get("message") or f"HTTP {response.status_code}"
                logger.error(f"Paystack API error on {path}: {message}")
                raise GatewayError(message)
            return data

        raise GatewayError("Payment provider request failed")

    async def initialize(self, amount_minor_units: int, payer_contact: str, reference: str) -> PaymentInitialization:
        data = await self._send(
            "POST",
            "/transaction/initialize",
            json={
                "amount": amount_minor_units,
                "email": payer_contact,
                "reference": reference,
                "callback_url": self.callback_url,
            },
        )
        url = (data.get("data") or {}).get("authorization_url")
        if data.get("status") is not True or not url:
            raise GatewayError(data.get("message") or "Paystack did not return a payment URL.")
        return PaymentInitialization(redirect_url=url, reference=reference)

    async def verify(self, reference: str) -> PaymentVerification:
        data = await self._send("GET", f"/transaction/verify/{reference}", retry=True)
        tx = data.get("data") or {}
        tx_status = tx.get("status") or "unknown"
        return PaymentVerification(
            success=data.get("status") is True and tx_status == "success",
            amount_minor_units=int(tx.get("amount") or 0),
            status=tx_status,
        )

    async def refund(self, reference: str, amount_minor_units: int) -> RefundResult:
        data = await self._send(
            "POST",
            "/refund",
            json={"transaction": reference, "amount": amount_minor_units},
        )
        if data.get("status") is not True:
            raise GatewayError(data.get("message") or "Refund was not accepted")
        return RefundResult(success=True)
