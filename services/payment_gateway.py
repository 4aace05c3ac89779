"""
Payment Gateway capability consumed by the escrow ledger.

The ledger only sees the abstract PaymentGateway. HttpPaymentGateway talks to
an external card-processing service over HTTP; the card network itself stays
behind that service.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import aiohttp

from config import Config
from services.escrow_exceptions import GatewayError

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer minor units (cents)"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    """Authorize/capture/transfer interface; implementations must be retry-safe"""

    @abstractmethod
    async def authorize(
        self,
        amount: Decimal,
        payer_ref: str,
        *,
        currency: str = "usd",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Place a hold on the payer's funds without capturing; returns the hold reference"""

    @abstractmethod
    async def capture(self, hold_ref: str) -> None:
        """Convert an authorization hold into a charge"""

    @abstractmethod
    async def transfer(
        self,
        amount: Decimal,
        destination_ref: str,
        group_ref: str,
        *,
        currency: str = "usd",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Move captured funds to the payee; returns the transfer reference"""

    @abstractmethod
    async def void(self, hold_ref: str) -> None:
        """Cancel an uncaptured authorization hold"""


class HttpPaymentGateway(PaymentGateway):
    """PaymentGateway backed by an HTTP card-processing service"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = (base_url or Config.PAYMENT_GATEWAY_BASE_URL).rstrip("/")
        self.api_key = api_key or Config.PAYMENT_GATEWAY_API_KEY
        self.timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or Config.PAYMENT_GATEWAY_TIMEOUT_SECONDS
        )
        self._session = session

        if not self.base_url or not self.api_key:
            logger.warning("Payment gateway credentials not configured - service will not function")

    def _get_headers(self, idempotency_key: str) -> Dict[str, str]:
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "Idempotency-Key": idempotency_key,
        }

    async def _post(self, operation: str, path: str, payload: Dict[str, Any], idempotency_key: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        session = self._session or aiohttp.ClientSession(timeout=self.timeout)
        try:
            async with session.post(url, json=payload, headers=self._get_headers(idempotency_key)) as response:
                if 200 <= response.status < 300:
                    return await response.json()

                error_text = await response.text()
                logger.error(f"❌ GATEWAY_{operation.upper()}: HTTP {response.status}: {error_text}")
                # 4xx is a definitive rejection, 5xx/429 may succeed on retry
                retryable = response.status >= 500 or response.status == 429
                raise GatewayError(
                    f"{operation} rejected with HTTP {response.status}",
                    operation=operation,
                    retryable=retryable,
                )
        except aiohttp.ClientError as e:
            logger.error(f"❌ GATEWAY_{operation.upper()}: network error: {e}")
            raise GatewayError(f"{operation} network error: {e}", operation=operation) from e
        finally:
            if self._session is None:
                await session.close()

    async def authorize(self, amount, payer_ref, *, currency="usd", metadata=None) -> str:
        metadata = metadata or {}
        data = await self._post(
            "authorize",
            "/authorizations",
            {
                "amount": to_minor_units(amount),
                "currency": currency,
                "payer": payer_ref,
                "capture_method": "manual",
                "metadata": metadata,
            },
            idempotency_key=f"authorize-{metadata.get('transactionId', payer_ref)}",
        )
        hold_ref = data.get("id")
        if not hold_ref:
            raise GatewayError("authorize response missing hold id", operation="authorize")
        logger.info(f"✅ GATEWAY_AUTHORIZE: hold {hold_ref} for {amount} {currency.upper()}")
        return hold_ref

    async def capture(self, hold_ref: str) -> None:
        await self._post("capture", f"/authorizations/{hold_ref}/capture", {}, idempotency_key=f"capture-{hold_ref}")
        logger.info(f"✅ GATEWAY_CAPTURE: hold {hold_ref} captured")

    async def transfer(self, amount, destination_ref, group_ref, *, currency="usd", metadata=None) -> str:
        metadata = metadata or {}
        data = await self._post(
            "transfer",
            "/transfers",
            {
                "amount": to_minor_units(amount),
                "currency": currency,
                "destination": destination_ref,
                "transfer_group": group_ref,
                "metadata": metadata,
            },
            idempotency_key=f"transfer-{group_ref}-{metadata.get('transactionId', destination_ref)}",
        )
        transfer_ref = data.get("id")
        if not transfer_ref:
            raise GatewayError("transfer response missing transfer id", operation="transfer")
        logger.info(f"✅ GATEWAY_TRANSFER: {transfer_ref} to {destination_ref} (group {group_ref})")
        return transfer_ref

    async def void(self, hold_ref: str) -> None:
        await self._post("void", f"/authorizations/{hold_ref}/void", {}, idempotency_key=f"void-{hold_ref}")
        logger.info(f"✅ GATEWAY_VOID: hold {hold_ref} cancelled")
