"""Mercado Pago payments API — payment lookup by id.

Docs: https://www.mercadopago.com.ar/developers/en/reference/payments/_payments_id/get
"""

import logging
import time
from typing import Any

import httpx

from app.config import ConfigurationError, settings

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """The payment gateway could not return the payment."""


class MercadoPagoClient:
    """Async client for the Mercado Pago payments API."""

    def __init__(self, access_token: str | None = None, base_url: str | None = None, timeout: float = 30):
        self.access_token = access_token or settings.mp_access_token
        if not self.access_token:
            raise ConfigurationError("Mercado Pago Access Token not configured")
        self.base_url = (base_url or settings.mp_api_url).rstrip("/")
        self.timeout = timeout

    async def get_payment(self, payment_id: str) -> dict[str, Any]:
        """Return the payment body: status, transaction_amount, external_reference, ..."""
        url = f"{self.base_url}/v1/payments/{payment_id}"
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.error("Mercado Pago error | payment=%s | %dms | %s", payment_id, elapsed_ms, str(e)[:200])
            raise PaymentGatewayError(f"Failed to fetch payment from Mercado Pago: {e}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if resp.status_code != 200:
            logger.warning("Mercado Pago | payment=%s | status=%d | %dms", payment_id, resp.status_code, elapsed_ms)
            raise PaymentGatewayError(f"Failed to fetch payment from Mercado Pago: {resp.status_code}")

        data = resp.json()
        logger.info(
            "Mercado Pago OK | payment=%s | status=%s | %dms",
            payment_id, data.get("status"), elapsed_ms,
        )
        return data
