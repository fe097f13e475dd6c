"""
Bank service — PIX rail integration for instant BRL payouts.

Sends the fiat leg of a settlement. When BANK_API_URL is empty (dev/test)
the transfer is simulated; otherwise the bank's transfer API is called.
"""

import asyncio
import logging
import random
import time
from decimal import Decimal
from typing import Protocol

import httpx

from floatpay.config import settings
from floatpay.core.security import mask_key

logger = logging.getLogger(__name__)


class PayoutGateway(Protocol):
    async def send_payout(self, amount: Decimal, recipient_key: str, name: str) -> str:
        """Send *amount* to *recipient_key*; return the transfer id."""
        ...


class BankService:
    """PIX payout gateway (Stark Bank style end-to-end ids)."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        mock_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = settings.BANK_API_URL if base_url is None else base_url
        self.api_key = settings.BANK_API_KEY if api_key is None else api_key
        self.mock_delay = settings.BANK_MOCK_DELAY_SECONDS if mock_delay is None else mock_delay
        self.transport = transport

    async def send_payout(self, amount: Decimal, recipient_key: str, name: str) -> str:
        """
        Initiate a PIX transfer to *recipient_key*.

        Returns the end-to-end id. Raises on any transport or API error;
        the caller decides what a failed payout means.
        """
        logger.info(
            "Initiating PIX to %s (%s) for %s %.2f via %s",
            name, mask_key(recipient_key), settings.FIAT_CURRENCY, amount, self.base_url or "simulator",
        )

        if not self.base_url:
            await asyncio.sleep(self.mock_delay)
            end_to_end_id = f"E{int(time.time() * 1000)}RANDOM{random.randint(0, 999)}"
            logger.info("PIX sent (simulated). EndToEndId: %s", end_to_end_id)
            return end_to_end_id

        async with httpx.AsyncClient(
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS, transport=self.transport,
        ) as client:
            resp = await client.post(
                f"{self.base_url}/pix/transfers",
                json={
                    "amount": str(amount),
                    "currency": settings.FIAT_CURRENCY,
                    "pixKey": recipient_key,
                    "name": name,
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
            data = resp.json()

        end_to_end_id = data.get("endToEndId")
        if not end_to_end_id:
            raise RuntimeError(f"Bank API returned no endToEndId: {data}")

        logger.info("PIX sent. EndToEndId: %s", end_to_end_id)
        return end_to_end_id


bank_service = BankService()
