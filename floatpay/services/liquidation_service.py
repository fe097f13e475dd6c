"""
Liquidation — sells received crypto after the fiat leg was paid.

The settlement path only *dispatches* liquidation; the sell runs on a
Celery worker. A dispatch or sell failure never fails the settlement but
is logged with quote id, amount and currency so the float position can be
reconciled by hand.
"""

import logging
from decimal import Decimal
from typing import Protocol

logger = logging.getLogger(__name__)


class LiquidationTrigger(Protocol):
    async def sell(self, amount: Decimal, currency: str) -> None:
        ...


class LiquidationDispatcher(Protocol):
    def dispatch(self, quote_id: str, amount: Decimal, currency: str) -> bool:
        """Hand the liquidation off without waiting; return whether it was queued."""
        ...


class MockExchangeConnector:
    """Logs a market sell order instead of placing one."""

    def __init__(self, exchange: str = "Binance"):
        self.exchange = exchange

    async def sell(self, amount: Decimal, currency: str) -> None:
        logger.info("[LIQUIDATION] Selling %s %s on %s (market order)", amount, currency, self.exchange)


def get_liquidation_trigger() -> LiquidationTrigger:
    return MockExchangeConnector()


class CeleryLiquidationDispatcher:
    """Queue ``liquidate_position`` on the Celery broker (blocking publish)."""

    def dispatch(self, quote_id: str, amount: Decimal, currency: str) -> bool:
        from floatpay.tasks.liquidation_tasks import liquidate_position

        try:
            # No publish retries: an unreachable broker fails fast and is reported
            liquidate_position.apply_async(args=(quote_id, str(amount), currency), retry=False)
        except Exception:
            logger.exception(
                "Liquidation dispatch failed, manual reconciliation needed "
                "(quote=%s, amount=%s, currency=%s)",
                quote_id, amount, currency,
            )
            return False

        logger.info("Liquidation queued: quote=%s amount=%s %s", quote_id, amount, currency)
        return True
