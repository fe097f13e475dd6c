"""
Liquidation Celery tasks — sell crypto received in a float settlement.

Dispatched fire-and-forget by the settlement coordinator once the fiat
payout went out.
"""

import asyncio
import logging
from decimal import Decimal

from floatpay.services.liquidation_service import get_liquidation_trigger
from floatpay.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="floatpay.tasks.liquidation_tasks.liquidate_position")
def liquidate_position(quote_id: str, amount: str, currency: str):
    """
    Sell *amount* of *currency* for a settled quote.

    Celery tasks are synchronous, so the async connector runs in its own
    event loop. Failures are logged with full context and re-raised so
    the task is recorded as failed.
    """
    logger.info("Starting liquidation for quote %s: %s %s", quote_id, amount, currency)
    loop = asyncio.new_event_loop()
    try:
        trigger = get_liquidation_trigger()
        loop.run_until_complete(trigger.sell(Decimal(amount), currency))
        logger.info("Liquidation completed for quote %s", quote_id)
        return {"quote_id": quote_id, "amount": amount, "currency": currency, "status": "sold"}
    except Exception:
        logger.exception(
            "Liquidation failed, treasury exposed until reconciled "
            "(quote=%s, amount=%s, currency=%s)",
            quote_id, amount, currency,
        )
        raise
    finally:
        loop.close()
