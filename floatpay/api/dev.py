"""
Development endpoint — simulate a crypto deposit for a quote.

Only available when APP_ENV == "development".
"""

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, status

from floatpay.api.deps import get_quote_engine, get_settlement_coordinator
from floatpay.config import settings
from floatpay.schemas.settlement import ChainEvent, SimulateDepositRequest, SimulateDepositResponse
from floatpay.services.quote_engine import QuoteEngine
from floatpay.services.settlement_service import SettlementCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()

SIMULATED_PAYER_ADDRESS = "0x000000000000000000000000000000000000dEaD"


def simulate_webhook_payload(quote) -> dict:
    """Build a chain-watcher-format webhook dict paying *quote* exactly."""
    return {
        "hash": f"0x{secrets.token_hex(32)}",
        "from": SIMULATED_PAYER_ADDRESS,
        "to": quote.deposit_address,
        "value": str(quote.crypto_amount),
        "asset": quote.crypto_currency.value,
    }


@router.post("/simulate-deposit", response_model=SimulateDepositResponse)
async def simulate_deposit(
    payload: SimulateDepositRequest,
    engine: QuoteEngine = Depends(get_quote_engine),
    coordinator: SettlementCoordinator = Depends(get_settlement_coordinator),
):
    """
    Simulate the chain watcher reporting a deposit for a quote (dev only).

    Builds a mock webhook payload for the exact quoted amount and runs it
    through settlement without an HTTP round-trip.
    """
    if settings.APP_ENV != "development":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Simulate deposit is only available in development mode",
        )

    quote = await engine.get_quote(payload.quote_id)
    webhook_payload = simulate_webhook_payload(quote)
    logger.info("Simulating deposit for quote %s: %s", quote.id, webhook_payload["hash"])

    result = await coordinator.handle_chain_event(ChainEvent.model_validate(webhook_payload))
    return SimulateDepositResponse(result=result, webhook_payload=webhook_payload)
