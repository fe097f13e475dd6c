"""
Payment endpoints — quotes and the chain watcher webhook.

Quote flow: the client requests a quote, pays the quoted crypto amount to
the deposit address, and the chain watcher calls the webhook, which
settles the quote with an instant PIX payout.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from floatpay.api.deps import get_quote_engine, get_settlement_coordinator
from floatpay.core.errors import ValidationError
from floatpay.core.security import verify_webhook_signature
from floatpay.schemas.quote import QuoteRequest, QuoteResponse
from floatpay.schemas.settlement import ChainEvent, SettlementResult
from floatpay.services.quote_engine import QuoteEngine
from floatpay.services.settlement_service import SettlementCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/quote", response_model=QuoteResponse)
async def create_quote(
    payload: QuoteRequest,
    engine: QuoteEngine = Depends(get_quote_engine),
):
    """
    Create a quote for converting ``amount`` of fiat into ``currency``.

    The quote locks the exchange rate and risk-adjusted spread for
    QUOTE_TTL_SECONDS (10 minutes). Returns 400 when the market is too
    volatile and 503 when pricing upstreams are unavailable.
    """
    quote = await engine.create_quote(
        payload.amount,
        payload.currency,
        recipient_key=payload.recipient_key,
        recipient_name=payload.recipient_name,
    )
    return QuoteResponse.from_quote(quote)


@router.get("/quote/{quote_id}", response_model=QuoteResponse)
async def get_quote(
    quote_id: str,
    engine: QuoteEngine = Depends(get_quote_engine),
):
    """Return a quote; quotes past their TTL are reported as ``expired``."""
    quote = await engine.get_quote(quote_id)
    return QuoteResponse.from_quote(quote)


@router.post("/quote/{quote_id}/cancel", response_model=QuoteResponse)
async def cancel_quote(
    quote_id: str,
    engine: QuoteEngine = Depends(get_quote_engine),
):
    """Cancel an active quote."""
    quote = await engine.cancel_quote(quote_id)
    return QuoteResponse.from_quote(quote)


@router.post("/webhook", response_model=SettlementResult)
async def chain_webhook(
    request: Request,
    coordinator: SettlementCoordinator = Depends(get_settlement_coordinator),
):
    """
    Chain watcher payment notification (Alchemy / Infura style).

    No auth — validated by HMAC-SHA256 signature in X-Alchemy-Signature.
    Body: ``{hash, from, to, value, asset}``.
    """
    body = await request.body()
    signature = request.headers.get("X-Alchemy-Signature", "")

    if not verify_webhook_signature(body, signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        event = ChainEvent.model_validate(json.loads(body))
    except ValueError as exc:
        raise ValidationError(f"Invalid webhook payload: {exc}") from exc

    return await coordinator.handle_chain_event(event)
