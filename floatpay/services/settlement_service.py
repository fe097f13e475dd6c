"""
Settlement coordinator — matches chain payments to quotes and pays out.

Float settlement: the fiat leg is paid as soon as the crypto deposit is
seen, before the crypto is sold. Liquidation is dispatched afterwards and
never blocks or fails the settlement response.

Sequence per chain event:
  1. Redelivery guard (tx hash already settled a quote)
  2. Match exactly one ACTIVE, unexpired quote by asset and amount
  3. Per-quote critical section: re-check, pay out, ACTIVE -> SETTLED
  4. Audit the fiat movement
  5. Dispatch liquidation
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from floatpay.config import settings
from floatpay.core.errors import (
    AlreadySettled,
    AmbiguousMatch,
    NoMatchingQuote,
    PayoutFailed,
)
from floatpay.models.quote import Quote, QuoteStatus
from floatpay.schemas.settlement import ChainEvent, SettlementResult
from floatpay.services.audit_service import AuditLog
from floatpay.services.bank_service import PayoutGateway
from floatpay.services.liquidation_service import LiquidationDispatcher
from floatpay.services.quote_store import QuoteStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def amount_within_tolerance(received: Decimal, expected: Decimal, tolerance_percent: Decimal) -> bool:
    """True when *received* is within ``tolerance_percent`` of *expected*."""
    if expected <= 0:
        return False
    return abs(received - expected) <= expected * tolerance_percent / Decimal("100")


class SettlementCoordinator:
    """Turns a confirmed chain deposit into a fiat payout."""

    def __init__(
        self,
        store: QuoteStore,
        payout_gateway: PayoutGateway,
        audit_log: AuditLog,
        liquidation_dispatcher: LiquidationDispatcher,
        clock: Callable[[], datetime] = utcnow,
        tolerance_percent: Decimal | float | None = None,
    ):
        self.store = store
        self.payout_gateway = payout_gateway
        self.audit_log = audit_log
        self.liquidation_dispatcher = liquidation_dispatcher
        self.clock = clock
        if tolerance_percent is None:
            tolerance_percent = settings.MATCH_TOLERANCE_PERCENT
        self.tolerance_percent = Decimal(str(tolerance_percent))

    # --- Matching ---

    async def match_quote(self, event: ChainEvent) -> Quote:
        """
        Find the single quote this payment is for.

        Raises NoMatchingQuote for zero candidates and AmbiguousMatch for
        more than one; the most recent quote is never picked by default.
        """
        now = self.clock()
        candidates = [
            quote
            for quote in await self.store.active_candidates(event.asset, now)
            if quote.is_usable(now)
            and amount_within_tolerance(event.amount, quote.crypto_amount, self.tolerance_percent)
        ]

        if not candidates:
            raise NoMatchingQuote(
                f"No active {event.asset} quote matches payment of {event.amount}"
            )
        if len(candidates) > 1:
            ids = ", ".join(q.id for q in candidates)
            logger.warning(
                "Ambiguous payment %s: %s %s matches %d quotes (%s)",
                event.tx_hash, event.amount, event.asset, len(candidates), ids,
            )
            raise AmbiguousMatch(
                f"Payment of {event.amount} {event.asset} matches {len(candidates)} quotes: {ids}"
            )
        return candidates[0]

    # --- Settlement ---

    async def handle_chain_event(self, event: ChainEvent) -> SettlementResult:
        logger.info(
            "Blockchain webhook received: %s | %s %s (%s -> %s)",
            event.tx_hash, event.amount, event.asset, event.from_address, event.to_address,
        )

        if await self.store.find_by_tx_hash(event.tx_hash) is not None:
            raise AlreadySettled(f"Transaction {event.tx_hash} already settled a quote")

        matched = await self.match_quote(event)

        async with self.store.lock(matched.id):
            # Re-read inside the critical section; another event may have won
            quote = await self.store.get(matched.id)
            if quote is None:
                raise NoMatchingQuote(f"Quote {matched.id} no longer exists")
            if quote.status == QuoteStatus.SETTLED:
                raise AlreadySettled(f"Quote {quote.id} is already settled")
            if not quote.is_usable(self.clock()):
                raise NoMatchingQuote(
                    f"Quote {quote.id} is {quote.effective_status(self.clock()).value}"
                )

            payout_id = await self._send_payout(quote)

            changed = await self.store.compare_and_set_status(
                quote.id,
                QuoteStatus.ACTIVE,
                QuoteStatus.SETTLED,
                payout_id=payout_id,
                settled_at=self.clock(),
                settlement_tx_hash=event.tx_hash,
            )
            if not changed:
                logger.critical(
                    "Quote %s changed state after payout %s was sent (tx %s); reconcile manually",
                    quote.id, payout_id, event.tx_hash,
                )
                raise AlreadySettled(f"Quote {quote.id} is already settled")

            audit_recorded = await self._record_audit(payout_id, quote)

        liquidation_dispatched = await self._dispatch_liquidation(quote)

        logger.info(
            "Quote %s settled: payout=%s fiat=%s %s crypto=%s %s",
            quote.id, payout_id, quote.fiat_amount, quote.fiat_currency,
            quote.crypto_amount, quote.crypto_currency.value,
        )
        return SettlementResult(
            status="settled",
            payout_id=payout_id,
            quote_id=quote.id,
            fiat_amount=quote.fiat_amount,
            crypto_amount=quote.crypto_amount,
            crypto_currency=quote.crypto_currency.value,
            audit_recorded=audit_recorded,
            liquidation_dispatched=liquidation_dispatched,
        )

    # --- Collaborator calls ---

    async def _send_payout(self, quote: Quote) -> str:
        """Pay the fiat leg. Any failure leaves the quote ACTIVE."""
        try:
            return await self.payout_gateway.send_payout(
                quote.fiat_amount,
                quote.get_recipient_key() or settings.DEFAULT_PAYOUT_KEY,
                quote.recipient_name or settings.DEFAULT_PAYOUT_NAME,
            )
        except Exception as exc:
            logger.exception("Payout failed for quote %s (%s %s)", quote.id, quote.fiat_amount, quote.fiat_currency)
            raise PayoutFailed(f"Payout failed for quote {quote.id}") from exc

    async def _record_audit(self, payout_id: str, quote: Quote) -> bool:
        """Audit after payout. Failure is reported, the payout stands."""
        try:
            await self.audit_log.record(payout_id, quote.fiat_amount, quote.id)
        except Exception:
            logger.exception(
                "Audit write failed for payout %s (quote=%s, amount=%s %s)",
                payout_id, quote.id, quote.fiat_amount, quote.fiat_currency,
            )
            return False
        return True

    async def _dispatch_liquidation(self, quote: Quote) -> bool:
        """The broker publish is blocking, so it runs in a worker thread."""
        currency = quote.crypto_currency.value
        try:
            return await asyncio.to_thread(
                self.liquidation_dispatcher.dispatch, quote.id, quote.crypto_amount, currency,
            )
        except Exception:
            logger.exception(
                "Liquidation dispatch raised (quote=%s, amount=%s, currency=%s)",
                quote.id, quote.crypto_amount, currency,
            )
            return False
