"""
Quote engine — risk gate, pricing and quote lifecycle.

Owns quote creation and the user-facing transitions (cancel). Settlement
writes the SETTLED transition through the same store.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable

from floatpay.config import settings
from floatpay.core.errors import (
    InvalidQuoteState,
    NotFound,
    QuoteExpired,
    RiskTooHigh,
    ValidationError,
)
from floatpay.models.quote import CryptoCurrency, Quote, QuoteStatus
from floatpay.services.pricing_service import (
    RateOracle,
    RiskScorer,
    fetch_exchange_rate,
    fetch_risk_score,
)
from floatpay.services.quote_store import QuoteStore
from floatpay.services.spread import calculate_crypto_amount, calculate_spread

logger = logging.getLogger(__name__)

# Fiat amounts are whole cents, as paid out and recorded in the ledger
FIAT_EXPONENT = -2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuoteEngine:
    """Creates, reads and cancels quotes."""

    def __init__(
        self,
        store: QuoteStore,
        rate_oracle: RateOracle,
        risk_scorer: RiskScorer,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.rate_oracle = rate_oracle
        self.risk_scorer = risk_scorer
        self.clock = clock

    # --- Creation ---

    async def create_quote(
        self,
        fiat_amount: Decimal,
        crypto_currency: CryptoCurrency | str,
        recipient_key: str | None = None,
        recipient_name: str | None = None,
    ) -> Quote:
        """
        Price and persist a new quote.

        1. Validate amount and currency
        2. Risk gate (market-wide pause, then live score vs RISK_SCORE_LIMIT)
        3. Exchange rate for {currency}/{fiat}
        4. Spread and crypto amount
        5. Persist with a QUOTE_TTL_SECONDS expiry
        """
        try:
            fiat_amount = Decimal(str(fiat_amount))
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid amount: {fiat_amount}") from exc
        if not fiat_amount.is_finite() or fiat_amount <= 0:
            raise ValidationError("Amount must be greater than zero.")
        if fiat_amount.normalize().as_tuple().exponent < FIAT_EXPONENT:
            raise ValidationError(
                f"Amount must have at most 2 decimal places for {settings.FIAT_CURRENCY}."
            )
        try:
            currency = CryptoCurrency(crypto_currency)
        except ValueError as exc:
            supported = ", ".join(c.value for c in CryptoCurrency)
            raise ValidationError(
                f"Unsupported currency: {crypto_currency}. Supported: {supported}."
            ) from exc

        # Risk gate: a pause covers the whole currency
        if await self.store.is_currency_paused(currency.value):
            raise RiskTooHigh("Market too volatile. Quotes paused.")

        risk_score = await fetch_risk_score(self.risk_scorer, currency.value)
        if risk_score > Decimal(str(settings.RISK_SCORE_LIMIT)):
            logger.warning(
                "Risk circuit breaker tripped for %s: score=%s limit=%s, pausing %ds",
                currency.value, risk_score, settings.RISK_SCORE_LIMIT, settings.RISK_PAUSE_SECONDS,
            )
            if settings.RISK_PAUSE_SECONDS > 0:
                await self.store.pause_currency(currency.value, settings.RISK_PAUSE_SECONDS)
            raise RiskTooHigh("Market too volatile. Quotes paused.")

        pair = f"{currency.value}/{settings.FIAT_CURRENCY}"
        exchange_rate = await fetch_exchange_rate(self.rate_oracle, pair)

        spread = calculate_spread(risk_score)
        crypto_amount = calculate_crypto_amount(fiat_amount, exchange_rate, spread, currency)

        now = self.clock()
        quote = Quote(
            id=Quote.generate_id(),
            fiat_amount=fiat_amount,
            fiat_currency=settings.FIAT_CURRENCY,
            crypto_currency=currency,
            exchange_rate=exchange_rate,
            risk_score=risk_score,
            spread=spread,
            crypto_amount=crypto_amount,
            deposit_address=settings.TREASURY_DEPOSIT_ADDRESS,
            created_at=now,
            expires_at=now + timedelta(seconds=settings.QUOTE_TTL_SECONDS),
            status=QuoteStatus.ACTIVE,
            recipient_name=recipient_name or settings.DEFAULT_PAYOUT_NAME,
        )
        quote.set_recipient_key(recipient_key or settings.DEFAULT_PAYOUT_KEY)

        await self.store.add(quote)

        logger.info(
            "Quote created: %s %s %s -> %s %s (rate=%s, risk=%s, spread=%s, expires=%s)",
            quote.id, quote.fiat_amount, quote.fiat_currency, quote.crypto_amount,
            currency.value, exchange_rate, risk_score, spread, quote.expires_at.isoformat(),
        )
        return quote

    # --- Reads ---

    async def get_quote(self, quote_id: str) -> Quote:
        """
        Return a quote with its effective status.

        Expired quotes are still returned, reported as EXPIRED, so callers
        see why the quote can no longer be used.
        """
        quote = await self.store.get(quote_id)
        if quote is None:
            raise NotFound(f"Quote {quote_id} not found")
        return quote.model_copy(update={"status": quote.effective_status(self.clock())})

    # --- Transitions ---

    async def cancel_quote(self, quote_id: str) -> Quote:
        """User-initiated ACTIVE -> CANCELLED."""
        async with self.store.lock(quote_id):
            quote = await self.get_quote(quote_id)
            if quote.status == QuoteStatus.EXPIRED:
                raise QuoteExpired(f"Quote {quote_id} has expired")
            if not Quote.is_valid_transition(quote.status, QuoteStatus.CANCELLED):
                raise InvalidQuoteState(
                    f"Quote {quote_id} is {quote.status.value} and cannot be cancelled"
                )

            cancelled_at = self.clock()
            changed = await self.store.compare_and_set_status(
                quote_id, QuoteStatus.ACTIVE, QuoteStatus.CANCELLED, cancelled_at=cancelled_at,
            )
            if not changed:
                raise InvalidQuoteState(f"Quote {quote_id} changed state, cannot be cancelled")

        logger.info("Quote cancelled: %s", quote_id)
        return quote.model_copy(
            update={"status": QuoteStatus.CANCELLED, "cancelled_at": cancelled_at}
        )
