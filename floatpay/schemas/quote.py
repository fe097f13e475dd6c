"""
Pydantic schemas for quote requests and responses.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from floatpay.models.quote import CryptoCurrency, Quote, QuoteStatus


class QuoteRequest(BaseModel):
    """Fiat amount to convert and the crypto asset to pay with."""
    amount: Decimal = Field(..., gt=0, decimal_places=2, examples=[500])
    currency: CryptoCurrency = Field(..., examples=["USDC"])
    recipient_key: str | None = Field(None, max_length=140, description="PIX key receiving the payout")
    recipient_name: str | None = Field(None, max_length=200)


class QuoteResponse(BaseModel):
    """Quote as returned to clients. The recipient key is never exposed."""
    id: str
    fiat_amount: Decimal
    fiat_currency: str
    crypto_currency: CryptoCurrency
    exchange_rate: Decimal
    risk_score: Decimal
    spread: Decimal
    crypto_amount: Decimal
    deposit_address: str
    created_at: datetime
    expires_at: datetime
    status: QuoteStatus
    payout_id: str | None = None
    settled_at: datetime | None = None

    @classmethod
    def from_quote(cls, quote: Quote) -> "QuoteResponse":
        return cls(**quote.model_dump(include=set(cls.model_fields)))
