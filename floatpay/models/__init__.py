"""Domain and ORM models for FloatPay."""

from floatpay.models.fiat_movement import FiatMovement
from floatpay.models.quote import CryptoCurrency, Quote, QuoteStatus

__all__ = [
    "FiatMovement",
    "CryptoCurrency", "Quote", "QuoteStatus",
]
