"""
Domain exception taxonomy.

Every error raised by the quote and settlement core derives from
``FloatPayError`` and carries the HTTP status and stable ``code`` the API
layer renders it with.
"""

from fastapi import status


class FloatPayError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self)


class ValidationError(FloatPayError):
    """Invalid request input."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class RiskTooHigh(FloatPayError):
    """Market too volatile. Quotes paused."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "risk_too_high"


class NotFound(FloatPayError):
    """Quote not found."""
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class QuoteExpired(FloatPayError):
    """Quote has expired."""
    status_code = status.HTTP_410_GONE
    code = "quote_expired"


class InvalidQuoteState(FloatPayError):
    """Quote cannot make this transition."""
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_quote_state"


class NoMatchingQuote(FloatPayError):
    """No active quote matches this payment."""
    status_code = 422
    code = "no_matching_quote"


class AmbiguousMatch(FloatPayError):
    """Payment matches more than one active quote."""
    status_code = status.HTTP_409_CONFLICT
    code = "ambiguous_match"


class AlreadySettled(FloatPayError):
    """Quote is already settled."""
    status_code = status.HTTP_409_CONFLICT
    code = "already_settled"


class PayoutFailed(FloatPayError):
    """Fiat payout failed."""
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "payout_failed"


class UpstreamUnavailable(FloatPayError):
    """Pricing upstream unavailable. Try again shortly."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "upstream_unavailable"


class SettlementInProgress(FloatPayError):
    """Quote is locked by another settlement. Retry shortly."""
    status_code = status.HTTP_409_CONFLICT
    code = "settlement_in_progress"
