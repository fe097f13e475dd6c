"""
Quote model — a priced, time-bounded crypto-for-fiat offer.

Quotes are kept in the quote store (Redis or memory) as JSON, so this is a
pydantic model rather than an ORM table.

- QT-XXXXXXXXXXXX id format
- 4-state lifecycle with validated transitions
- TTL is authoritative: an ACTIVE quote past ``expires_at`` reads as EXPIRED
- Recipient payout key stored Fernet-encrypted
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from floatpay.core.security import decrypt_value, encrypt_value
from floatpay.services.spread import calculate_crypto_amount

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class CryptoCurrency(str, enum.Enum):
    ETH = "ETH"
    USDC = "USDC"


class QuoteStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    SETTLED = "settled"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Status transition map
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[QuoteStatus, set[QuoteStatus]] = {
    QuoteStatus.ACTIVE: {
        QuoteStatus.SETTLED,
        QuoteStatus.EXPIRED,
        QuoteStatus.CANCELLED,
    },
    QuoteStatus.SETTLED: set(),
    QuoteStatus.EXPIRED: set(),
    QuoteStatus.CANCELLED: set(),
}


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class Quote(BaseModel):
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
    status: QuoteStatus = QuoteStatus.ACTIVE

    # Payout recipient (injected data, key encrypted)
    recipient_key_encrypted: str | None = None
    recipient_name: str | None = None

    # Settlement
    payout_id: str | None = None
    settled_at: datetime | None = None
    settlement_tx_hash: str | None = None
    cancelled_at: datetime | None = None

    # ------------------------------------------------------------------
    # Id generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_id() -> str:
        """Generate a QT-XXXXXXXXXXXX id (12 uppercase hex chars)."""
        return f"QT-{uuid.uuid4().hex[:12].upper()}"

    # ------------------------------------------------------------------
    # Encrypted recipient helpers
    # ------------------------------------------------------------------

    def set_recipient_key(self, plaintext: str) -> None:
        """Encrypt and store the payout recipient key."""
        self.recipient_key_encrypted = encrypt_value(plaintext)

    def get_recipient_key(self) -> str | None:
        """Decrypt and return the payout recipient key."""
        if self.recipient_key_encrypted is None:
            return None
        return decrypt_value(self.recipient_key_encrypted)

    # ------------------------------------------------------------------
    # Expiry and derived values
    # ------------------------------------------------------------------

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def effective_status(self, now: datetime) -> QuoteStatus:
        """Status as seen by callers: ACTIVE past its TTL reads as EXPIRED."""
        if self.status == QuoteStatus.ACTIVE and self.is_expired(now):
            return QuoteStatus.EXPIRED
        return self.status

    def is_usable(self, now: datetime) -> bool:
        return self.effective_status(now) == QuoteStatus.ACTIVE

    def recompute_crypto_amount(self) -> Decimal:
        return calculate_crypto_amount(
            self.fiat_amount, self.exchange_rate, self.spread, self.crypto_currency,
        )

    # ------------------------------------------------------------------
    # Status transition validation
    # ------------------------------------------------------------------

    @staticmethod
    def is_valid_transition(from_status: QuoteStatus, to_status: QuoteStatus) -> bool:
        """Check whether a status transition is allowed."""
        return to_status in VALID_TRANSITIONS.get(from_status, set())

    def __repr__(self) -> str:
        return (
            f"<Quote {self.id} {self.fiat_amount} {self.fiat_currency} -> "
            f"{self.crypto_amount} {self.crypto_currency.value} status={self.status.value}>"
        )
