"""
FiatMovement model — append-only audit ledger of fiat payouts.

One row per successful payout, written after the bank rail confirmed the
transfer. Rows are never updated or deleted.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Numeric, String, event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from floatpay.database import Base


class FiatMovement(Base):
    __tablename__ = "fiat_movements"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_fiat_movements_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )

    # Bank rail end-to-end id
    transfer_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False,
    )
    quote_id: Mapped[str] = mapped_column(String(32), index=True, nullable=False)

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), nullable=False,
    )
    currency: Mapped[str] = mapped_column(String(8), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<FiatMovement {self.transfer_id} {self.amount} {self.currency} quote={self.quote_id}>"


@event.listens_for(FiatMovement, "init")
def _set_fiat_movement_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)
