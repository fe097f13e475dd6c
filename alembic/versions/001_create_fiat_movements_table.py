"""create fiat_movements table

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "fiat_movements",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("transfer_id", sa.String(64), nullable=False),
        sa.Column("quote_id", sa.String(32), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.CheckConstraint("amount > 0", name="ck_fiat_movements_amount_positive"),
    )
    op.create_index("ix_fiat_movements_transfer_id", "fiat_movements", ["transfer_id"], unique=True)
    op.create_index("ix_fiat_movements_quote_id", "fiat_movements", ["quote_id"])


def downgrade() -> None:
    op.drop_index("ix_fiat_movements_quote_id", table_name="fiat_movements")
    op.drop_index("ix_fiat_movements_transfer_id", table_name="fiat_movements")
    op.drop_table("fiat_movements")
