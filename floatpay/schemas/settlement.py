"""
Pydantic schemas for chain watcher events and settlement results.
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ChainEvent(BaseModel):
    """Incoming payment as reported by the chain watcher (Alchemy format)."""

    model_config = ConfigDict(populate_by_name=True)

    tx_hash: str = Field(..., alias="hash", min_length=1)
    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    amount: Decimal = Field(..., alias="value", gt=0)
    asset: str = Field(..., min_length=1)

    @field_validator("asset")
    @classmethod
    def normalize_asset(cls, v: str) -> str:
        return v.strip().upper()


class SettlementResult(BaseModel):
    """Webhook response; serialised camelCase (payoutId, quoteId, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str = "settled"
    payout_id: str
    quote_id: str
    fiat_amount: Decimal
    crypto_amount: Decimal
    crypto_currency: str
    audit_recorded: bool = True
    liquidation_dispatched: bool = True


class SimulateDepositRequest(BaseModel):
    quote_id: str


class SimulateDepositResponse(BaseModel):
    result: SettlementResult
    webhook_payload: dict
