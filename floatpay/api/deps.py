"""
Reusable FastAPI dependencies wiring the quote and settlement core.

Dependencies:
  - get_quote_store             — store chosen by QUOTE_STORE_BACKEND
  - get_quote_engine            — QuoteEngine over the configured oracle / scorer
  - get_settlement_coordinator  — SettlementCoordinator over bank, audit, liquidation

Tests override ``get_quote_store`` (or the whole engine / coordinator)
through ``app.dependency_overrides``.
"""

from fastapi import Depends

from floatpay.redis_client import get_redis
from floatpay.services.audit_service import build_audit_log
from floatpay.services.bank_service import bank_service
from floatpay.services.liquidation_service import CeleryLiquidationDispatcher
from floatpay.services.pricing_service import CachedRateOracle, get_rate_oracle, get_risk_scorer
from floatpay.services.quote_engine import QuoteEngine
from floatpay.services.quote_store import QuoteStore, build_quote_store
from floatpay.services.settlement_service import SettlementCoordinator


async def get_quote_store(redis=Depends(get_redis)) -> QuoteStore:
    return build_quote_store(redis)


async def get_quote_engine(
    store: QuoteStore = Depends(get_quote_store),
    redis=Depends(get_redis),
) -> QuoteEngine:
    # One oracle per request: the volatility sample and the quoted rate match
    rate_oracle = CachedRateOracle(get_rate_oracle())
    return QuoteEngine(store, rate_oracle, get_risk_scorer(redis, rate_oracle))


async def get_settlement_coordinator(
    store: QuoteStore = Depends(get_quote_store),
) -> SettlementCoordinator:
    return SettlementCoordinator(
        store,
        payout_gateway=bank_service,
        audit_log=build_audit_log(),
        liquidation_dispatcher=CeleryLiquidationDispatcher(),
    )
