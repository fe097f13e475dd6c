"""
Audit log — append-only record of fiat movements.

Written after a payout succeeds. DatabaseAuditLog keeps the ledger in the
``fiat_movements`` table; LoggingAuditLog only emits an audit log line.
"""

import logging
from decimal import Decimal
from typing import Protocol

from floatpay.config import settings
from floatpay.models.fiat_movement import FiatMovement

logger = logging.getLogger(__name__)


class AuditLog(Protocol):
    async def record(self, transfer_id: str, amount: Decimal, quote_id: str) -> None:
        ...


class LoggingAuditLog:
    async def record(self, transfer_id: str, amount: Decimal, quote_id: str) -> None:
        logger.info(
            "[AUDIT] Transaction %s moved %s %s (quote %s)",
            transfer_id, settings.FIAT_CURRENCY, amount, quote_id,
        )


class DatabaseAuditLog:
    """
    Persist each fiat movement as a FiatMovement row.

    Uses its own session (not the request's) and commits per record, so a
    recorded movement is durable before settlement returns.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    @property
    def session_factory(self):
        if self._session_factory is not None:
            return self._session_factory
        from floatpay.database import async_session
        return async_session

    async def record(self, transfer_id: str, amount: Decimal, quote_id: str) -> None:
        async with self.session_factory() as session:
            session.add(FiatMovement(
                transfer_id=transfer_id,
                quote_id=quote_id,
                amount=amount,
                currency=settings.FIAT_CURRENCY,
            ))
            await session.commit()

        logger.info(
            "[AUDIT] Transaction %s moved %s %s (quote %s), ledger row written",
            transfer_id, settings.FIAT_CURRENCY, amount, quote_id,
        )


def build_audit_log() -> AuditLog:
    """Return the audit log configured by AUDIT_LOG_BACKEND."""
    if settings.AUDIT_LOG_BACKEND == "log":
        return LoggingAuditLog()
    return DatabaseAuditLog()
