"""
Quote store — shared state for quotes, match indexes and risk pauses.

Two backends implement the same interface:

  InMemoryQuoteStore  — dicts + one asyncio.Lock per quote (tests, single process)
  RedisQuoteStore     — JSON blobs + sets + redis-py distributed locks

Redis data layout:
  String  — ``quote:{id}``                 Quote JSON, retained QUOTE_RETENTION_SECONDS
  Set     — ``quotes:active:{currency}``    ids of quotes that may still match
  String  — ``quote_tx:{hash}``             quote id settled by a chain transaction
  String  — ``risk_pause:{currency}``       present while quotes are paused (TTL)
  Lock    — ``quote_lock:{id}``             per-quote critical section

Status changes go through ``compare_and_set_status`` so a transition only
applies when the stored status is still the expected one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, AsyncIterator, Protocol

from floatpay.config import settings
from floatpay.core.errors import SettlementInProgress
from floatpay.models.quote import Quote, QuoteStatus

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

# Redis key helpers ──────────────────────────────────────────────────────────

QUOTE_KEY_PREFIX = "quote:"
ACTIVE_INDEX_PREFIX = "quotes:active:"
TX_KEY_PREFIX = "quote_tx:"
RISK_PAUSE_PREFIX = "risk_pause:"
LOCK_KEY_PREFIX = "quote_lock:"

# Statuses that can never match a payment again
_CLOSED_STATUSES = (QuoteStatus.SETTLED, QuoteStatus.CANCELLED, QuoteStatus.EXPIRED)


def _quote_key(quote_id: str) -> str:
    return f"{QUOTE_KEY_PREFIX}{quote_id}"


def _index_key(currency: str) -> str:
    return f"{ACTIVE_INDEX_PREFIX}{currency}"


def _currency_value(currency) -> str:
    return currency.value if hasattr(currency, "value") else str(currency)


class QuoteStore(Protocol):
    async def get(self, quote_id: str) -> Quote | None: ...

    async def add(self, quote: Quote) -> None: ...

    async def active_candidates(self, currency: str, now: datetime | None = None) -> list[Quote]: ...

    async def compare_and_set_status(
        self, quote_id: str, expected: QuoteStatus, new: QuoteStatus, **changes,
    ) -> bool: ...

    def lock(self, quote_id: str): ...

    async def find_by_tx_hash(self, tx_hash: str) -> Quote | None: ...

    async def pause_currency(self, currency: str, seconds: int) -> None: ...

    async def is_currency_paused(self, currency: str) -> bool: ...


# InMemoryQuoteStore ─────────────────────────────────────────────────────────


class InMemoryQuoteStore:
    """
    Process-local store. Quotes are kept as copies so callers never alias state.

    Quotes are evicted QUOTE_RETENTION_SECONDS after they were added, and a
    quote's lock is dropped once nobody holds or waits for it.
    """

    def __init__(self, retention_seconds: int | None = None):
        self.retention_seconds = (
            settings.QUOTE_RETENTION_SECONDS if retention_seconds is None else retention_seconds
        )
        self._quotes: dict[str, Quote] = {}
        self._added_at: dict[str, float] = {}
        self._index: dict[str, set[str]] = {}
        self._tx_hashes: dict[str, str] = {}
        self._paused_until: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._guard = asyncio.Lock()

    def _evict_stale(self) -> None:
        cutoff = time.monotonic() - self.retention_seconds
        stale = [qid for qid, added in self._added_at.items() if added <= cutoff]
        if not stale:
            return
        for quote_id in stale:
            quote = self._quotes.pop(quote_id)
            del self._added_at[quote_id]
            self._index.get(_currency_value(quote.crypto_currency), set()).discard(quote_id)
            if quote.settlement_tx_hash:
                self._tx_hashes.pop(quote.settlement_tx_hash, None)
        logger.debug("Evicted %d quotes past retention", len(stale))

    async def get(self, quote_id: str) -> Quote | None:
        self._evict_stale()
        quote = self._quotes.get(quote_id)
        return quote.model_copy() if quote is not None else None

    async def add(self, quote: Quote) -> None:
        self._evict_stale()
        currency = _currency_value(quote.crypto_currency)
        self._quotes[quote.id] = quote.model_copy()
        self._added_at[quote.id] = time.monotonic()
        self._index.setdefault(currency, set()).add(quote.id)

    async def active_candidates(self, currency: str, now: datetime | None = None) -> list[Quote]:
        self._evict_stale()
        ids = self._index.get(_currency_value(currency), set())
        candidates = []
        for qid in sorted(ids):
            quote = self._quotes[qid]
            if quote.status != QuoteStatus.ACTIVE:
                continue
            if now is not None and quote.is_expired(now):
                ids.discard(qid)
                continue
            candidates.append(quote.model_copy())
        return candidates

    async def compare_and_set_status(
        self, quote_id: str, expected: QuoteStatus, new: QuoteStatus, **changes,
    ) -> bool:
        async with self._guard:
            quote = self._quotes.get(quote_id)
            if quote is None or quote.status != expected:
                return False
            updated = quote.model_copy(update={"status": new, **changes})
            self._quotes[quote_id] = updated
            if new in _CLOSED_STATUSES:
                self._index.get(_currency_value(quote.crypto_currency), set()).discard(quote_id)
            if updated.settlement_tx_hash:
                self._tx_hashes[updated.settlement_tx_hash] = quote_id
            return True

    @asynccontextmanager
    async def lock(self, quote_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(quote_id, asyncio.Lock())
        self._lock_users[quote_id] = self._lock_users.get(quote_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[quote_id] -= 1
            if not self._lock_users[quote_id]:
                del self._lock_users[quote_id]
                del self._locks[quote_id]

    async def find_by_tx_hash(self, tx_hash: str) -> Quote | None:
        quote_id = self._tx_hashes.get(tx_hash)
        return await self.get(quote_id) if quote_id else None

    async def pause_currency(self, currency: str, seconds: int) -> None:
        self._paused_until[_currency_value(currency)] = time.monotonic() + seconds

    async def is_currency_paused(self, currency: str) -> bool:
        until = self._paused_until.get(_currency_value(currency))
        return until is not None and time.monotonic() < until


# RedisQuoteStore ────────────────────────────────────────────────────────────


class RedisQuoteStore:
    """
    Redis-backed quote store.

    Accepts a ``redis`` client on construction so callers (and tests)
    can inject their own connection. Falls back to the module-level
    singleton from ``floatpay.redis_client`` when no client is supplied.
    """

    def __init__(self, redis_client: "aioredis.Redis | None" = None):
        self._redis = redis_client

    @property
    def redis(self) -> "aioredis.Redis":
        if self._redis is not None:
            return self._redis
        # Lazy import to avoid circular deps at module load time
        from floatpay.redis_client import redis as _default
        return _default

    # ── read / write ────────────────────────────────────────────────────

    async def get(self, quote_id: str) -> Quote | None:
        raw = await self.redis.get(_quote_key(quote_id))
        if raw is None:
            return None
        return Quote.model_validate_json(raw)

    async def add(self, quote: Quote) -> None:
        """
        Persist a quote and index it for matching (pipeline — atomic).

        1. SETEX quote:{id}  retention  json
        2. SADD  quotes:active:{currency}  id
        """
        pipe = self.redis.pipeline(transaction=True)
        pipe.setex(_quote_key(quote.id), settings.QUOTE_RETENTION_SECONDS, quote.model_dump_json())
        pipe.sadd(_index_key(_currency_value(quote.crypto_currency)), quote.id)
        await pipe.execute()

    async def active_candidates(self, currency: str, now: datetime | None = None) -> list[Quote]:
        """
        Return ACTIVE quotes indexed for *currency*.

        Ids whose quote is gone (retention elapsed), closed, or past its
        expiry at *now* are pruned from the index as they are found. The
        quote blob itself stays readable until retention elapses.
        """
        index_key = _index_key(_currency_value(currency))
        ids = sorted(await self.redis.smembers(index_key))
        if not ids:
            return []

        pipe = self.redis.pipeline(transaction=False)
        for quote_id in ids:
            pipe.get(_quote_key(quote_id))
        blobs = await pipe.execute()

        candidates = []
        stale = []
        for quote_id, raw in zip(ids, blobs):
            if raw is None:
                stale.append(quote_id)
                continue
            quote = Quote.model_validate_json(raw)
            if quote.status != QuoteStatus.ACTIVE:
                stale.append(quote_id)
                continue
            if now is not None and quote.is_expired(now):
                stale.append(quote_id)
                continue
            candidates.append(quote)

        if stale:
            await self.redis.srem(index_key, *stale)
        return candidates

    async def compare_and_set_status(
        self, quote_id: str, expected: QuoteStatus, new: QuoteStatus, **changes,
    ) -> bool:
        """
        Optimistic transition using WATCH / MULTI.

        Returns False when the stored status is not *expected* or another
        client changed the quote between the read and the write.
        """
        from redis.exceptions import WatchError

        key = _quote_key(quote_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    return False
                quote = Quote.model_validate_json(raw)
                if quote.status != expected:
                    return False
                updated = quote.model_copy(update={"status": new, **changes})
                ttl = await pipe.ttl(key)

                pipe.multi()
                pipe.setex(key, ttl if ttl and ttl > 0 else settings.QUOTE_RETENTION_SECONDS,
                           updated.model_dump_json())
                if new in _CLOSED_STATUSES:
                    pipe.srem(_index_key(_currency_value(quote.crypto_currency)), quote_id)
                if updated.settlement_tx_hash:
                    pipe.setex(
                        f"{TX_KEY_PREFIX}{updated.settlement_tx_hash}",
                        settings.QUOTE_RETENTION_SECONDS,
                        quote_id,
                    )
                await pipe.execute()
                return True
            except WatchError:
                logger.info("Quote %s changed during transition to %s", quote_id, new.value)
                return False

    # ── distributed lock ────────────────────────────────────────────────

    @asynccontextmanager
    async def lock(self, quote_id: str) -> AsyncIterator[None]:
        """
        Per-quote critical section.

        Uses the redis-py ``Lock`` implementation (SET NX PX + Lua-based
        release). Auto-expires after QUOTE_LOCK_TIMEOUT_SECONDS.
        """
        lock = self.redis.lock(
            f"{LOCK_KEY_PREFIX}{quote_id}",
            timeout=settings.QUOTE_LOCK_TIMEOUT_SECONDS,
            blocking_timeout=settings.QUOTE_LOCK_TIMEOUT_SECONDS,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise SettlementInProgress(f"Quote {quote_id} is locked by another settlement")
        try:
            yield
        finally:
            try:
                await lock.release()
            except Exception:
                # Lock may have already expired
                logger.warning("Lock release failed for quote %s (may have auto-expired)", quote_id)

    # ── idempotency / risk pause ────────────────────────────────────────

    async def find_by_tx_hash(self, tx_hash: str) -> Quote | None:
        quote_id = await self.redis.get(f"{TX_KEY_PREFIX}{tx_hash}")
        return await self.get(quote_id) if quote_id else None

    async def pause_currency(self, currency: str, seconds: int) -> None:
        await self.redis.setex(f"{RISK_PAUSE_PREFIX}{_currency_value(currency)}", seconds, "1")

    async def is_currency_paused(self, currency: str) -> bool:
        return await self.redis.get(f"{RISK_PAUSE_PREFIX}{_currency_value(currency)}") is not None


# Store selection ────────────────────────────────────────────────────────────

_memory_store: InMemoryQuoteStore | None = None


def build_quote_store(redis_client=None) -> QuoteStore:
    """Return the store configured by QUOTE_STORE_BACKEND."""
    global _memory_store
    if settings.QUOTE_STORE_BACKEND == "memory":
        if _memory_store is None:
            _memory_store = InMemoryQuoteStore()
        return _memory_store
    return RedisQuoteStore(redis_client)
