"""Tests for the settlement coordinator — matching, payout, audit, liquidation."""

import asyncio
import threading
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from floatpay.core.errors import (
    AlreadySettled,
    AmbiguousMatch,
    NoMatchingQuote,
    PayoutFailed,
)
from floatpay.models.quote import QuoteStatus
from floatpay.schemas.settlement import ChainEvent
from floatpay.services.settlement_service import amount_within_tolerance


def _event(make_event, value, **kwargs) -> ChainEvent:
    return ChainEvent.model_validate(make_event(value, **kwargs))


# ---------------------------------------------------------------------------
# Tolerance
# ---------------------------------------------------------------------------


class TestTolerance:

    @pytest.mark.parametrize("received, expected", [
        ("102", True),
        ("102.51", True),
        ("101.49", True),
        ("102.52", False),
        ("101.48", False),
    ])
    def test_half_percent_band(self, received, expected):
        assert amount_within_tolerance(
            Decimal(received), Decimal("102"), Decimal("0.5"),
        ) is expected

    def test_zero_expected_never_matches(self):
        assert not amount_within_tolerance(Decimal("0"), Decimal("0"), Decimal("0.5"))


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestSettle:

    @pytest.mark.asyncio
    async def test_exact_payment_settles(
        self, quote_engine, coordinator, store, make_event,
        payout_gateway, audit_log, liquidation_dispatcher,
    ):
        quote = await quote_engine.create_quote(
            Decimal("500"), "USDC", recipient_key="maria@pix", recipient_name="Maria Silva",
        )

        result = await coordinator.handle_chain_event(_event(make_event, "102.0"))

        assert result.status == "settled"
        assert result.quote_id == quote.id
        assert result.payout_id == "E1767355200000RANDOM42"
        assert result.fiat_amount == Decimal("500")
        assert result.crypto_amount == Decimal("102.000000")
        assert result.crypto_currency == "USDC"
        assert result.audit_recorded is True
        assert result.liquidation_dispatched is True

        payout_gateway.send_payout.assert_awaited_once_with(
            Decimal("500"), "maria@pix", "Maria Silva",
        )
        audit_log.record.assert_awaited_once_with(
            "E1767355200000RANDOM42", Decimal("500"), quote.id,
        )
        liquidation_dispatcher.dispatch.assert_called_once_with(
            quote.id, Decimal("102.000000"), "USDC",
        )

        stored = await store.get(quote.id)
        assert stored.status == QuoteStatus.SETTLED
        assert stored.payout_id == "E1767355200000RANDOM42"
        assert stored.settlement_tx_hash == "0xabc123"
        assert stored.settled_at is not None

    @pytest.mark.asyncio
    async def test_payment_within_tolerance_settles(self, quote_engine, coordinator, make_event):
        quote = await quote_engine.create_quote(Decimal("500"), "USDC")
        result = await coordinator.handle_chain_event(_event(make_event, "101.6"))
        assert result.quote_id == quote.id

    @pytest.mark.asyncio
    async def test_asset_is_case_insensitive(self, quote_engine, coordinator, make_event):
        quote = await quote_engine.create_quote(Decimal("500"), "USDC")
        result = await coordinator.handle_chain_event(_event(make_event, "102", asset="usdc"))
        assert result.quote_id == quote.id

    @pytest.mark.asyncio
    async def test_picks_the_quote_matching_the_amount(self, quote_engine, coordinator, make_event):
        small = await quote_engine.create_quote(Decimal("100"), "USDC")   # 20.4 USDC
        await quote_engine.create_quote(Decimal("500"), "USDC")           # 102 USDC

        result = await coordinator.handle_chain_event(_event(make_event, "20.4"))
        assert result.quote_id == small.id


# ---------------------------------------------------------------------------
# Matching failures
# ---------------------------------------------------------------------------


class TestMatching:

    @pytest.mark.asyncio
    async def test_no_quotes(self, coordinator, make_event, payout_gateway):
        with pytest.raises(NoMatchingQuote):
            await coordinator.handle_chain_event(_event(make_event, "102"))
        payout_gateway.send_payout.assert_not_called()

    @pytest.mark.asyncio
    async def test_amount_outside_tolerance(self, quote_engine, coordinator, make_event, payout_gateway):
        await quote_engine.create_quote(Decimal("500"), "USDC")
        with pytest.raises(NoMatchingQuote):
            await coordinator.handle_chain_event(_event(make_event, "103"))
        payout_gateway.send_payout.assert_not_called()

    @pytest.mark.asyncio
    async def test_wrong_asset(self, quote_engine, coordinator, make_event):
        await quote_engine.create_quote(Decimal("500"), "USDC")
        with pytest.raises(NoMatchingQuote):
            await coordinator.handle_chain_event(_event(make_event, "102", asset="ETH"))

    @pytest.mark.asyncio
    async def test_expired_quote_not_matched(self, quote_engine, coordinator, make_event, clock, store):
        quote = await quote_engine.create_quote(Decimal("500"), "USDC")
        clock.advance(minutes=11)

        with pytest.raises(NoMatchingQuote):
            await coordinator.handle_chain_event(_event(make_event, "102"))
        assert (await store.get(quote.id)).status == QuoteStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_cancelled_quote_not_matched(self, quote_engine, coordinator, make_event):
        quote = await quote_engine.create_quote(Decimal("500"), "USDC")
        await quote_engine.cancel_quote(quote.id)

        with pytest.raises(NoMatchingQuote):
            await coordinator.handle_chain_event(_event(make_event, "102"))

    @pytest.mark.asyncio
    async def test_two_candidates_is_ambiguous(
        self, quote_engine, coordinator, make_event, payout_gateway, store,
    ):
        a = await quote_engine.create_quote(Decimal("500"), "USDC")
        b = await quote_engine.create_quote(Decimal("500"), "USDC")

        with pytest.raises(AmbiguousMatch) as exc_info:
            await coordinator.handle_chain_event(_event(make_event, "102"))

        assert a.id in exc_info.value.message and b.id in exc_info.value.message
        payout_gateway.send_payout.assert_not_called()
        assert (await store.get(a.id)).status == QuoteStatus.ACTIVE
        assert (await store.get(b.id)).status == QuoteStatus.ACTIVE


# ---------------------------------------------------------------------------
# At-most-once payout
# ---------------------------------------------------------------------------


class TestDuplicates:

    @pytest.mark.asyncio
    async def test_redelivered_event_rejected(self, quote_engine, coordinator, make_event, payout_gateway):
        await quote_engine.create_quote(Decimal("500"), "USDC")
        event = _event(make_event, "102")

        await coordinator.handle_chain_event(event)
        with pytest.raises(AlreadySettled):
            await coordinator.handle_chain_event(event)

        payout_gateway.send_payout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_pay_once(
        self, quote_engine, coordinator, make_event, payout_gateway, store,
    ):
        quote = await quote_engine.create_quote(Decimal("500"), "USDC")

        async def slow_payout(*args):
            await asyncio.sleep(0.01)
            return "E1767355200000RANDOM42"

        payout_gateway.send_payout = AsyncMock(side_effect=slow_payout)
        event = _event(make_event, "102")

        results = await asyncio.gather(
            coordinator.handle_chain_event(event),
            coordinator.handle_chain_event(event),
            return_exceptions=True,
        )

        settled = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, AlreadySettled)]
        assert len(settled) == 1
        assert len(rejected) == 1
        assert payout_gateway.send_payout.await_count == 1
        assert (await store.get(quote.id)).status == QuoteStatus.SETTLED

    @pytest.mark.asyncio
    async def test_second_payment_for_settled_quote_finds_nothing(
        self, quote_engine, coordinator, make_event, payout_gateway,
    ):
        await quote_engine.create_quote(Decimal("500"), "USDC")
        await coordinator.handle_chain_event(_event(make_event, "102", tx_hash="0x01"))

        with pytest.raises(NoMatchingQuote):
            await coordinator.handle_chain_event(_event(make_event, "102", tx_hash="0x02"))
        payout_gateway.send_payout.assert_awaited_once()


# ---------------------------------------------------------------------------
# Collaborator failures
# ---------------------------------------------------------------------------


class TestFailures:

    @pytest.mark.asyncio
    async def test_payout_failure_leaves_quote_active(
        self, quote_engine, coordinator, make_event, payout_gateway,
        audit_log, liquidation_dispatcher, store,
    ):
        quote = await quote_engine.create_quote(Decimal("500"), "USDC")
        payout_gateway.send_payout = AsyncMock(side_effect=RuntimeError("bank down"))

        with pytest.raises(PayoutFailed):
            await coordinator.handle_chain_event(_event(make_event, "102"))

        assert (await store.get(quote.id)).status == QuoteStatus.ACTIVE
        audit_log.record.assert_not_called()
        liquidation_dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_payout_retry_after_failure(self, quote_engine, coordinator, make_event, payout_gateway):
        quote = await quote_engine.create_quote(Decimal("500"), "USDC")
        payout_gateway.send_payout = AsyncMock(side_effect=[RuntimeError("timeout"), "E2"])

        with pytest.raises(PayoutFailed):
            await coordinator.handle_chain_event(_event(make_event, "102"))
        result = await coordinator.handle_chain_event(_event(make_event, "102"))

        assert result.quote_id == quote.id
        assert result.payout_id == "E2"

    @pytest.mark.asyncio
    async def test_audit_failure_keeps_settlement(
        self, quote_engine, coordinator, make_event, audit_log, liquidation_dispatcher, store,
    ):
        quote = await quote_engine.create_quote(Decimal("500"), "USDC")
        audit_log.record = AsyncMock(side_effect=RuntimeError("db down"))

        result = await coordinator.handle_chain_event(_event(make_event, "102"))

        assert result.audit_recorded is False
        assert result.liquidation_dispatched is True
        liquidation_dispatcher.dispatch.assert_called_once()
        assert (await store.get(quote.id)).status == QuoteStatus.SETTLED

    @pytest.mark.asyncio
    async def test_liquidation_not_queued(self, quote_engine, coordinator, make_event, liquidation_dispatcher):
        await quote_engine.create_quote(Decimal("500"), "USDC")
        liquidation_dispatcher.dispatch.return_value = False

        result = await coordinator.handle_chain_event(_event(make_event, "102"))
        assert result.status == "settled"
        assert result.liquidation_dispatched is False

    @pytest.mark.asyncio
    async def test_liquidation_dispatch_raises(self, quote_engine, coordinator, make_event, liquidation_dispatcher):
        await quote_engine.create_quote(Decimal("500"), "USDC")
        liquidation_dispatcher.dispatch.side_effect = ConnectionError("broker down")

        result = await coordinator.handle_chain_event(_event(make_event, "102"))
        assert result.status == "settled"
        assert result.liquidation_dispatched is False

    @pytest.mark.asyncio
    async def test_liquidation_dispatched_off_the_event_loop(
        self, quote_engine, coordinator, make_event, liquidation_dispatcher,
    ):
        await quote_engine.create_quote(Decimal("500"), "USDC")
        loop_thread = threading.get_ident()
        seen = {}

        def dispatch(quote_id, amount, currency):
            seen["thread"] = threading.get_ident()
            return True

        liquidation_dispatcher.dispatch.side_effect = dispatch

        result = await coordinator.handle_chain_event(_event(make_event, "102"))
        assert result.liquidation_dispatched is True
        assert seen["thread"] != loop_thread
