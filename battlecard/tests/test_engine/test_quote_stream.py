"""Tests for QuoteStream — ordered single-consumer evaluation and backpressure."""

import asyncio

import pytest

from battlecard.core.data_types import Quote
from battlecard.core.errors import QuoteStreamUnavailable
from battlecard.core.types import Outcome
from battlecard.engine.quote_stream import QuoteStream


class FlakyEngine:
    """Raises on the first update, records the rest."""

    def __init__(self):
        self.seen = []

    def on_price_update(self, instrument, price, high_24h=None, low_24h=None):
        if not self.seen:
            self.seen.append(None)
            raise RuntimeError("feed glitch")
        self.seen.append((instrument, price))
        return []


class TestQuoteStream:
    def test_push_before_start(self, engine):
        stream = QuoteStream(engine)
        assert stream.push("BTCUSDT", 100.0) is False
        assert stream.running is False

    @pytest.mark.asyncio
    async def test_ticks_applied_in_order(self, engine, sample_plan):
        batches = []
        stream = QuoteStream(engine, on_actions=batches.append)
        await stream.start()
        try:
            for price in (100.0, 104.0, 110.0):
                assert stream.push("BTCUSDT", price)
            await stream.join()
        finally:
            await stream.stop()

        assert stream.processed == 3
        assert [b[0]["action"] for b in batches] == ["open_position", "close_position"]
        assert engine.ledger.entries[0].outcome == Outcome.WIN

    @pytest.mark.asyncio
    async def test_push_quote(self, engine, clock):
        stream = QuoteStream(engine)
        await stream.start()
        try:
            stream.push_quote(Quote(instrument="ETHUSDT", price=2500.0, received_at=clock(), high_24h=2600.0))
            await stream.join()
        finally:
            await stream.stop()
        assert engine.quote_for("ETH/USDT").high_24h == 2600.0

    @pytest.mark.asyncio
    async def test_backpressure_drops(self, engine):
        stream = QuoteStream(engine, max_queue_depth=2)
        await stream.start()
        try:
            # No await between pushes: the consumer cannot drain
            results = [stream.push("BTCUSDT", 100.0 + i) for i in range(4)]
            assert results == [True, True, False, False]
            assert stream.dropped == 2
            await stream.join()
        finally:
            await stream.stop()

    @pytest.mark.asyncio
    async def test_failed_tick_does_not_stop_stream(self):
        fake = FlakyEngine()
        stream = QuoteStream(fake)
        await stream.start()
        try:
            stream.push("BTCUSDT", 1.0)
            stream.push("BTCUSDT", 2.0)
            await stream.join()
        finally:
            await stream.stop()
        assert fake.seen == [None, ("BTCUSDT", 2.0)]
        assert stream.processed == 1

    @pytest.mark.asyncio
    async def test_stop(self, engine):
        stream = QuoteStream(engine)
        await stream.start()
        assert stream.running is True
        await stream.stop()
        assert stream.running is False
        assert stream.push("BTCUSDT", 100.0) is False

    @pytest.mark.asyncio
    async def test_submit_returns_own_tick_actions(self, engine, sample_plan):
        stream = QuoteStream(engine)
        await stream.start()
        try:
            opened, idle, closed = await asyncio.gather(
                stream.submit("BTCUSDT", 100.0),
                stream.submit("BTCUSDT", 104.0),
                stream.submit("BTCUSDT", 110.0),
            )
        finally:
            await stream.stop()
        assert [a["action"] for a in opened] == ["open_position"]
        assert idle == []
        assert closed[0]["reason"] == "target1_hit"

    @pytest.mark.asyncio
    async def test_submit_when_stopped(self, engine):
        stream = QuoteStream(engine)
        with pytest.raises(QuoteStreamUnavailable, match="not running"):
            await stream.submit("BTCUSDT", 100.0)

    @pytest.mark.asyncio
    async def test_submit_propagates_tick_failure(self):
        stream = QuoteStream(FlakyEngine())
        await stream.start()
        try:
            with pytest.raises(RuntimeError, match="feed glitch"):
                await stream.submit("BTCUSDT", 1.0)
            assert await stream.submit("BTCUSDT", 2.0) == []
        finally:
            await stream.stop()
