"""Quote Stream — one asyncio channel of price updates, one evaluation task.

Feed adapters call ``push`` (non-blocking, fire and forget). The REST quote
endpoint calls ``submit`` and awaits the actions of its own tick. A single
consumer task feeds the engine, so ticks are applied in arrival order and
never overlap. Stopping cancels between ticks; a tick in progress always
completes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from battlecard.core.data_types import Quote
from battlecard.core.errors import QuoteStreamUnavailable
from battlecard.engine.scenario_engine import ScenarioEngine

logger = logging.getLogger(__name__)


@dataclass
class _PendingQuote:
    instrument: str
    price: float
    high_24h: float | None = None
    low_24h: float | None = None
    result: asyncio.Future | None = None  # set by submit()


class QuoteStream:
    def __init__(
        self,
        engine: ScenarioEngine,
        max_queue_depth: int = 1000,
        on_actions: Callable[[list[dict]], None] | None = None,
    ) -> None:
        self._engine = engine
        self._max_queue_depth = max_queue_depth
        self._on_actions = on_actions
        self._queue: asyncio.Queue[_PendingQuote] | None = None
        self._task: asyncio.Task | None = None
        self._running = False
        self._dropped = 0
        self._processed = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def processed(self) -> int:
        return self._processed

    def _enqueue(self, pending: _PendingQuote) -> bool:
        if self._queue is None:
            logger.debug("Quote stream not running, ignoring %s", pending.instrument)
            return False
        if self._queue.qsize() >= self._max_queue_depth:
            self._dropped += 1
            logger.warning(
                "Quote stream backpressure: queue full (%d), dropping %s @ %s",
                self._max_queue_depth,
                pending.instrument,
                pending.price,
            )
            return False
        self._queue.put_nowait(pending)
        return True

    def push(
        self,
        instrument: str,
        price: float,
        high_24h: float | None = None,
        low_24h: float | None = None,
    ) -> bool:
        """Queue a price update. False if the stream is stopped or full."""
        return self._enqueue(_PendingQuote(instrument, price, high_24h, low_24h))

    def push_quote(self, quote: Quote) -> bool:
        return self.push(quote.instrument, quote.price, quote.high_24h, quote.low_24h)

    async def submit(
        self,
        instrument: str,
        price: float,
        high_24h: float | None = None,
        low_24h: float | None = None,
    ) -> list[dict]:
        """Queue a price update and wait for the actions its tick produced.

        Raises:
            QuoteStreamUnavailable: stream stopped or queue full.
        """
        result = asyncio.get_running_loop().create_future()
        if not self._enqueue(_PendingQuote(instrument, price, high_24h, low_24h, result)):
            state = "full" if self._running else "not running"
            raise QuoteStreamUnavailable(f"Quote stream {state}, {instrument} @ {price} not queued")
        return await result

    async def start(self) -> None:
        if self._running:
            return
        self._queue = asyncio.Queue(maxsize=self._max_queue_depth)
        self._running = True
        self._task = asyncio.create_task(self._consume())

    async def stop(self) -> None:
        """Stop consuming. Quotes still queued are discarded; their submitters are cancelled."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._queue is not None:
            while not self._queue.empty():
                pending = self._queue.get_nowait()
                if pending.result is not None and not pending.result.done():
                    pending.result.cancel()
        self._queue = None

    async def join(self) -> None:
        """Wait until every queued quote has been evaluated."""
        if self._queue is not None:
            await self._queue.join()

    async def _consume(self) -> None:
        while self._running:
            try:
                pending = await asyncio.wait_for(self._queue.get(), timeout=0.1)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            try:
                actions = self._engine.on_price_update(
                    pending.instrument, pending.price, pending.high_24h, pending.low_24h
                )
                self._processed += 1
                if pending.result is not None and not pending.result.done():
                    pending.result.set_result(actions)
                if actions and self._on_actions is not None:
                    self._on_actions(actions)
            except Exception as e:
                if pending.result is not None and not pending.result.done():
                    pending.result.set_exception(e)
                else:
                    logger.exception("Evaluation failed for %s @ %s", pending.instrument, pending.price)
            finally:
                self._queue.task_done()
