"""Telemetry recorder: asynchronous delivery of outcome records to sinks.

emit() never blocks the request path: records go onto an asyncio queue and
a background task drains it into every registered sink (SQLite store,
JSONL log, similarity index). Each sink write is retried with backoff, so
delivery is at-least-once; a record that still fails is logged and dropped
for that sink without affecting the others.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol, runtime_checkable

from modelpilot.schemas.outcome import OutcomeRecord

logger = logging.getLogger(__name__)

# Per-sink attempts before a record is given up on
_DEFAULT_MAX_ATTEMPTS = 3

# Base delay between sink retries, doubled each time
_DEFAULT_BASE_DELAY_S = 0.05


@runtime_checkable
class OutcomeSink(Protocol):
    """Anything that can durably accept an outcome record."""

    async def write(self, record: OutcomeRecord) -> None: ...


class TelemetryRecorder:
    """Fans outcome records out to sinks from a background task.

    Usage:
        recorder = TelemetryRecorder([store, index])
        recorder.emit(record)
        ...
        await recorder.close()
    """

    def __init__(
        self,
        sinks: Sequence[OutcomeSink] = (),
        *,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        base_delay: float = _DEFAULT_BASE_DELAY_S,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._sinks: list[OutcomeSink] = list(sinks)
        self._max_attempts = max(1, max_attempts)
        self._base_delay = base_delay
        self._sleep = sleep
        self._queue: asyncio.Queue[OutcomeRecord] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._closed = False
        self.emitted = 0
        self.delivered = 0
        self.dropped = 0

    def add_sink(self, sink: OutcomeSink) -> None:
        self._sinks.append(sink)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def emit(self, record: OutcomeRecord) -> None:
        """Queue a record for delivery. Safe to call from synchronous code."""
        if self._closed:
            logger.warning("Telemetry closed, dropping outcome %s", record.record_id)
            self.dropped += 1
            return
        self._queue.put_nowait(record)
        self.emitted += 1
        self._ensure_worker()

    def _ensure_worker(self) -> None:
        """Start the background delivery loop if not already running."""
        if self._worker is None or self._worker.done():
            try:
                loop = asyncio.get_running_loop()
                self._worker = loop.create_task(self._drain_loop())
            except RuntimeError:
                # No running loop; records wait for the next flush()
                pass

    async def _drain_loop(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self._deliver(record)
            finally:
                self._queue.task_done()

    async def _deliver(self, record: OutcomeRecord) -> None:
        for sink in self._sinks:
            if await self._write_with_retry(sink, record):
                self.delivered += 1
            else:
                self.dropped += 1

    async def _write_with_retry(self, sink: OutcomeSink, record: OutcomeRecord) -> bool:
        for attempt in range(self._max_attempts):
            try:
                await sink.write(record)
                return True
            except Exception as e:
                if attempt + 1 >= self._max_attempts:
                    logger.error(
                        "Dropping outcome %s for %s after %d attempt(s): %s",
                        record.record_id, type(sink).__name__, self._max_attempts, e,
                    )
                    return False
                delay = self._base_delay * (2 ** attempt)
                logger.warning(
                    "Outcome write to %s failed (attempt %d/%d), retrying in %.2fs: %s",
                    type(sink).__name__, attempt + 1, self._max_attempts, delay, e,
                )
                await self._sleep(delay)
        return False

    async def flush(self) -> None:
        """Wait until every queued record has been delivered or dropped."""
        if self._queue.qsize():
            self._ensure_worker()
        await self._queue.join()

    async def close(self) -> None:
        """Flush remaining records and stop the background task."""
        await self.flush()
        self._closed = True
        if self._worker and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
