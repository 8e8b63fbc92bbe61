"""
Consumers for the transport's two delivery event streams.

Each stream gets its own listener: a queue plus a receive-and-dispatch loop.
The loop never waits on a single event. Every event runs as its own task,
bounded by a semaphore, and the blocking reconciliation runs in a worker
thread with a session of its own. The two listeners share nothing but the
database.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Set, Tuple

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from status_relay.config import settings
from status_relay.engine import ReconciliationResult, reconcile
from status_relay.metrics import record_event_outcome
from status_relay.normalizer import CanonicalStatus, normalize_receipt_kind, normalize_status_code
from status_relay.schemas import ReceiptUpdateEvent, StatusUpdateEvent
from status_relay.storage import SessionLocal

logger = logging.getLogger(__name__)


class EventListener(ABC):
    """Base listener; subclasses define the envelope and its normalization."""

    stream: str = ""
    envelope: type = BaseModel

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        concurrency: Optional[int] = None,
        maxsize: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.queue: asyncio.Queue = asyncio.Queue(
            maxsize=settings.EVENT_QUEUE_MAXSIZE if maxsize is None else maxsize
        )
        self._semaphore = asyncio.Semaphore(concurrency or settings.LISTENER_CONCURRENCY)
        self._in_flight: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None

    @abstractmethod
    def to_status(self, event: Any) -> CanonicalStatus:
        """Map a validated envelope to its canonical status."""

    def parse(self, raw: Any) -> Optional[Tuple[str, CanonicalStatus]]:
        """
        Validate a raw event and normalize it.

        Returns:
            (external_id, status), or None if the envelope is malformed
        """
        try:
            event = self.envelope.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                f"Skipping malformed {self.stream} event: {e.error_count()} validation error(s)",
                extra={"stream": self.stream, "event": repr(raw)[:500]},
            )
            return None
        return event.key.id, self.to_status(event)

    def has_room(self, count: int) -> bool:
        """True if `count` more events fit in the queue."""
        if self.queue.maxsize <= 0:
            return True
        return self.queue.qsize() + count <= self.queue.maxsize

    def submit(self, instance_id: str, raw: Any) -> None:
        """Queue a raw event. Raises asyncio.QueueFull when the queue is full; check has_room first."""
        self.queue.put_nowait((instance_id, raw))

    async def handle(self, instance_id: str, raw: Any) -> Optional[ReconciliationResult]:
        """Process one event; never raises."""
        parsed = self.parse(raw)
        if parsed is None:
            record_event_outcome(self.stream, "malformed")
            return None
        external_id, status = parsed

        try:
            result = await asyncio.to_thread(
                reconcile, self.session_factory, instance_id, external_id, status
            )
        except Exception as e:
            logger.error(
                f"Unexpected error reconciling {self.stream} event: {e}",
                exc_info=True,
                extra={"instance_id": instance_id, "external_id": external_id, "status": status.value},
            )
            record_event_outcome(self.stream, "failed")
            return None

        if result.success:
            record_event_outcome(self.stream, "reconciled")
        elif result.error == "message not found":
            record_event_outcome(self.stream, "not_found")
        else:
            record_event_outcome(self.stream, "failed")
        return result

    async def _run_one(self, instance_id: str, raw: Any) -> None:
        try:
            async with self._semaphore:
                await self.handle(instance_id, raw)
        finally:
            self.queue.task_done()

    async def run(self) -> None:
        """Receive-and-dispatch loop; runs until cancelled."""
        logger.info(f"{self.stream} listener started")
        while True:
            instance_id, raw = await self.queue.get()
            task = asyncio.create_task(self._run_one(instance_id, raw))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    def start(self) -> asyncio.Task:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self.run(), name=f"{self.stream}-listener")
        return self._loop_task

    async def drain(self) -> None:
        """Wait until every queued event has been processed."""
        await self.queue.join()

    async def stop(self) -> None:
        """Stop receiving and wait for events already in flight."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info(f"{self.stream} listener stopped")


class StatusListener(EventListener):
    """Status-update stream: `key.id` plus an integer status code."""

    stream = "status"
    envelope = StatusUpdateEvent

    def to_status(self, event: StatusUpdateEvent) -> CanonicalStatus:
        return normalize_status_code(event.update.status)


class ReceiptListener(EventListener):
    """Receipt stream: `key.id` plus a receipt kind (read or delivered)."""

    stream = "receipts"
    envelope = ReceiptUpdateEvent

    def to_status(self, event: ReceiptUpdateEvent) -> CanonicalStatus:
        return normalize_receipt_kind(event.receipt.type)


class ListenerHub:
    """Owns one listener per stream and runs them as independent tasks."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, **kwargs):
        self.status = StatusListener(session_factory, **kwargs)
        self.receipts = ReceiptListener(session_factory, **kwargs)

    def listener_for(self, stream: str) -> EventListener:
        if stream == self.status.stream:
            return self.status
        if stream == self.receipts.stream:
            return self.receipts
        raise KeyError(stream)

    def start(self) -> None:
        self.status.start()
        self.receipts.start()

    async def drain(self) -> None:
        await asyncio.gather(self.status.drain(), self.receipts.drain())

    async def stop(self) -> None:
        await asyncio.gather(self.status.stop(), self.receipts.stop())
