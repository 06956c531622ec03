"""Fire-and-forget domain event dispatcher.

Committed transitions emit events (approval, rejection, unlocks) that
notification subscribers consume. Emission never blocks and never fails the
caller: a full queue drops the event, and subscriber errors are logged by the
background worker.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

import structlog

from .models import utc_now


logger = structlog.get_logger(__name__)


class EventName:
    """Domain event names."""

    PROGRESS_APPROVED = "progress_approved"
    PROGRESS_REJECTED = "progress_rejected"
    PROGRESS_COMPLETED = "progress_completed"
    COURSE_UNLOCKED = "course_unlocked"
    SEMESTER_UNLOCKED = "semester_unlocked"


@dataclass
class TrackingEvent:
    """Event describing a committed progress change."""

    id: UUID
    name: str
    student_id: UUID
    course_id: UUID
    performed_by: UUID
    occurred_at: datetime
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        name: str,
        student_id: UUID,
        course_id: UUID,
        performed_by: UUID,
        **data: Any,
    ) -> TrackingEvent:
        return cls(
            id=uuid4(),
            name=name,
            student_id=student_id,
            course_id=course_id,
            performed_by=performed_by,
            occurred_at=utc_now(),
            data=data,
        )


EventHandler = Callable[[TrackingEvent], Awaitable[None]]


class TrackingEventDispatcher:
    """Non-blocking dispatcher with a background worker.

    Events are queued with ``put_nowait`` and delivered to every subscriber
    in emission order once ``start()`` has been awaited.
    """

    def __init__(self, queue_size: int = 1000) -> None:
        self.queue_size = queue_size
        self._queue: asyncio.Queue[TrackingEvent] = asyncio.Queue(maxsize=queue_size)
        self._handlers: list[EventHandler] = []
        self._running = False
        self._worker_task: asyncio.Task | None = None

        self._events_emitted = 0
        self._events_dropped = 0
        self._events_delivered = 0

    def subscribe(self, handler: EventHandler) -> None:
        """Register an async handler called for every event."""
        self._handlers.append(handler)

    def emit(self, event: TrackingEvent) -> bool:
        """Queue an event. Returns False if the queue is full (event dropped)."""
        try:
            self._queue.put_nowait(event)
            self._events_emitted += 1
            return True
        except asyncio.QueueFull:
            self._events_dropped += 1
            logger.warning(
                "tracking_event_queue_full",
                event_name=event.name,
                queue_size=self.queue_size,
                dropped_total=self._events_dropped,
            )
            return False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "queue_size": self._queue.qsize(),
            "events_emitted": self._events_emitted,
            "events_dropped": self._events_dropped,
            "events_delivered": self._events_delivered,
            "subscribers": len(self._handlers),
        }

    # ==========================================================================
    # Background Worker
    # ==========================================================================

    async def start(self) -> None:
        """Start the background worker."""
        if self._running:
            logger.warning("tracking_event_dispatcher_already_running")
            return

        self._running = True
        self._worker_task = asyncio.create_task(
            self._worker_loop(),
            name="tracking_event_worker",
        )
        logger.info("tracking_event_dispatcher_started", queue_size=self.queue_size)

    async def stop(self) -> None:
        """Stop the worker and deliver whatever is still queued."""
        if not self._running:
            return

        self._running = False

        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        await self.drain()

        logger.info(
            "tracking_event_dispatcher_stopped",
            events_emitted=self._events_emitted,
            events_delivered=self._events_delivered,
            events_dropped=self._events_dropped,
        )

    async def drain(self) -> None:
        """Deliver all queued events now."""
        while not self._queue.empty():
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._deliver(event)

    async def _worker_loop(self) -> None:
        while self._running:
            event = await self._queue.get()
            await self._deliver(event)

    async def _deliver(self, event: TrackingEvent) -> None:
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "tracking_event_handler_failed",
                    event_name=event.name,
                    event_id=str(event.id),
                    handler=getattr(handler, "__name__", repr(handler)),
                )
        self._events_delivered += 1


async def log_event_handler(event: TrackingEvent) -> None:
    """Default subscriber: record the event in the application log."""
    logger.info(
        "tracking_event",
        event_name=event.name,
        student_id=str(event.student_id),
        course_id=str(event.course_id),
        performed_by=str(event.performed_by),
        **{k: str(v) for k, v in event.data.items()},
    )
