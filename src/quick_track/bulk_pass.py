"""Cancellable bulk approval pipeline.

Approves the selected progress records one at a time. A failing item is
recorded and skipped; cancellation is checked between items, never inside
one, and approvals already committed stay committed.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import structlog

from src.core.context import OperationContext
from src.progress.exceptions import BulkPassError, TrackingError

from .selection import SelectionManager


if TYPE_CHECKING:
    from src.progress.service import ProgressTransitionService

logger = structlog.get_logger(__name__)

UNEXPECTED_ERROR_CODE = "UNEXPECTED_ERROR"


# ==============================================================================
# Run state
# ==============================================================================


class CancellationToken:
    """Cooperative cancellation flag shared between caller and run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class BulkPassProgress:
    """Emitted after every item."""

    processed: int
    total: int
    progress_id: UUID
    succeeded: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "progress",
            "processed": self.processed,
            "total": self.total,
            "progress_id": str(self.progress_id),
            "succeeded": self.succeeded,
        }


@dataclass
class BulkPassFailure:
    """One item that could not be approved."""

    progress_id: UUID
    error_code: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "progress_id": str(self.progress_id),
            "error_code": self.error_code,
            "reason": self.reason,
        }


@dataclass
class BulkPassReport:
    """Terminal report of a run."""

    run_id: UUID
    total_requested: int
    processed: int = 0
    succeeded_ids: list[UUID] = field(default_factory=list)
    failed: list[BulkPassFailure] = field(default_factory=list)
    cancelled: bool = False
    remaining_ids: list[UUID] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.succeeded_ids)

    @property
    def failed_ids(self) -> list[UUID]:
        return [f.progress_id for f in self.failed]

    @property
    def status(self) -> str:
        return "cancelled" if self.cancelled else "completed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "report",
            "run_id": str(self.run_id),
            "status": self.status,
            "total_requested": self.total_requested,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "succeeded_ids": [str(i) for i in self.succeeded_ids],
            "failed": [f.to_dict() for f in self.failed],
            "cancelled": self.cancelled,
            "remaining_ids": [str(i) for i in self.remaining_ids],
        }


class BulkPassChannel:
    """Async-iterable stream of progress updates ending with the report.

    Usage:
        channel = BulkPassChannel()
        task = asyncio.create_task(coordinator.run(ids, admin_id, channel=channel))
        async for update in channel:
            ...  # BulkPassProgress items, then the BulkPassReport
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, update: BulkPassProgress) -> None:
        if not self._closed:
            self._queue.put_nowait(update)

    def close(self, report: BulkPassReport | None = None) -> None:
        """Finish the stream, delivering ``report`` as the last item."""
        if self._closed:
            return
        self._closed = True
        if report is not None:
            self._queue.put_nowait(report)
        self._queue.put_nowait(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[BulkPassProgress | BulkPassReport]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


ProgressCallback = Callable[[BulkPassProgress], Awaitable[None] | None]
CancelledCallback = Callable[[BulkPassReport], Awaitable[None] | None]


async def _call(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


# ==============================================================================
# Coordinator
# ==============================================================================


class BulkPassCoordinator:
    """Runs bulk approvals, one run at a time."""

    def __init__(self, service: ProgressTransitionService, max_items: int = 500) -> None:
        self.service = service
        self.max_items = max_items
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(
        self,
        selection: SelectionManager | Sequence[UUID],
        admin_id: UUID | None,
        *,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        on_cancelled: CancelledCallback | None = None,
        channel: BulkPassChannel | None = None,
    ) -> BulkPassReport:
        """Approve every selected id sequentially.

        Args:
            selection: SelectionManager (its selected ids are used, and ids that
                succeed are removed from its available set afterwards) or ids
            admin_id: Acting admin
            cancel_token: Checked before each item
            on_progress: Called with (processed, total) after each item
            on_cancelled: Called with the report when the run was cancelled
            channel: Receives every progress update, then the report

        Raises:
            BulkPassError: Nothing to run, no admin, too many items, or a run
                is already in progress
        """
        if isinstance(selection, SelectionManager):
            ids = selection.selected_ids
        else:
            ids = list(dict.fromkeys(selection))

        report: BulkPassReport | None = None
        try:
            self._validate(ids, admin_id)
            self._running = True
            try:
                report = await self._process(
                    ids, admin_id, cancel_token, on_progress, channel
                )
            finally:
                self._running = False

            if isinstance(selection, SelectionManager):
                selection.remove_ids(report.succeeded_ids)
            if report.cancelled and on_cancelled is not None:
                await _call(on_cancelled, report)
            return report
        finally:
            if channel is not None:
                channel.close(report)

    def _validate(self, ids: list[UUID], admin_id: UUID | None) -> None:
        if not admin_id:
            raise BulkPassError("Admin id is required")
        if not ids:
            raise BulkPassError("No progress records selected")
        if len(ids) > self.max_items:
            raise BulkPassError(
                f"Too many records selected ({len(ids)}), limit is {self.max_items}"
            )
        if self._running:
            raise BulkPassError("A bulk pass is already running")

    async def _process(
        self,
        ids: list[UUID],
        admin_id: UUID,
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
        channel: BulkPassChannel | None,
    ) -> BulkPassReport:
        report = BulkPassReport(run_id=uuid4(), total_requested=len(ids))
        total = len(ids)

        with OperationContext(admin_id=admin_id, bulk_run_id=report.run_id):
            logger.info("bulk_pass_started", total=total)

            for index, progress_id in enumerate(ids):
                if cancel_token is not None and cancel_token.is_cancelled:
                    report.cancelled = True
                    report.remaining_ids = ids[index:]
                    logger.info(
                        "bulk_pass_cancelled",
                        processed=report.processed,
                        remaining=len(report.remaining_ids),
                    )
                    break

                succeeded = await self._approve_one(progress_id, admin_id, report)
                report.processed += 1

                update = BulkPassProgress(
                    processed=report.processed,
                    total=total,
                    progress_id=progress_id,
                    succeeded=succeeded,
                )
                if channel is not None:
                    channel.publish(update)
                if on_progress is not None:
                    try:
                        await _call(on_progress, update)
                    except Exception:
                        logger.exception("bulk_pass_progress_callback_failed")

            logger.info(
                "bulk_pass_finished",
                status=report.status,
                processed=report.processed,
                succeeded=report.succeeded,
                failed=len(report.failed),
            )
        return report

    async def _approve_one(
        self, progress_id: UUID, admin_id: UUID, report: BulkPassReport
    ) -> bool:
        try:
            await self.service.approve(progress_id, admin_id)
        except TrackingError as e:
            report.failed.append(BulkPassFailure(progress_id, e.code, e.message))
            logger.warning(
                "bulk_pass_item_failed",
                progress_id=str(progress_id),
                error_code=e.code,
                reason=e.message,
            )
            return False
        except Exception as e:
            report.failed.append(
                BulkPassFailure(progress_id, UNEXPECTED_ERROR_CODE, str(e) or type(e).__name__)
            )
            logger.exception("bulk_pass_item_error", progress_id=str(progress_id))
            return False

        report.succeeded_ids.append(progress_id)
        return True
