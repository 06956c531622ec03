"""Quick Track API endpoints.

Provides:
- POST /v1/quick-track/bulk-pass - Approve a selection, returns the report
- WS /ws/quick-track/bulk-pass - Same run with live progress and cancellation
"""

import asyncio
import contextlib
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from src.core.logging import get_logger
from src.progress.dependencies import AdminId, handle_tracking_error
from src.progress.exceptions import TrackingError

from .bulk_pass import BulkPassChannel, CancellationToken
from .dependencies import BulkPassCoordinatorDep
from .schemas import BulkPassReportResponse, BulkPassRequest


logger = get_logger(__name__)

router = APIRouter(prefix="/v1/quick-track", tags=["quick-track"])
ws_router = APIRouter(tags=["quick-track-ws"])


@router.post(
    "/bulk-pass",
    response_model=BulkPassReportResponse,
    summary="Approve selected progress records",
)
async def bulk_pass(
    data: BulkPassRequest,
    coordinator: BulkPassCoordinatorDep,
    admin_id: AdminId,
) -> BulkPassReportResponse:
    """Approves each id in order; failures are reported per item."""
    try:
        report = await coordinator.run(data.progress_ids, admin_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return BulkPassReportResponse.from_report(report)


# ==============================================================================
# WebSocket
# ==============================================================================


def _parse_admin_id(raw: str | None) -> UUID | None:
    if not raw:
        return None
    try:
        return UUID(raw)
    except ValueError:
        logger.warning("bulk_pass_ws_invalid_admin_id")
        return None


async def _listen_for_cancel(websocket: WebSocket, token: CancellationToken) -> None:
    """Cancel the run on a cancel message or when the client goes away."""
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                continue
            if isinstance(message, dict) and message.get("type") == "cancel":
                token.cancel()
                logger.info("bulk_pass_cancel_requested")
    except WebSocketDisconnect:
        token.cancel()
    except Exception as e:
        logger.warning("bulk_pass_ws_listener_failed", error=str(e))
        token.cancel()


@ws_router.websocket("/ws/quick-track/bulk-pass")
async def bulk_pass_websocket(
    websocket: WebSocket,
    admin_id: str | None = Query(None, description="Acting admin (or X-Admin-ID header)"),
) -> None:
    """Live bulk pass.

    Connect with: ws://host/ws/quick-track/bulk-pass?admin_id=<uuid>

    Messages you can send:
    - {"type": "start", "progress_ids": [...]} - Start the run (once)
    - {"type": "cancel"} - Stop before the next item

    Messages received:
    - {"type": "progress", "processed": N, "total": M, ...} - After every item
    - {"type": "report", ...} - Terminal report
    - {"type": "error", "code": ..., "message": ...} - Run could not start
    """
    coordinator = getattr(websocket.app.state, "bulk_pass_coordinator", None)
    admin = _parse_admin_id(admin_id or websocket.headers.get("X-Admin-ID"))
    if coordinator is None or admin is None:
        await websocket.close(code=4001, reason="Admin id required")
        return

    await websocket.accept()
    token = CancellationToken()
    run_task: asyncio.Task | None = None
    listener: asyncio.Task | None = None

    try:
        message = await websocket.receive_json()
        if not isinstance(message, dict) or message.get("type") != "start":
            await websocket.send_json(
                {"type": "error", "code": "INVALID_REQUEST", "message": "Expected a start message"}
            )
            return
        try:
            ids = [UUID(str(i)) for i in message.get("progress_ids") or []]
        except ValueError:
            await websocket.send_json(
                {"type": "error", "code": "INVALID_REQUEST", "message": "Invalid progress id"}
            )
            return

        channel = BulkPassChannel()
        run_task = asyncio.create_task(
            coordinator.run(ids, admin, cancel_token=token, channel=channel)
        )
        listener = asyncio.create_task(_listen_for_cancel(websocket, token))

        async for update in channel:
            await websocket.send_json(update.to_dict())

        try:
            await run_task
        except TrackingError as e:
            await websocket.send_json({"type": "error", "code": e.code, "message": e.message})

    except WebSocketDisconnect:
        token.cancel()
    except Exception as e:
        logger.warning("bulk_pass_ws_error", error=str(e))
        token.cancel()
    finally:
        if listener and not listener.done():
            listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await listener
        if run_task and not run_task.done():
            try:
                await run_task
            except TrackingError as e:
                logger.info("bulk_pass_ws_run_aborted", code=e.code)
        with contextlib.suppress(RuntimeError):
            await websocket.close()

