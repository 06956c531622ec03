"""Progress approval API endpoints.

Provides routes for:
- Progress and Quick Track queries
- Tracking log queries
- Enrollment
- Counter, link, submission, approval, rejection and unlock commands

The acting admin is taken from the X-Admin-ID header.
"""

from uuid import UUID

from fastapi import APIRouter, Query, status

from .dependencies import AdminId, ProgressServiceDep, handle_tracking_error
from .exceptions import TrackingError
from .schemas import (
    EnrollRequest,
    PassConditionResponse,
    ProgressListResponse,
    ProgressResponse,
    ProjectLinkRequest,
    RejectRequest,
    TrackingLogListResponse,
    TrackingLogResponse,
    TransitionResponse,
    UnlockRequest,
    UnlockResponse,
    UpdateCountRequest,
)
from .service import TransitionResult


router = APIRouter(prefix="/v1/progress", tags=["progress"])


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        progress=ProgressResponse.from_entity(result.progress),
        unlock=UnlockResponse.from_result(result.unlock),
    )


# ==============================================================================
# Query Endpoints
# ==============================================================================
# Fixed-prefix routes are declared before /{student_id}/{course_id}.


@router.get(
    "/pending",
    response_model=ProgressListResponse,
    summary="List progress awaiting approval",
)
async def list_pending_approval(
    progress_service: ProgressServiceDep,
    course_id: UUID | None = Query(None, description="Filter by course"),
) -> ProgressListResponse:
    """Quick Track: records in pending_approval, oldest submission first."""
    try:
        records = await progress_service.list_pending_approval(course_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    items = [ProgressResponse.from_entity(p) for p in records]
    return ProgressListResponse(items=items, total=len(items))


@router.get(
    "/student/{student_id}",
    response_model=ProgressListResponse,
    summary="List a student's progress records",
)
async def list_student_progress(
    student_id: UUID,
    progress_service: ProgressServiceDep,
) -> ProgressListResponse:
    try:
        records = await progress_service.list_student_progress(student_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    items = [ProgressResponse.from_entity(p) for p in records]
    return ProgressListResponse(items=items, total=len(items))


@router.get(
    "/logs/course/{course_id}",
    response_model=TrackingLogListResponse,
    summary="List tracking logs for a course",
)
async def list_course_logs(
    course_id: UUID,
    progress_service: ProgressServiceDep,
) -> TrackingLogListResponse:
    try:
        logs = await progress_service.list_course_logs(course_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    items = [TrackingLogResponse.from_entity(entry) for entry in logs]
    return TrackingLogListResponse(items=items, total=len(items))


@router.get(
    "/logs/admin/{admin_id}",
    response_model=TrackingLogListResponse,
    summary="List tracking logs performed by an admin",
)
async def list_admin_logs(
    admin_id: UUID,
    progress_service: ProgressServiceDep,
) -> TrackingLogListResponse:
    try:
        logs = await progress_service.list_admin_logs(admin_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    items = [TrackingLogResponse.from_entity(entry) for entry in logs]
    return TrackingLogListResponse(items=items, total=len(items))


@router.get(
    "/logs/{student_id}",
    response_model=TrackingLogListResponse,
    summary="List tracking logs for a student",
)
async def list_tracking_logs(
    student_id: UUID,
    progress_service: ProgressServiceDep,
    course_id: UUID | None = Query(None, description="Filter by course"),
) -> TrackingLogListResponse:
    """Audit trail, newest first."""
    try:
        logs = await progress_service.list_tracking_logs(student_id, course_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    items = [TrackingLogResponse.from_entity(entry) for entry in logs]
    return TrackingLogListResponse(items=items, total=len(items))


@router.get(
    "/{progress_id}/pass-condition",
    response_model=PassConditionResponse,
    summary="Check pass condition",
)
async def get_pass_condition(
    progress_id: UUID,
    progress_service: ProgressServiceDep,
) -> PassConditionResponse:
    """Which course requirements are still missing."""
    try:
        result = await progress_service.get_pass_condition(progress_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return PassConditionResponse.from_result(result)


@router.get(
    "/{student_id}/{course_id}",
    response_model=ProgressResponse,
    summary="Get a student's progress in a course",
)
async def get_progress(
    student_id: UUID,
    course_id: UUID,
    progress_service: ProgressServiceDep,
) -> ProgressResponse:
    try:
        progress = await progress_service.get_progress(student_id, course_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return ProgressResponse.from_entity(progress)


# ==============================================================================
# Enrollment
# ==============================================================================


@router.post(
    "/enroll",
    response_model=ProgressResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enroll a student in a course",
)
async def enroll(
    data: EnrollRequest,
    progress_service: ProgressServiceDep,
    admin_id: AdminId,
) -> ProgressResponse:
    """Creates the record as not_started or locked depending on prerequisites."""
    try:
        progress = await progress_service.enroll(data.student_id, data.course_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return ProgressResponse.from_entity(progress)


# ==============================================================================
# Counter and Link Endpoints
# ==============================================================================


@router.put(
    "/{progress_id}/sessions",
    response_model=ProgressResponse,
    summary="Set completed sessions",
)
async def update_sessions(
    progress_id: UUID,
    data: UpdateCountRequest,
    progress_service: ProgressServiceDep,
    admin_id: AdminId,
) -> ProgressResponse:
    try:
        progress = await progress_service.update_sessions(progress_id, data.count, admin_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return ProgressResponse.from_entity(progress)


@router.put(
    "/{progress_id}/projects",
    response_model=ProgressResponse,
    summary="Set submitted projects",
)
async def update_projects(
    progress_id: UUID,
    data: UpdateCountRequest,
    progress_service: ProgressServiceDep,
    admin_id: AdminId,
) -> ProgressResponse:
    try:
        progress = await progress_service.update_projects(progress_id, data.count, admin_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return ProgressResponse.from_entity(progress)


@router.post(
    "/{progress_id}/links",
    response_model=ProgressResponse,
    summary="Add a project link",
)
async def add_project_link(
    progress_id: UUID,
    data: ProjectLinkRequest,
    progress_service: ProgressServiceDep,
    admin_id: AdminId,
) -> ProgressResponse:
    try:
        progress = await progress_service.add_project_link(progress_id, data.url, admin_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return ProgressResponse.from_entity(progress)


@router.delete(
    "/{progress_id}/links",
    response_model=ProgressResponse,
    summary="Remove a project link",
)
async def remove_project_link(
    progress_id: UUID,
    progress_service: ProgressServiceDep,
    admin_id: AdminId,
    url: str = Query(..., min_length=1, description="Link to remove"),
) -> ProgressResponse:
    try:
        progress = await progress_service.remove_project_link(progress_id, url, admin_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return ProgressResponse.from_entity(progress)


# ==============================================================================
# Approval Workflow Endpoints
# ==============================================================================


@router.post(
    "/{progress_id}/submit",
    response_model=TransitionResponse,
    summary="Submit for approval",
)
async def submit_for_approval(
    progress_id: UUID,
    progress_service: ProgressServiceDep,
    admin_id: AdminId,
) -> TransitionResponse:
    """Moves to pending_approval, or straight to completed without verification."""
    try:
        result = await progress_service.submit_for_approval(progress_id, admin_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return _transition_response(result)


@router.post(
    "/{progress_id}/approve",
    response_model=TransitionResponse,
    summary="Approve a submission",
)
async def approve(
    progress_id: UUID,
    progress_service: ProgressServiceDep,
    admin_id: AdminId,
) -> TransitionResponse:
    """Completes the course and unlocks the next one when applicable."""
    try:
        result = await progress_service.approve(progress_id, admin_id)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return _transition_response(result)


@router.post(
    "/{progress_id}/reject",
    response_model=ProgressResponse,
    summary="Reject a submission",
)
async def reject(
    progress_id: UUID,
    data: RejectRequest,
    progress_service: ProgressServiceDep,
    admin_id: AdminId,
) -> ProgressResponse:
    try:
        progress = await progress_service.reject(progress_id, admin_id, data.reason)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return ProgressResponse.from_entity(progress)


@router.post(
    "/{progress_id}/unlock",
    response_model=UnlockResponse,
    summary="Force-unlock the next course or semester",
)
async def unlock(
    progress_id: UUID,
    data: UnlockRequest,
    progress_service: ProgressServiceDep,
    admin_id: AdminId,
) -> UnlockResponse:
    try:
        result = await progress_service.unlock(progress_id, admin_id, data.scope)
    except TrackingError as e:
        raise handle_tracking_error(e) from e
    return UnlockResponse.from_result(result)
