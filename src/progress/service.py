"""Progress transition service layer.

Business logic for:
- Session/project counters and project links
- Submission, approval and rejection
- Unlock cascade after completion and direct admin unlocks
- Enrollment and read queries (Quick Track, tracking logs)

Every mutation is read -> validate -> compare-and-swap -> tracking log.
Validation failures raise before anything is written.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse
from uuid import UUID

import structlog

from .directory import CourseDirectory
from .events import EventName, TrackingEvent, TrackingEventDispatcher
from .exceptions import (
    AlreadyApprovedError,
    AlreadyEnrolledError,
    CourseNotFoundError,
    InvalidProjectUrlError,
    InvalidStatusTransitionError,
    NotPendingApprovalError,
    PassConditionNotMetError,
    ProgressConflictError,
    ProgressNotFoundError,
    ProjectsExceedRequiredError,
    RejectionReasonRequiredError,
    SessionsExceedRequiredError,
    TrackingError,
)
from .models import (
    EDITABLE_STATUSES,
    CourseInfo,
    ProgressStatus,
    StudentProgress,
    TrackingAction,
    TrackingLog,
    TrackingValue,
    UnlockScope,
    create_progress,
    create_tracking_log,
)
from .repository import ProgressStore, ProgressWriter, TrackingLogStore
from .unlock import UnlockCascade, UnlockResult


if TYPE_CHECKING:
    from src.config.settings import Settings

logger = structlog.get_logger(__name__)

ALLOWED_URL_SCHEMES = frozenset({"http", "https"})


# ==============================================================================
# Results
# ==============================================================================


@dataclass
class PassConditionResult:
    """Whether a record satisfies its course's pass requirements."""

    completed_sessions: int
    required_sessions: int
    projects_submitted: int
    required_projects: int
    project_links: int
    missing: list[str] = field(default_factory=list)

    @property
    def is_met(self) -> bool:
        return not self.missing


@dataclass
class TransitionResult:
    """Outcome of a committed transition."""

    progress: StudentProgress
    unlock: UnlockResult = field(default_factory=UnlockResult)


@dataclass
class _Change:
    """A planned mutation: field changes plus the log values describing it."""

    action: TrackingAction
    changes: dict[str, Any]
    previous_value: TrackingValue
    new_value: TrackingValue


# Returns None when the operation would not change anything
_Planner = Callable[[StudentProgress, CourseInfo], _Change | None]


# ==============================================================================
# Helpers
# ==============================================================================


def validate_project_url(url: str) -> str:
    """Return the normalized URL or raise InvalidProjectUrlError."""
    candidate = (url or "").strip()
    if not candidate:
        raise InvalidProjectUrlError("Project URL is required")
    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES or not parsed.netloc:
        raise InvalidProjectUrlError(f"Invalid project URL: {candidate}")
    return candidate


def check_pass_condition(progress: StudentProgress, course: CourseInfo) -> PassConditionResult:
    """Evaluate sessions, projects and links against the course requirements."""
    missing = []
    if progress.completed_sessions < course.required_sessions:
        missing.append(
            f"sessions {progress.completed_sessions}/{course.required_sessions}"
        )
    if progress.projects_submitted < course.required_projects:
        missing.append(
            f"projects {progress.projects_submitted}/{course.required_projects}"
        )
    if course.required_projects > 0 and not progress.project_links:
        missing.append("at least one project link")

    return PassConditionResult(
        completed_sessions=progress.completed_sessions,
        required_sessions=course.required_sessions,
        projects_submitted=progress.projects_submitted,
        required_projects=course.required_projects,
        project_links=len(progress.project_links),
        missing=missing,
    )


def _editing_status(current: StudentProgress, count: int | None = None) -> str:
    """Status after an edit: rejected re-enters in_progress, not_started starts."""
    if current.status == ProgressStatus.REJECTED.value:
        return ProgressStatus.IN_PROGRESS.value
    if current.status == ProgressStatus.NOT_STARTED.value and (count is None or count > 0):
        return ProgressStatus.IN_PROGRESS.value
    return current.status


# ==============================================================================
# Progress Transition Service
# ==============================================================================


class ProgressTransitionService:
    """State machine over StudentProgress records."""

    def __init__(
        self,
        progress_store: ProgressStore,
        log_store: TrackingLogStore,
        directory: CourseDirectory,
        settings: "Settings",
        dispatcher: TrackingEventDispatcher | None = None,
    ):
        self.progress_store = progress_store
        self.log_store = log_store
        self.directory = directory
        self.dispatcher = dispatcher
        self.max_attempts = settings.progress_cas_max_attempts
        self.writer = ProgressWriter(
            progress_store,
            log_store,
            log_append_attempts=settings.tracking_log_append_attempts,
        )
        self.cascade = UnlockCascade(
            progress_store,
            directory,
            self.writer,
            dispatcher=dispatcher,
            max_attempts=settings.progress_cas_max_attempts,
        )

    # ==========================================================================
    # Queries
    # ==========================================================================

    async def get_progress(self, student_id: UUID, course_id: UUID) -> StudentProgress:
        progress = await self.progress_store.get(student_id, course_id)
        if progress is None:
            raise ProgressNotFoundError()
        return progress

    async def get_progress_by_id(self, progress_id: UUID) -> StudentProgress:
        progress = await self.progress_store.get_by_id(progress_id)
        if progress is None:
            raise ProgressNotFoundError()
        return progress

    async def list_pending_approval(
        self, course_id: UUID | None = None
    ) -> list[StudentProgress]:
        """Quick Track: records awaiting approval, oldest first."""
        return await self.progress_store.find_pending_approval(course_id)

    async def list_tracking_logs(
        self, student_id: UUID, course_id: UUID | None = None
    ) -> list[TrackingLog]:
        """Audit trail for a student, newest first."""
        if course_id is None:
            return await self.log_store.list_by_student(student_id)
        return await self.log_store.list_by_student_course(student_id, course_id)

    async def list_student_progress(self, student_id: UUID) -> list[StudentProgress]:
        """Every progress record of a student."""
        return await self.progress_store.list_by_student(student_id)

    async def list_course_logs(self, course_id: UUID) -> list[TrackingLog]:
        """Audit trail for a course across students, newest first."""
        return await self.log_store.list_by_course(course_id)

    async def list_admin_logs(self, admin_id: UUID) -> list[TrackingLog]:
        """Changes performed by one admin, newest first."""
        return await self.log_store.list_by_performer(admin_id)

    async def get_pass_condition(self, progress_id: UUID) -> PassConditionResult:
        progress = await self.get_progress_by_id(progress_id)
        course = await self._get_course(progress.course_id)
        return check_pass_condition(progress, course)

    # ==========================================================================
    # Enrollment
    # ==========================================================================

    async def enroll(self, student_id: UUID, course_id: UUID) -> StudentProgress:
        """Create the student's record for a course.

        Starts ``not_started`` when the course is open to the student (first
        course overall, or its predecessor is completed), ``locked`` otherwise.
        """
        course = await self._get_course(course_id)
        if await self.progress_store.get(student_id, course_id) is not None:
            raise AlreadyEnrolledError()

        status = (
            ProgressStatus.NOT_STARTED
            if await self.cascade.is_open_for(student_id, course)
            else ProgressStatus.LOCKED
        )
        progress = create_progress(student_id, course_id, status)
        if not await self.progress_store.create(progress):
            raise AlreadyEnrolledError()

        logger.info(
            "progress_enrolled",
            progress_id=str(progress.id),
            student_id=str(student_id),
            course_id=str(course_id),
            status=progress.status,
        )
        return progress

    # ==========================================================================
    # Counters and links
    # ==========================================================================

    async def update_sessions(
        self, progress_id: UUID, new_count: int, admin_id: UUID
    ) -> StudentProgress:
        def plan(current: StudentProgress, course: CourseInfo) -> _Change | None:
            self._require_editable(current, TrackingAction.UPDATE_SESSIONS)
            if new_count < 0 or new_count > course.required_sessions:
                raise SessionsExceedRequiredError(new_count, course.required_sessions)
            if new_count == current.completed_sessions:
                return None
            return _Change(
                TrackingAction.UPDATE_SESSIONS,
                {
                    "completed_sessions": new_count,
                    "status": _editing_status(current, new_count),
                },
                current.completed_sessions,
                new_count,
            )

        return await self._mutate_with_retry(progress_id, admin_id, plan)

    async def update_projects(
        self, progress_id: UUID, new_count: int, admin_id: UUID
    ) -> StudentProgress:
        def plan(current: StudentProgress, course: CourseInfo) -> _Change | None:
            self._require_editable(current, TrackingAction.UPDATE_PROJECTS)
            if new_count < 0 or new_count > course.required_projects:
                raise ProjectsExceedRequiredError(new_count, course.required_projects)
            if new_count == current.projects_submitted:
                return None
            return _Change(
                TrackingAction.UPDATE_PROJECTS,
                {
                    "projects_submitted": new_count,
                    "status": _editing_status(current, new_count),
                },
                current.projects_submitted,
                new_count,
            )

        return await self._mutate_with_retry(progress_id, admin_id, plan)

    async def add_project_link(
        self, progress_id: UUID, url: str, admin_id: UUID
    ) -> StudentProgress:
        link = validate_project_url(url)

        def plan(current: StudentProgress, course: CourseInfo) -> _Change | None:
            self._require_editable(current, TrackingAction.ADD_PROJECT_LINK)
            if link in current.project_links:
                return None
            return _Change(
                TrackingAction.ADD_PROJECT_LINK,
                {
                    "project_links": [*current.project_links, link],
                    "status": _editing_status(current),
                },
                None,
                link,
            )

        return await self._mutate_with_retry(progress_id, admin_id, plan)

    async def remove_project_link(
        self, progress_id: UUID, url: str, admin_id: UUID
    ) -> StudentProgress:
        link = (url or "").strip()

        def plan(current: StudentProgress, course: CourseInfo) -> _Change | None:
            self._require_editable(current, TrackingAction.REMOVE_PROJECT_LINK)
            if link not in current.project_links:
                raise InvalidProjectUrlError(f"Project link not found: {link}")
            return _Change(
                TrackingAction.REMOVE_PROJECT_LINK,
                {
                    "project_links": [u for u in current.project_links if u != link],
                    "status": _editing_status(current),
                },
                link,
                None,
            )

        return await self._mutate_with_retry(progress_id, admin_id, plan)

    # ==========================================================================
    # Approval workflow
    # ==========================================================================

    async def submit_for_approval(
        self, progress_id: UUID, admin_id: UUID
    ) -> TransitionResult:
        """in_progress -> pending_approval, or -> completed without verification."""

        def plan(current: StudentProgress, course: CourseInfo) -> _Change:
            if current.status != ProgressStatus.IN_PROGRESS.value:
                raise InvalidStatusTransitionError(
                    current.status, TrackingAction.SUBMIT_FOR_APPROVAL.value
                )
            condition = check_pass_condition(current, course)
            if not condition.is_met:
                raise PassConditionNotMetError(condition.missing)

            changes: dict[str, Any] = {"rejection_reason": None}
            if course.requires_verification:
                changes["status"] = ProgressStatus.PENDING_APPROVAL.value
            else:
                changes["status"] = ProgressStatus.COMPLETED.value
                changes["completed_at"] = None  # filled with the commit timestamp
            return _Change(
                TrackingAction.SUBMIT_FOR_APPROVAL,
                changes,
                current.status,
                changes["status"],
            )

        updated = await self._mutate_once(progress_id, admin_id, plan)
        if not updated.is_completed:
            return TransitionResult(updated)

        self._emit(EventName.PROGRESS_COMPLETED, updated, admin_id)
        unlock = await self.cascade.on_completed(updated, admin_id)
        return TransitionResult(updated, unlock)

    async def approve(self, progress_id: UUID, admin_id: UUID) -> TransitionResult:
        """pending_approval -> completed, then run the unlock cascade."""

        def plan(current: StudentProgress, course: CourseInfo) -> _Change:
            if current.is_completed:
                raise AlreadyApprovedError()
            if not current.is_pending_approval:
                raise NotPendingApprovalError(current.status)
            return _Change(
                TrackingAction.APPROVE,
                {
                    "status": ProgressStatus.COMPLETED.value,
                    "approved_by": admin_id,
                    "approved_at": None,
                    "completed_at": None,
                },
                current.status,
                ProgressStatus.COMPLETED.value,
            )

        updated = await self._mutate_once(progress_id, admin_id, plan)
        self._emit(EventName.PROGRESS_APPROVED, updated, admin_id)
        unlock = await self.cascade.on_completed(updated, admin_id)
        return TransitionResult(updated, unlock)

    async def reject(
        self, progress_id: UUID, admin_id: UUID, reason: str
    ) -> StudentProgress:
        """pending_approval -> rejected with a non-empty reason."""
        trimmed = (reason or "").strip()
        if not trimmed:
            raise RejectionReasonRequiredError()

        def plan(current: StudentProgress, course: CourseInfo) -> _Change:
            if not current.is_pending_approval:
                raise NotPendingApprovalError(current.status)
            return _Change(
                TrackingAction.REJECT,
                {"status": ProgressStatus.REJECTED.value, "rejection_reason": trimmed},
                current.status,
                ProgressStatus.REJECTED.value,
            )

        updated = await self._mutate_once(progress_id, admin_id, plan)
        self._emit(EventName.PROGRESS_REJECTED, updated, admin_id, reason=trimmed)
        return updated

    async def unlock(
        self, progress_id: UUID, admin_id: UUID, scope: UnlockScope
    ) -> UnlockResult:
        """Admin override: unlock the successor course or semester."""
        progress = await self.get_progress_by_id(progress_id)
        result = await self.cascade.unlock_next(progress, admin_id, scope)
        logger.info(
            "progress_unlock_forced",
            progress_id=str(progress_id),
            scope=scope.value,
            unlocked_course_id=str(result.unlocked_course_id),
        )
        return result

    # ==========================================================================
    # Internals
    # ==========================================================================

    async def _get_course(self, course_id: UUID) -> CourseInfo:
        course = await self.directory.get_course(course_id)
        if course is None:
            raise CourseNotFoundError()
        return course

    @staticmethod
    def _require_editable(current: StudentProgress, action: TrackingAction) -> None:
        if current.status not in EDITABLE_STATUSES:
            raise InvalidStatusTransitionError(current.status, action.value)

    async def _try_commit(
        self,
        current: StudentProgress,
        change: _Change,
        admin_id: UUID,
    ) -> StudentProgress | None:
        """Apply ``change`` to ``current``. None on compare-and-swap conflict."""
        updated = current.evolve(**change.changes)
        # Timestamps planned as None take the commit time
        for name in ("approved_at", "completed_at"):
            if name in change.changes and change.changes[name] is None:
                setattr(updated, name, updated.updated_at)

        entry = create_tracking_log(
            current,
            change.action,
            admin_id,
            previous_value=change.previous_value,
            new_value=change.new_value,
            performed_at=updated.updated_at,
        )
        if not await self.writer.commit(current, updated, entry):
            return None

        logger.info(
            "progress_transition_committed",
            progress_id=str(updated.id),
            action=change.action.value,
            previous_value=change.previous_value,
            new_value=change.new_value,
            status=updated.status,
            version=updated.version,
        )
        return updated

    async def _mutate_with_retry(
        self, progress_id: UUID, admin_id: UUID, plan: _Planner
    ) -> StudentProgress:
        """Counter/link edits: re-read and re-validate on conflict."""
        for attempt in range(1, self.max_attempts + 1):
            current = await self.get_progress_by_id(progress_id)
            course = await self._get_course(current.course_id)
            change = plan(current, course)
            if change is None:
                return current

            updated = await self._try_commit(current, change, admin_id)
            if updated is not None:
                return updated

            logger.info(
                "progress_cas_retry",
                progress_id=str(progress_id),
                action=change.action.value,
                attempt=attempt,
            )

        raise ProgressConflictError()

    async def _mutate_once(
        self, progress_id: UUID, admin_id: UUID, plan: _Planner
    ) -> StudentProgress:
        """Status transitions: a lost race fails the call."""
        current = await self.get_progress_by_id(progress_id)
        course = await self._get_course(current.course_id)
        change = plan(current, course)
        if change is None:
            return current

        updated = await self._try_commit(current, change, admin_id)
        if updated is not None:
            return updated

        latest = await self.get_progress_by_id(progress_id)
        logger.info(
            "progress_transition_lost_race",
            progress_id=str(progress_id),
            action=change.action.value,
            status=latest.status,
        )
        raise InvalidStatusTransitionError(latest.status, change.action.value)

    def _emit(
        self,
        name: str,
        progress: StudentProgress,
        admin_id: UUID,
        **data: Any,
    ) -> None:
        if self.dispatcher is None:
            return
        self.dispatcher.emit(
            TrackingEvent.create(
                name, progress.student_id, progress.course_id, admin_id, **data
            )
        )


__all__ = [
    "PassConditionResult",
    "ProgressTransitionService",
    "TrackingError",
    "TransitionResult",
    "check_pass_condition",
    "validate_project_url",
]
