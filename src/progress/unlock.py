"""Unlock cascade.

Completing a course opens the next one for the student: the next course of
the same semester, or, once every required course of the semester is done,
the first course of the next semester. Admins can also force an unlock
directly.
"""

from dataclasses import dataclass
from uuid import UUID

import structlog

from .directory import CourseDirectory
from .events import EventName, TrackingEvent, TrackingEventDispatcher
from .exceptions import (
    CourseNotFoundError,
    NoNextCourseError,
    NoNextSemesterError,
    UnlockFailedError,
)
from .models import (
    CourseInfo,
    ProgressStatus,
    SemesterInfo,
    StudentProgress,
    TrackingAction,
    UnlockScope,
    create_progress,
    create_tracking_log,
)
from .repository import ProgressStore, ProgressWriter


logger = structlog.get_logger(__name__)


@dataclass
class UnlockResult:
    """What an unlock (cascade or direct) opened, if anything."""

    unlocked_course_id: UUID | None = None
    unlocked_course_title: str | None = None
    unlocked_semester_id: UUID | None = None
    unlocked_semester_name: str | None = None

    @property
    def unlocked(self) -> bool:
        return self.unlocked_course_id is not None


class UnlockCascade:
    """Opens successor courses after a completion."""

    def __init__(
        self,
        progress_store: ProgressStore,
        directory: CourseDirectory,
        writer: ProgressWriter,
        dispatcher: TrackingEventDispatcher | None = None,
        max_attempts: int = 3,
    ):
        self.progress_store = progress_store
        self.directory = directory
        self.writer = writer
        self.dispatcher = dispatcher
        self.max_attempts = max_attempts

    # ==========================================================================
    # Directory navigation
    # ==========================================================================

    async def find_next_course(self, course: CourseInfo) -> CourseInfo | None:
        """First course of the same semester with a greater order."""
        for candidate in await self.directory.list_courses(course.semester_id):
            if candidate.order > course.order:
                return candidate
        return None

    async def find_previous_course(self, course: CourseInfo) -> CourseInfo | None:
        """Last course of the same semester with a smaller order."""
        previous = None
        for candidate in await self.directory.list_courses(course.semester_id):
            if candidate.order < course.order:
                previous = candidate
        return previous

    async def find_next_semester(self, semester_id: UUID) -> SemesterInfo | None:
        semesters = await self.directory.list_semesters()
        current = next((s for s in semesters if s.id == semester_id), None)
        if current is None:
            return None
        return next((s for s in semesters if s.order > current.order), None)

    async def find_previous_semester(self, semester_id: UUID) -> SemesterInfo | None:
        semesters = await self.directory.list_semesters()
        current = next((s for s in semesters if s.id == semester_id), None)
        if current is None:
            return None
        earlier = [s for s in semesters if s.order < current.order]
        return earlier[-1] if earlier else None

    async def first_course(self, semester_id: UUID) -> CourseInfo | None:
        courses = await self.directory.list_courses(semester_id)
        return courses[0] if courses else None

    async def all_required_completed(self, student_id: UUID, semester_id: UUID) -> bool:
        """True when every required course of the semester is completed."""
        for course in await self.directory.list_courses(semester_id):
            if not course.is_required:
                continue
            record = await self.progress_store.get(student_id, course.id)
            if record is None or not record.is_completed:
                return False
        return True

    async def is_open_for(self, student_id: UUID, course: CourseInfo) -> bool:
        """Whether a new enrollment in ``course`` starts unlocked."""
        previous = await self.find_previous_course(course)
        if previous is not None:
            record = await self.progress_store.get(student_id, previous.id)
            return record is not None and record.is_completed

        previous_semester = await self.find_previous_semester(course.semester_id)
        if previous_semester is None:
            return True
        return await self.all_required_completed(student_id, previous_semester.id)

    # ==========================================================================
    # Cascade after completion
    # ==========================================================================

    async def on_completed(self, progress: StudentProgress, admin_id: UUID) -> UnlockResult:
        """Run the cascade for a freshly completed record.

        Never raises: the completion is already committed, so failures here
        are logged and reported as "nothing unlocked".
        """
        try:
            return await self._cascade(progress, admin_id)
        except Exception:
            logger.exception(
                "unlock_cascade_failed",
                progress_id=str(progress.id),
                student_id=str(progress.student_id),
                course_id=str(progress.course_id),
            )
            return UnlockResult()

    async def _cascade(self, progress: StudentProgress, admin_id: UUID) -> UnlockResult:
        course = await self.directory.get_course(progress.course_id)
        if course is None:
            logger.debug("unlock_cascade_course_missing", course_id=str(progress.course_id))
            return UnlockResult()

        next_course = await self.find_next_course(course)
        if next_course is not None:
            record = await self.progress_store.get(progress.student_id, next_course.id)
            if record is None or not record.is_locked:
                logger.debug(
                    "unlock_cascade_skipped",
                    student_id=str(progress.student_id),
                    next_course_id=str(next_course.id),
                    status=record.status if record else None,
                )
                return UnlockResult()
            if await self._unlock(record, TrackingAction.UNLOCK_COURSE, admin_id):
                return UnlockResult(
                    unlocked_course_id=next_course.id,
                    unlocked_course_title=next_course.title,
                )
            return UnlockResult()

        if not await self.all_required_completed(progress.student_id, course.semester_id):
            logger.debug(
                "unlock_cascade_semester_incomplete",
                student_id=str(progress.student_id),
                semester_id=str(course.semester_id),
            )
            return UnlockResult()

        next_semester = await self.find_next_semester(course.semester_id)
        if next_semester is None:
            logger.debug("unlock_cascade_last_semester", semester_id=str(course.semester_id))
            return UnlockResult()

        target = await self.first_course(next_semester.id)
        if target is None:
            return UnlockResult()

        record = await self.progress_store.get(progress.student_id, target.id)
        if record is None or not record.is_locked:
            return UnlockResult()

        if await self._unlock(record, TrackingAction.UNLOCK_SEMESTER, admin_id):
            return UnlockResult(
                unlocked_course_id=target.id,
                unlocked_course_title=target.title,
                unlocked_semester_id=next_semester.id,
                unlocked_semester_name=next_semester.name,
            )
        return UnlockResult()

    # ==========================================================================
    # Direct unlock (admin override)
    # ==========================================================================

    async def unlock_next(
        self, progress: StudentProgress, admin_id: UUID, scope: UnlockScope
    ) -> UnlockResult:
        """Unlock the successor of ``progress`` regardless of completion.

        Raises:
            NoNextCourseError: course scope and no later course in the semester
            NoNextSemesterError: semester scope and no later semester
            UnlockFailedError: successor exists but is not locked
        """
        course = await self.directory.get_course(progress.course_id)
        if course is None:
            raise CourseNotFoundError()

        semester: SemesterInfo | None = None
        if scope == UnlockScope.COURSE:
            target = await self.find_next_course(course)
            if target is None:
                raise NoNextCourseError()
            action = TrackingAction.UNLOCK_COURSE
        else:
            semester = await self.find_next_semester(course.semester_id)
            if semester is None:
                raise NoNextSemesterError()
            target = await self.first_course(semester.id)
            if target is None:
                raise UnlockFailedError(f"Semester '{semester.name}' has no courses")
            action = TrackingAction.UNLOCK_SEMESTER

        record = await self.progress_store.get(progress.student_id, target.id)
        if record is None:
            # Enroll as locked first so the unlock is a normal logged transition
            record = create_progress(progress.student_id, target.id, ProgressStatus.LOCKED)
            if not await self.progress_store.create(record):
                record = await self.progress_store.get(progress.student_id, target.id)

        if record is None or not record.is_locked:
            raise UnlockFailedError(
                f"Course '{target.title}' is already unlocked"
                f" (status '{record.status if record else 'unknown'}')"
            )

        if not await self._unlock(record, action, admin_id):
            raise UnlockFailedError(f"Course '{target.title}' was unlocked concurrently")

        return UnlockResult(
            unlocked_course_id=target.id,
            unlocked_course_title=target.title,
            unlocked_semester_id=semester.id if semester else None,
            unlocked_semester_name=semester.name if semester else None,
        )

    async def _unlock(
        self, record: StudentProgress, action: TrackingAction, admin_id: UUID
    ) -> bool:
        """locked -> not_started with its log. False if no longer locked."""
        current: StudentProgress | None = record
        for _ in range(self.max_attempts):
            if current is None or not current.is_locked:
                return False
            updated = current.evolve(status=ProgressStatus.NOT_STARTED.value)
            entry = create_tracking_log(
                current,
                action,
                admin_id,
                previous_value=current.status,
                new_value=updated.status,
                performed_at=updated.updated_at,
            )
            if await self.writer.commit(current, updated, entry):
                logger.info(
                    "course_unlocked",
                    student_id=str(current.student_id),
                    course_id=str(current.course_id),
                    action=action.value,
                )
                self._emit(updated, action, admin_id)
                return True
            current = await self.progress_store.get_by_id(record.id)
        return False

    def _emit(self, progress: StudentProgress, action: TrackingAction, admin_id: UUID) -> None:
        if self.dispatcher is None:
            return
        name = (
            EventName.SEMESTER_UNLOCKED
            if action == TrackingAction.UNLOCK_SEMESTER
            else EventName.COURSE_UNLOCKED
        )
        self.dispatcher.emit(
            TrackingEvent.create(name, progress.student_id, progress.course_id, admin_id)
        )
