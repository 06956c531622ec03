"""In-memory stores.

Used when Cassandra is disabled (local development) and by the test suite.
Records are copied on the way in and out so callers never share state with
the store.
"""

import copy
from uuid import UUID

from .models import StudentProgress, TrackingLog, utc_now
from .repository import DEFAULT_LOG_LIMIT, ProgressStore, TrackingLogStore


class InMemoryProgressStore(ProgressStore):
    """ProgressStore held in a dict keyed by progress id."""

    def __init__(self) -> None:
        self._records: dict[UUID, StudentProgress] = {}
        self._by_student_course: dict[tuple[UUID, UUID], UUID] = {}

    async def get(self, student_id: UUID, course_id: UUID) -> StudentProgress | None:
        progress_id = self._by_student_course.get((student_id, course_id))
        if progress_id is None:
            return None
        return await self.get_by_id(progress_id)

    async def get_by_id(self, progress_id: UUID) -> StudentProgress | None:
        record = self._records.get(progress_id)
        return copy.deepcopy(record) if record else None

    async def list_by_student(self, student_id: UUID) -> list[StudentProgress]:
        return [
            copy.deepcopy(record)
            for record in self._records.values()
            if record.student_id == student_id
        ]

    async def find_pending_approval(
        self, course_id: UUID | None = None
    ) -> list[StudentProgress]:
        pending = [
            copy.deepcopy(record)
            for record in self._records.values()
            if record.is_pending_approval
            and (course_id is None or record.course_id == course_id)
        ]
        pending.sort(key=lambda p: p.updated_at)
        return pending

    async def create(self, progress: StudentProgress) -> bool:
        key = (progress.student_id, progress.course_id)
        if key in self._by_student_course:
            return False
        self._by_student_course[key] = progress.id
        self._records[progress.id] = copy.deepcopy(progress)
        return True

    async def compare_and_swap(
        self, progress: StudentProgress, expected_version: int
    ) -> bool:
        current = self._records.get(progress.id)
        if current is None or current.version != expected_version:
            return False
        self._records[progress.id] = copy.deepcopy(progress)
        return True


class InMemoryTrackingLogStore(TrackingLogStore):
    """TrackingLogStore held in a list, newest entries first on read."""

    def __init__(self) -> None:
        self._entries: list[TrackingLog] = []

    async def append(self, entry: TrackingLog) -> TrackingLog:
        now = utc_now()
        entry.created_at = now
        entry.updated_at = now
        self._entries.append(copy.deepcopy(entry))
        return entry

    def _select(self, limit: int, **match: UUID) -> list[TrackingLog]:
        # Stable sort keeps append order among equal timestamps; reversed for desc
        matching = [
            e
            for e in self._entries
            if all(getattr(e, name) == value for name, value in match.items())
        ]
        ordered = sorted(matching, key=lambda e: e.performed_at)
        ordered.reverse()
        return [copy.deepcopy(e) for e in ordered[:limit]]

    async def list_by_student(
        self, student_id: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]:
        return self._select(limit, student_id=student_id)

    async def list_by_student_course(
        self, student_id: UUID, course_id: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]:
        return self._select(limit, student_id=student_id, course_id=course_id)

    async def list_by_course(
        self, course_id: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]:
        return self._select(limit, course_id=course_id)

    async def list_by_performer(
        self, performed_by: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]:
        return self._select(limit, performed_by=performed_by)

    def count(self) -> int:
        """Total number of entries appended."""
        return len(self._entries)
