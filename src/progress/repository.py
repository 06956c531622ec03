"""Progress and tracking log stores.

Contracts used by the transition service, plus their Cassandra
implementations. Compare-and-swap is a lightweight transaction on the
record's ``version`` column; tracking logs are written to one table per
query pattern in a single logged batch.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog
from cassandra import DriverException
from cassandra.query import BatchStatement, BatchType

from .exceptions import DatabaseError, TrackingError, TrackingLogCreateFailedError
from .models import (
    ProgressStatus,
    StudentProgress,
    TrackingLog,
    encode_tracking_value,
    utc_now,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)

DEFAULT_LOG_LIMIT = 100


# ==============================================================================
# Contracts
# ==============================================================================


class ProgressStore(ABC):
    """Durable store of StudentProgress records."""

    @abstractmethod
    async def get(self, student_id: UUID, course_id: UUID) -> StudentProgress | None: ...

    @abstractmethod
    async def get_by_id(self, progress_id: UUID) -> StudentProgress | None: ...

    @abstractmethod
    async def list_by_student(self, student_id: UUID) -> list[StudentProgress]: ...

    @abstractmethod
    async def find_pending_approval(
        self, course_id: UUID | None = None
    ) -> list[StudentProgress]:
        """Records awaiting approval, oldest submission first."""

    @abstractmethod
    async def create(self, progress: StudentProgress) -> bool:
        """Insert a new record. Returns False if (student, course) exists."""

    @abstractmethod
    async def compare_and_swap(
        self, progress: StudentProgress, expected_version: int
    ) -> bool:
        """Replace the stored record if its version still equals ``expected_version``."""


class TrackingLogStore(ABC):
    """Append-only store of TrackingLog entries.

    All list methods return entries ordered by ``performed_at`` descending.
    """

    @abstractmethod
    async def append(self, entry: TrackingLog) -> TrackingLog: ...

    @abstractmethod
    async def list_by_student(
        self, student_id: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]: ...

    @abstractmethod
    async def list_by_student_course(
        self, student_id: UUID, course_id: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]: ...

    @abstractmethod
    async def list_by_course(
        self, course_id: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]: ...

    @abstractmethod
    async def list_by_performer(
        self, performed_by: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]: ...


# ==============================================================================
# Cassandra Implementations
# ==============================================================================


class CassandraStoreBase(ABC):
    """Shared session handling for Cassandra-backed stores.

    Driver failures surface as DatabaseError so callers only handle
    TrackingError.
    """

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    @abstractmethod
    def _prepare_statements(self) -> None:
        """Prepare the CQL statements this store executes."""

    async def _execute(self, statement: Any, params: tuple | None = None) -> Any:
        try:
            if params is None:
                return await self.session.aexecute(statement)
            return await self.session.aexecute(statement, params)
        except DriverException as e:
            logger.error(
                "cassandra_query_failed",
                store=type(self).__name__,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise DatabaseError(f"Database error: {e}") from e


class CassandraProgressStore(CassandraStoreBase, ProgressStore):
    """ProgressStore backed by Cassandra."""

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_by_id = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.student_progress
            WHERE progress_id = ?
        """)

        self._get_id_by_student_course = self.session.prepare(f"""
            SELECT progress_id FROM {self.keyspace}.progress_by_student
            WHERE student_id = ? AND course_id = ?
        """)

        self._list_ids_by_student = self.session.prepare(f"""
            SELECT progress_id FROM {self.keyspace}.progress_by_student
            WHERE student_id = ?
        """)

        self._get_by_status = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.student_progress
            WHERE status = ?
        """)

        # Lookup row doubles as the uniqueness guard for (student, course)
        self._claim_student_course = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.progress_by_student
            (student_id, course_id, progress_id)
            VALUES (?, ?, ?)
            IF NOT EXISTS
        """)

        self._release_claim = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.progress_by_student
            WHERE student_id = ? AND course_id = ?
            IF progress_id = ?
        """)

        self._insert = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.student_progress
            (progress_id, student_id, course_id, completed_sessions,
             projects_submitted, project_links, status, rejection_reason,
             approved_at, approved_by, completed_at, created_at, updated_at, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._update_if_version = self.session.prepare(f"""
            UPDATE {self.keyspace}.student_progress
            SET completed_sessions = ?, projects_submitted = ?, project_links = ?,
                status = ?, rejection_reason = ?, approved_at = ?, approved_by = ?,
                completed_at = ?, updated_at = ?, version = ?
            WHERE progress_id = ?
            IF version = ?
        """)

    async def get(self, student_id: UUID, course_id: UUID) -> StudentProgress | None:
        result = await self._execute(self._get_id_by_student_course, (student_id, course_id))
        row = result.one()
        if not row:
            return None
        return await self.get_by_id(row.progress_id)

    async def get_by_id(self, progress_id: UUID) -> StudentProgress | None:
        result = await self._execute(self._get_by_id, (progress_id,))
        row = result.one()
        return StudentProgress.from_row(row) if row else None

    async def list_by_student(self, student_id: UUID) -> list[StudentProgress]:
        result = await self._execute(self._list_ids_by_student, (student_id,))
        records = []
        for row in result:
            progress = await self.get_by_id(row.progress_id)
            if progress:
                records.append(progress)
        return records

    async def find_pending_approval(
        self, course_id: UUID | None = None
    ) -> list[StudentProgress]:
        result = await self._execute(
            self._get_by_status, (ProgressStatus.PENDING_APPROVAL.value,)
        )
        records = [StudentProgress.from_row(row) for row in result]
        if course_id is not None:
            records = [p for p in records if p.course_id == course_id]
        records.sort(key=lambda p: p.updated_at)
        return records

    async def create(self, progress: StudentProgress) -> bool:
        result = await self._execute(
            self._claim_student_course,
            (progress.student_id, progress.course_id, progress.id),
        )
        if not result.was_applied:
            logger.info(
                "progress_create_conflict",
                student_id=str(progress.student_id),
                course_id=str(progress.course_id),
            )
            return False

        try:
            await self._execute(
                self._insert,
                (
                    progress.id,
                    progress.student_id,
                    progress.course_id,
                    progress.completed_sessions,
                    progress.projects_submitted,
                    list(progress.project_links),
                    progress.status,
                    progress.rejection_reason,
                    progress.approved_at,
                    progress.approved_by,
                    progress.completed_at,
                    progress.created_at,
                    progress.updated_at,
                    progress.version,
                ),
            )
        except DatabaseError:
            # Free the claim so the pair can be created again
            await self._execute(
                self._release_claim,
                (progress.student_id, progress.course_id, progress.id),
            )
            logger.warning(
                "progress_create_rolled_back",
                progress_id=str(progress.id),
                student_id=str(progress.student_id),
                course_id=str(progress.course_id),
            )
            raise
        return True

    async def compare_and_swap(
        self, progress: StudentProgress, expected_version: int
    ) -> bool:
        result = await self._execute(
            self._update_if_version,
            (
                progress.completed_sessions,
                progress.projects_submitted,
                list(progress.project_links),
                progress.status,
                progress.rejection_reason,
                progress.approved_at,
                progress.approved_by,
                progress.completed_at,
                progress.updated_at,
                progress.version,
                progress.id,
                expected_version,
            ),
        )
        applied = result.was_applied
        if not applied:
            logger.debug(
                "progress_cas_rejected",
                progress_id=str(progress.id),
                expected_version=expected_version,
            )
        return applied


class CassandraTrackingLogStore(CassandraStoreBase, TrackingLogStore):
    """TrackingLogStore backed by Cassandra, one table per query pattern."""

    _TABLES = (
        "tracking_logs_by_student",
        "tracking_logs_by_student_course",
        "tracking_logs_by_course",
        "tracking_logs_by_performer",
    )

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._inserts = [
            self.session.prepare(f"""
                INSERT INTO {self.keyspace}.{table}
                (log_id, student_id, course_id, action, previous_value, new_value,
                 performed_by, performed_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """)
            for table in self._TABLES
        ]

        self._list_by_student = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.tracking_logs_by_student
            WHERE student_id = ?
            LIMIT ?
        """)

        self._list_by_student_course = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.tracking_logs_by_student_course
            WHERE student_id = ? AND course_id = ?
            LIMIT ?
        """)

        self._list_by_course = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.tracking_logs_by_course
            WHERE course_id = ?
            LIMIT ?
        """)

        self._list_by_performer = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.tracking_logs_by_performer
            WHERE performed_by = ?
            LIMIT ?
        """)

    async def append(self, entry: TrackingLog) -> TrackingLog:
        now = utc_now()
        entry.created_at = now
        entry.updated_at = now

        params = (
            entry.id,
            entry.student_id,
            entry.course_id,
            entry.action,
            encode_tracking_value(entry.previous_value),
            encode_tracking_value(entry.new_value),
            entry.performed_by,
            entry.performed_at,
            entry.created_at,
            entry.updated_at,
        )
        batch = BatchStatement(batch_type=BatchType.LOGGED)
        for insert in self._inserts:
            batch.add(insert, params)

        await self._execute(batch)
        return entry

    async def list_by_student(
        self, student_id: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]:
        result = await self._execute(self._list_by_student, (student_id, limit))
        return [TrackingLog.from_row(row) for row in result]

    async def list_by_student_course(
        self, student_id: UUID, course_id: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]:
        result = await self._execute(
            self._list_by_student_course, (student_id, course_id, limit)
        )
        return [TrackingLog.from_row(row) for row in result]

    async def list_by_course(
        self, course_id: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]:
        result = await self._execute(self._list_by_course, (course_id, limit))
        return [TrackingLog.from_row(row) for row in result]

    async def list_by_performer(
        self, performed_by: UUID, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[TrackingLog]:
        result = await self._execute(self._list_by_performer, (performed_by, limit))
        return [TrackingLog.from_row(row) for row in result]


# ==============================================================================
# Committed Writes
# ==============================================================================


class ProgressWriter:
    """Commits a progress mutation together with its tracking log.

    The progress record is swapped first; the log is appended afterwards with
    retries. If the log still cannot be written, the record is swapped back to
    its previous content (under a new version) and
    TrackingLogCreateFailedError is raised, so no committed change is left
    without its audit entry.
    """

    def __init__(
        self,
        progress_store: ProgressStore,
        log_store: TrackingLogStore,
        log_append_attempts: int = 3,
    ):
        self.progress_store = progress_store
        self.log_store = log_store
        self.log_append_attempts = log_append_attempts

    async def commit(
        self,
        current: StudentProgress,
        updated: StudentProgress,
        entry: TrackingLog,
    ) -> bool:
        """Swap ``current`` for ``updated`` and log ``entry``.

        Returns:
            False if another writer changed the record first (nothing written)
        """
        if not await self.progress_store.compare_and_swap(updated, current.version):
            return False
        await self._append_or_revert(current, updated, entry)
        return True

    async def _append_or_revert(
        self,
        current: StudentProgress,
        updated: StudentProgress,
        entry: TrackingLog,
    ) -> None:
        last_error: Exception | None = None
        for attempt in range(1, self.log_append_attempts + 1):
            try:
                await self.log_store.append(entry)
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    "tracking_log_append_failed",
                    progress_id=str(updated.id),
                    action=entry.action,
                    attempt=attempt,
                    max_attempts=self.log_append_attempts,
                    error=str(e),
                )

        restored = replace(
            current,
            project_links=list(current.project_links),
            version=updated.version + 1,
            updated_at=max(utc_now(), updated.updated_at),
        )
        try:
            reverted = await self.progress_store.compare_and_swap(
                restored, updated.version
            )
        except TrackingError:
            reverted = False
        if reverted:
            logger.error(
                "tracking_log_compensated",
                progress_id=str(updated.id),
                action=entry.action,
            )
        else:
            logger.error(
                "tracking_log_compensation_failed",
                progress_id=str(updated.id),
                action=entry.action,
            )
        raise TrackingLogCreateFailedError(
            f"Failed to create tracking log for '{entry.action}'"
        ) from last_error
