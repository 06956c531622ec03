"""Tests for the Cassandra stores and the committed writer."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch
from uuid import uuid4

import pytest
from cassandra import DriverException
from cassandra.cluster import Session

from src.progress.directory import CassandraCourseDirectory
from src.progress.exceptions import DatabaseError, TrackingLogCreateFailedError
from src.progress.memory import InMemoryProgressStore, InMemoryTrackingLogStore
from src.progress.models import (
    ProgressStatus,
    TrackingAction,
    create_progress,
    create_tracking_log,
)
from src.progress.repository import (
    CassandraProgressStore,
    CassandraStoreBase,
    CassandraTrackingLogStore,
    ProgressWriter,
)


@pytest.fixture
def mock_session():
    """Mock Cassandra session."""
    session = Mock(spec=Session)
    session.prepare = Mock(side_effect=lambda query: Mock(query=query))
    # Make aexecute awaitable (cassandra-asyncio-driver)
    session.aexecute = AsyncMock(return_value=Mock())
    return session


@pytest.fixture
def progress_store(mock_session) -> CassandraProgressStore:
    return CassandraProgressStore(session=mock_session, keyspace="test_keyspace")


@pytest.fixture
def log_store(mock_session) -> CassandraTrackingLogStore:
    return CassandraTrackingLogStore(session=mock_session, keyspace="test_keyspace")


def _row(**overrides):
    fields = {
        "progress_id": uuid4(),
        "student_id": uuid4(),
        "course_id": uuid4(),
        "status": ProgressStatus.PENDING_APPROVAL.value,
        "completed_sessions": 2,
        "projects_submitted": 1,
        "project_links": ["https://example.com/a"],
        "rejection_reason": None,
        "approved_at": None,
        "approved_by": None,
        "completed_at": None,
        "created_at": datetime(2024, 1, 1),
        "updated_at": datetime(2024, 1, 1),
        "version": 3,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _result(row=None, applied=True):
    result = Mock()
    result.one = Mock(return_value=row)
    result.was_applied = applied
    return result


def _course_row(course_id, order):
    return SimpleNamespace(
        course_id=course_id,
        semester_id=uuid4(),
        title=f"Course {order}",
        order_index=order,
        required_sessions=2,
        required_projects=1,
        requires_verification=None,
        is_required=None,
    )


class TestCassandraProgressStore:
    """Tests for CassandraProgressStore."""

    def test_statements_use_keyspace(self, progress_store, mock_session):
        queries = [call.args[0] for call in mock_session.prepare.call_args_list]

        assert queries
        assert all("test_keyspace." in q for q in queries)
        assert any("IF NOT EXISTS" in q for q in queries)
        assert any("IF version = ?" in q for q in queries)

    @pytest.mark.asyncio
    async def test_get_by_id_maps_row(self, progress_store, mock_session):
        row = _row()
        mock_session.aexecute.return_value = _result(row)

        progress = await progress_store.get_by_id(row.progress_id)

        assert progress.id == row.progress_id
        assert progress.status == ProgressStatus.PENDING_APPROVAL.value
        assert progress.updated_at.tzinfo == UTC
        assert progress.version == 3

    @pytest.mark.asyncio
    async def test_get_returns_none_without_lookup_row(self, progress_store, mock_session):
        mock_session.aexecute.return_value = _result(None)

        assert await progress_store.get(uuid4(), uuid4()) is None
        assert mock_session.aexecute.await_count == 1

    @pytest.mark.asyncio
    async def test_create_claims_then_inserts(self, progress_store, mock_session):
        progress = create_progress(uuid4(), uuid4())
        mock_session.aexecute.return_value = _result(applied=True)

        assert await progress_store.create(progress) is True
        assert mock_session.aexecute.await_count == 2
        insert_params = mock_session.aexecute.await_args_list[1].args[1]
        assert insert_params[0] == progress.id
        assert insert_params[-1] == 0

    @pytest.mark.asyncio
    async def test_create_conflict_skips_insert(self, progress_store, mock_session):
        mock_session.aexecute.return_value = _result(applied=False)

        assert await progress_store.create(create_progress(uuid4(), uuid4())) is False
        assert mock_session.aexecute.await_count == 1

    @pytest.mark.asyncio
    async def test_create_releases_claim_when_insert_fails(
        self, progress_store, mock_session
    ):
        progress = create_progress(uuid4(), uuid4())
        mock_session.aexecute.side_effect = [
            _result(applied=True),
            DriverException("write timeout"),
            _result(applied=True),
        ]

        with pytest.raises(DatabaseError):
            await progress_store.create(progress)

        assert mock_session.aexecute.await_count == 3
        release = mock_session.aexecute.await_args_list[2].args
        assert "DELETE FROM test_keyspace.progress_by_student" in release[0].query
        assert "IF progress_id = ?" in release[0].query
        assert release[1] == (progress.student_id, progress.course_id, progress.id)

    @pytest.mark.asyncio
    async def test_compare_and_swap_binds_expected_version(
        self, progress_store, mock_session
    ):
        progress = create_progress(uuid4(), uuid4()).evolve(status="in_progress")
        mock_session.aexecute.return_value = _result(applied=True)

        assert await progress_store.compare_and_swap(progress, 0) is True

        params = mock_session.aexecute.await_args.args[1]
        assert params[-3:] == (1, progress.id, 0)

    @pytest.mark.asyncio
    async def test_compare_and_swap_reports_conflict(self, progress_store, mock_session):
        mock_session.aexecute.return_value = _result(applied=False)

        progress = create_progress(uuid4(), uuid4())
        assert await progress_store.compare_and_swap(progress, 7) is False

    @pytest.mark.asyncio
    async def test_find_pending_filters_course_and_sorts(self, progress_store, mock_session):
        course_id = uuid4()
        newer = _row(course_id=course_id, updated_at=datetime(2024, 3, 1))
        older = _row(course_id=course_id, updated_at=datetime(2024, 2, 1))
        other = _row()
        mock_session.aexecute.return_value = [newer, other, older]

        pending = await progress_store.find_pending_approval(course_id)

        assert [p.id for p in pending] == [older.progress_id, newer.progress_id]

    @pytest.mark.asyncio
    async def test_driver_error_becomes_database_error(self, progress_store, mock_session):
        mock_session.aexecute.side_effect = DriverException("no hosts")

        with pytest.raises(DatabaseError) as exc_info:
            await progress_store.get_by_id(uuid4())

        assert exc_info.value.code == "DATABASE_ERROR"

    def test_base_requires_statement_preparation(self, mock_session):
        class IncompleteStore(CassandraStoreBase):
            pass

        with pytest.raises(TypeError):
            CassandraStoreBase(session=mock_session, keyspace="test_keyspace")
        with pytest.raises(TypeError):
            IncompleteStore(session=mock_session, keyspace="test_keyspace")


class TestCassandraTrackingLogStore:
    """Tests for CassandraTrackingLogStore."""

    @pytest.mark.asyncio
    async def test_append_writes_every_table_in_one_batch(self, log_store, mock_session):
        progress = create_progress(uuid4(), uuid4())
        entry = create_tracking_log(progress, TrackingAction.UPDATE_SESSIONS, uuid4(), 0, 2)

        with patch("src.progress.repository.BatchStatement") as batch_cls:
            saved = await log_store.append(entry)

        batch = batch_cls.return_value
        assert batch.add.call_count == 4
        params = batch.add.call_args.args[1]
        assert params[0] == entry.id
        assert params[4:6] == ("0", "2")
        mock_session.aexecute.assert_awaited_once_with(batch)
        assert saved.created_at is not None

    @pytest.mark.asyncio
    async def test_list_by_student_passes_limit(self, log_store, mock_session):
        mock_session.aexecute.return_value = []
        student_id = uuid4()

        assert await log_store.list_by_student(student_id, limit=5) == []
        assert mock_session.aexecute.await_args.args[1] == (student_id, 5)

    @pytest.mark.asyncio
    async def test_list_by_course_and_performer_pass_limit(self, log_store, mock_session):
        mock_session.aexecute.return_value = []
        course_id = uuid4()
        admin_id = uuid4()

        await log_store.list_by_course(course_id, limit=7)
        assert mock_session.aexecute.await_args.args[1] == (course_id, 7)
        assert "tracking_logs_by_course" in mock_session.aexecute.await_args.args[0].query

        await log_store.list_by_performer(admin_id, limit=9)
        assert mock_session.aexecute.await_args.args[1] == (admin_id, 9)


class TestCassandraCourseDirectory:
    """Tests for CassandraCourseDirectory."""

    @pytest.mark.asyncio
    async def test_driver_error_becomes_database_error(self, mock_session):
        directory = CassandraCourseDirectory(session=mock_session, keyspace="test_keyspace")
        mock_session.aexecute.side_effect = DriverException("node down")

        with pytest.raises(DatabaseError) as exc_info:
            await directory.get_course(uuid4())
        assert exc_info.value.code == "DATABASE_ERROR"

        with pytest.raises(DatabaseError):
            await directory.list_semesters()

    @pytest.mark.asyncio
    async def test_list_courses_orders_by_position(self, mock_session):
        directory = CassandraCourseDirectory(session=mock_session, keyspace="test_keyspace")
        first, second = uuid4(), uuid4()
        mock_session.aexecute.side_effect = [
            [SimpleNamespace(course_id=second), SimpleNamespace(course_id=first)],
            _result(_course_row(second, order=2)),
            _result(_course_row(first, order=1)),
        ]

        courses = await directory.list_courses(uuid4())

        assert [c.id for c in courses] == [first, second]


class TestProgressWriter:
    """Tests for the commit-then-log writer."""

    @pytest.mark.asyncio
    async def test_commit_conflict_writes_nothing(self):
        store = InMemoryProgressStore()
        logs = InMemoryTrackingLogStore()
        writer = ProgressWriter(store, logs)
        progress = create_progress(uuid4(), uuid4())
        await store.create(progress)
        stale = progress.evolve(status="in_progress")
        await store.compare_and_swap(stale, 0)

        again = progress.evolve(status="in_progress")
        entry = create_tracking_log(progress, TrackingAction.UPDATE_SESSIONS, uuid4())

        assert await writer.commit(progress, again, entry) is False
        assert logs.count() == 0

    @pytest.mark.asyncio
    async def test_failed_log_restores_previous_content(self):
        store = InMemoryProgressStore()
        logs = Mock(spec=InMemoryTrackingLogStore)
        logs.append = AsyncMock(side_effect=DatabaseError("log table down"))
        writer = ProgressWriter(store, logs, log_append_attempts=3)
        progress = create_progress(uuid4(), uuid4())
        await store.create(progress)
        updated = progress.evolve(
            now=progress.updated_at + timedelta(seconds=1), completed_sessions=4
        )
        entry = create_tracking_log(progress, TrackingAction.UPDATE_SESSIONS, uuid4(), 0, 4)

        with pytest.raises(TrackingLogCreateFailedError):
            await writer.commit(progress, updated, entry)

        assert logs.append.await_count == 3
        stored = await store.get_by_id(progress.id)
        assert stored.completed_sessions == 0
        assert stored.version == 2
        assert stored.updated_at >= updated.updated_at
