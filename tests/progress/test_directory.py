"""Tests for the in-memory course directory and its JSON catalog."""

import json
from types import SimpleNamespace
from uuid import uuid4

import pytest
from pydantic import ValidationError

from src.config import Settings
from src.main import _memory_directory
from src.progress.directory import InMemoryCourseDirectory


@pytest.fixture
def catalog(tmp_path):
    semester1, semester2 = uuid4(), uuid4()
    first, second, elective = uuid4(), uuid4(), uuid4()
    content = {
        "semesters": [
            {
                "id": str(semester2),
                "name": "Semester 2",
                "order": 2,
                "courses": [],
            },
            {
                "id": str(semester1),
                "name": "Semester 1",
                "order": 1,
                "courses": [
                    {
                        "id": str(second),
                        "title": "Second",
                        "order": 2,
                        "required_sessions": 2,
                        "required_projects": 1,
                    },
                    {
                        "id": str(first),
                        "title": "First",
                        "order": 1,
                        "required_sessions": 5,
                        "requires_verification": False,
                    },
                    {
                        "id": str(elective),
                        "title": "Elective",
                        "order": 3,
                        "is_required": False,
                    },
                ],
            },
        ]
    }
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(content), encoding="utf-8")
    return SimpleNamespace(
        path=path,
        semester1=semester1,
        semester2=semester2,
        first=first,
        second=second,
        elective=elective,
    )


class TestCatalogFile:
    """Tests for loading a JSON catalog."""

    @pytest.mark.asyncio
    async def test_loads_semesters_and_courses_in_order(self, catalog):
        directory = InMemoryCourseDirectory.from_file(catalog.path)

        semesters = await directory.list_semesters()
        courses = await directory.list_courses(catalog.semester1)

        assert [s.id for s in semesters] == [catalog.semester1, catalog.semester2]
        assert [c.id for c in courses] == [catalog.first, catalog.second, catalog.elective]
        assert await directory.list_courses(catalog.semester2) == []

    @pytest.mark.asyncio
    async def test_course_fields_and_defaults(self, catalog):
        directory = InMemoryCourseDirectory.from_file(str(catalog.path))

        first = await directory.get_course(catalog.first)
        second = await directory.get_course(catalog.second)
        elective = await directory.get_course(catalog.elective)

        assert first.semester_id == catalog.semester1
        assert first.required_sessions == 5
        assert first.requires_verification is False
        assert second.required_projects == 1
        assert second.requires_verification is True
        assert elective.is_required is False
        assert elective.required_sessions == 0

    def test_invalid_catalog_is_rejected(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"semesters": [{"name": "no id"}]}), encoding="utf-8")

        with pytest.raises(ValidationError):
            InMemoryCourseDirectory.from_file(path)

    def test_missing_file_is_rejected(self, tmp_path):
        with pytest.raises(OSError):
            InMemoryCourseDirectory.from_file(tmp_path / "missing.json")


class TestMemoryDirectorySetting:
    """Tests for the directory used when Cassandra is disabled."""

    @pytest.mark.asyncio
    async def test_empty_without_catalog(self):
        directory = _memory_directory(Settings(course_catalog_file=None))

        assert await directory.list_semesters() == []

    @pytest.mark.asyncio
    async def test_seeded_from_configured_catalog(self, catalog):
        directory = _memory_directory(Settings(course_catalog_file=str(catalog.path)))

        course = await directory.get_course(catalog.first)

        assert course is not None
        assert course.title == "First"
