"""Course and semester directory.

Read-only view of course ordering and requirements. Courses and semesters are
managed elsewhere; this module only reads them.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from uuid import UUID

from pydantic import BaseModel, Field

from .models import CourseInfo, SemesterInfo
from .repository import CassandraStoreBase


class CourseDirectory(ABC):
    """Lookup of courses and semesters."""

    @abstractmethod
    async def get_course(self, course_id: UUID) -> CourseInfo | None: ...

    @abstractmethod
    async def list_courses(self, semester_id: UUID) -> list[CourseInfo]:
        """Courses of a semester ordered by ``order``."""

    @abstractmethod
    async def get_semester(self, semester_id: UUID) -> SemesterInfo | None: ...

    @abstractmethod
    async def list_semesters(self) -> list[SemesterInfo]:
        """All semesters ordered by ``order``."""


class CassandraCourseDirectory(CassandraStoreBase, CourseDirectory):
    """CourseDirectory backed by the courses/semesters tables."""

    def _prepare_statements(self) -> None:
        self._get_course = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.courses WHERE course_id = ?
        """)

        self._list_course_ids = self.session.prepare(f"""
            SELECT course_id FROM {self.keyspace}.courses_by_semester
            WHERE semester_id = ?
        """)

        self._get_semester = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.semesters WHERE semester_id = ?
        """)

        # Small table; full scan is fine
        self._list_semesters = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.semesters
        """)

    async def get_course(self, course_id: UUID) -> CourseInfo | None:
        result = await self._execute(self._get_course, (course_id,))
        row = result.one()
        return CourseInfo.from_row(row) if row else None

    async def list_courses(self, semester_id: UUID) -> list[CourseInfo]:
        result = await self._execute(self._list_course_ids, (semester_id,))
        courses = []
        for row in result:
            course = await self.get_course(row.course_id)
            if course:
                courses.append(course)
        courses.sort(key=lambda c: c.order)
        return courses

    async def get_semester(self, semester_id: UUID) -> SemesterInfo | None:
        result = await self._execute(self._get_semester, (semester_id,))
        row = result.one()
        return SemesterInfo.from_row(row) if row else None

    async def list_semesters(self) -> list[SemesterInfo]:
        result = await self._execute(self._list_semesters)
        semesters = [SemesterInfo.from_row(row) for row in result]
        semesters.sort(key=lambda s: s.order)
        return semesters


class CatalogCourse(BaseModel):
    id: UUID
    title: str = ""
    order: int = Field(ge=0)
    required_sessions: int = Field(default=0, ge=0)
    required_projects: int = Field(default=0, ge=0)
    requires_verification: bool = True
    is_required: bool = True


class CatalogSemester(BaseModel):
    id: UUID
    name: str = ""
    order: int = Field(ge=0)
    courses: list[CatalogCourse] = Field(default_factory=list)


class CatalogFile(BaseModel):
    """JSON course catalog read by the in-memory directory."""

    semesters: list[CatalogSemester]


class InMemoryCourseDirectory(CourseDirectory):
    """CourseDirectory held in dicts; populated with ``add_*`` or ``from_file``."""

    def __init__(self) -> None:
        self._courses: dict[UUID, CourseInfo] = {}
        self._semesters: dict[UUID, SemesterInfo] = {}

    def add_semester(self, semester: SemesterInfo) -> SemesterInfo:
        self._semesters[semester.id] = semester
        return semester

    def add_course(self, course: CourseInfo) -> CourseInfo:
        self._courses[course.id] = course
        return course

    @classmethod
    def from_file(cls, path: str | Path) -> "InMemoryCourseDirectory":
        """Load semesters and their courses from a JSON catalog.

        Raises:
            OSError: If the file cannot be read
            pydantic.ValidationError: If the content is not a valid catalog
        """
        catalog = CatalogFile.model_validate_json(Path(path).read_text(encoding="utf-8"))
        directory = cls()
        for semester in catalog.semesters:
            directory.add_semester(
                SemesterInfo(id=semester.id, name=semester.name, order=semester.order)
            )
            for course in semester.courses:
                directory.add_course(
                    CourseInfo(
                        semester_id=semester.id,
                        **course.model_dump(),
                    )
                )
        return directory

    async def get_course(self, course_id: UUID) -> CourseInfo | None:
        return self._courses.get(course_id)

    async def list_courses(self, semester_id: UUID) -> list[CourseInfo]:
        courses = [c for c in self._courses.values() if c.semester_id == semester_id]
        return sorted(courses, key=lambda c: c.order)

    async def get_semester(self, semester_id: UUID) -> SemesterInfo | None:
        return self._semesters.get(semester_id)

    async def list_semesters(self) -> list[SemesterInfo]:
        return sorted(self._semesters.values(), key=lambda s: s.order)
