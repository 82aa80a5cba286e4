"""Pytest configuration and fixtures."""

import pytest
import structlog

from localbase.client import create_client
from localbase.config import Settings
from localbase.schema import Column, TableSchema

COURSES = TableSchema(
    name="courses",
    columns=(
        Column("id"),
        Column("title", nullable=False),
        Column("level", "INTEGER"),
        Column("published", "BOOLEAN", default="false"),
        Column("instructor_id", references="users.id"),
        Column("tags", "JSON"),
        Column("created_at", "TIMESTAMP", auto_now=True),
    ),
)

COURSE_ENROLLMENTS = TableSchema(
    name="course_enrollments",
    columns=(
        Column("id"),
        Column("course_id", nullable=False, references="courses.id"),
        Column("user_id", references="users.id"),
        Column("progress", "DOUBLE", default="0"),
    ),
)


def catalog_rows() -> list[dict]:
    """Courses c1..c6 with level 1..6; odd levels are published."""
    return [
        {
            "id": f"c{i}",
            "title": f"Course {i}",
            "level": i,
            "published": i % 2 == 1,
            "tags": ["intro"] if i < 3 else ["advanced", f"lvl{i}"],
        }
        for i in range(1, 7)
    ]


@pytest.fixture(autouse=True)
def reset_logging():
    """CLI tests reconfigure structlog onto a captured stream; undo it."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary data directory."""
    return Settings(data_dir=tmp_path / "data", _env_file=None)


@pytest.fixture
def strict_settings(tmp_path):
    """Settings with password checks and scoped mutations enforced."""
    return Settings(
        data_dir=tmp_path / "strict",
        verify_passwords=True,
        require_mutation_filters=True,
        _env_file=None,
    )


@pytest.fixture
async def client(settings):
    """Initialized client with core tables and default buckets."""
    client = await create_client(settings)
    yield client
    client.close()


@pytest.fixture
def store(client):
    return client.store


@pytest.fixture
async def catalog(client):
    """Client with application tables and a few courses.

    Courses c1..c6 have level 1..6; odd levels are published.
    """
    client.register_table(COURSES)
    client.register_table(COURSE_ENROLLMENTS)
    await client.store.initialize()

    result = await client.insert("courses", catalog_rows())
    assert result.error is None
    return client
