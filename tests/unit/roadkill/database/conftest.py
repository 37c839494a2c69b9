from datetime import datetime, timezone

import pytest

from roadkill.database import InMemoryRepository, Page, SqlRepository, User


@pytest.fixture(params=["sqlite", "memory"])
def repository(request):
    """A freshly created repository per backend that runs without external services."""
    if request.param == "sqlite":
        repo = SqlRepository("sqlite:///:memory:")
    else:
        repo = InMemoryRepository()
    repo.create_schema()
    try:
        yield repo
    finally:
        repo.dispose()


@pytest.fixture
def make_user():
    def _make_user(username="alice", email=None, **fields):
        return User(username=username, email=email or f"{username}@example.com", **fields)

    return _make_user


@pytest.fixture
def make_page():
    def _make_page(title="Home", tags=None, created_by="admin", **fields):
        edited = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
        return Page(
            title=title,
            tags=tags or [],
            created_by=created_by,
            created_on=edited,
            modified_by=fields.pop("modified_by", created_by),
            modified_on=edited,
            **fields,
        )

    return _make_page
