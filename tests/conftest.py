"""Shared test fixtures for the test suite."""
from datetime import datetime, timezone

import pytest

from models.query import QueryContext
from storage import MemoryEventSource

COLLECTION = "acme"
PROJECT = "demo-project"


@pytest.fixture
def start_date():
    return datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def end_date():
    """Three full weeks after start_date."""
    return datetime(2024, 1, 22, tzinfo=timezone.utc)


@pytest.fixture
def ctx(start_date, end_date):
    return QueryContext(
        collection_name=COLLECTION,
        project=PROJECT,
        start_date=start_date,
        end_date=end_date,
    )


@pytest.fixture
def make_event():
    """Build a raw event scoped to the test collection/project."""

    def _make(**fields):
        return {"collection_name": COLLECTION, "project": PROJECT, **fields}

    return _make


@pytest.fixture
def memory_source():
    return MemoryEventSource()
