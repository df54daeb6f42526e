from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from metrics.compute_builds import weekly_build_counts
from metrics.exceptions import InvalidRangeError
from metrics.schemas import WeeklyCount
from models.query import QueryContext
from storage import MemoryEventSource


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_weekly_build_counts_zero_fills_missing_weeks(ctx, make_event):
    source = MemoryEventSource(
        {
            "builds": [
                make_event(id=1, build_definition_id=1, repository_id="r1",
                           start_time=utc(2024, 1, 2), result="succeeded"),
                make_event(id=2, build_definition_id=1, repository_id="r1",
                           start_time=utc(2024, 1, 3), result="failed"),
                make_event(id=3, build_definition_id=2, repository_id="r2",
                           start_time=utc(2024, 1, 16), result="succeeded"),
                # Other project and out of range.
                {**make_event(id=4, build_definition_id=1, repository_id="r1",
                              start_time=utc(2024, 1, 2), result="succeeded"),
                 "project": "other"},
                make_event(id=5, build_definition_id=1, repository_id="r1",
                           start_time=utc(2024, 1, 22), result="succeeded"),
            ]
        }
    )

    result = await weekly_build_counts(ctx, source)

    assert result["total"].count == 3
    assert result["total"].by_week == [
        WeeklyCount(0, 2),
        WeeklyCount(1, 0),
        WeeklyCount(2, 1),
    ]
    assert result["successful"].count == 2
    assert [w.count for w in result["successful"].by_week] == [1, 0, 1]


@pytest.mark.asyncio
async def test_weekly_build_counts_filters_repositories(ctx, make_event):
    source = MemoryEventSource(
        {
            "builds": [
                make_event(id=1, build_definition_id=1, repository_id="r1",
                           start_time=utc(2024, 1, 2), result="succeeded"),
                make_event(id=2, build_definition_id=2, repository_id="r2",
                           start_time=utc(2024, 1, 9), result="succeeded"),
            ]
        }
    )

    result = await weekly_build_counts(ctx, source, repository_ids=["r2"])

    assert [w.count for w in result["total"].by_week] == [0, 1, 0]


@pytest.mark.asyncio
async def test_weekly_build_counts_empty_source(ctx, memory_source):
    result = await weekly_build_counts(ctx, memory_source)

    assert result["total"].count == 0
    assert [w.week_index for w in result["total"].by_week] == [0, 1, 2]


@pytest.mark.asyncio
async def test_invalid_range_is_rejected_before_fetching():
    source = AsyncMock()
    ctx = QueryContext(
        collection_name="acme",
        project="p",
        start_date=utc(2024, 1, 8),
        end_date=utc(2024, 1, 1),
    )

    with pytest.raises(InvalidRangeError):
        await weekly_build_counts(ctx, source)
    source.fetch_events.assert_not_called()
