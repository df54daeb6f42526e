import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from fixtures.generator import SyntheticEventGenerator
from metrics.config import parse_work_items_config
from metrics.exceptions import InvalidRangeError
from metrics.job_weekly import (
    REPORTS,
    ReportOptions,
    compute_reports,
    report_to_json,
    run_weekly_report_job,
)
from models.query import QueryContext
from storage import MemoryEventSource

END = datetime(2024, 3, 4, tzinfo=timezone.utc)
START = datetime(2024, 1, 8, tzinfo=timezone.utc)

CONFIG = parse_work_items_config({"work_items": {"Bug": {"end_states": ["Closed"]}}})


@pytest.fixture
def generated_source():
    generator = SyntheticEventGenerator("acme", "demo-project", seed=7, end_date=END)
    return MemoryEventSource(generator.generate_all(weeks=8))


@pytest.fixture
def window():
    return QueryContext(
        collection_name="acme", project="demo-project", start_date=START, end_date=END
    )


@pytest.mark.asyncio
async def test_every_report_is_dense(window, generated_source):
    report = await compute_reports(
        window,
        generated_source,
        sorted(REPORTS),
        ReportOptions(work_item_type="Bug", config=CONFIG),
    )

    assert report.number_of_intervals == 8
    assert report.week_starts[0] == START
    assert set(report.series) == set(REPORTS)

    for weekly in (
        report.series["tests"],
        report.series["coverage"],
        report.series["api-coverage"],
        report.series["stub-usage"],
        report.series["consumer-producer-specs"],
        report.series["wip-trend"],
        report.series["sonar-status"],
        report.series["repos-with-sonar"],
        report.series["builds"]["total"].by_week,
    ):
        assert [w.week_index for w in weekly] == list(range(8))

    for definition in report.series["tests-by-definition"]:
        assert [t.week_index for t in definition.tests] == list(range(8))
    for group in report.series["work-items-new"]:
        assert len(group.counts_by_week) == 8


@pytest.mark.asyncio
async def test_compute_reports_rejects_unknown_kind(window, memory_source):
    with pytest.raises(ValueError, match="Unknown report kind"):
        await compute_reports(window, memory_source, ["builds", "nope"])


@pytest.mark.asyncio
async def test_work_item_reports_need_a_type(window, memory_source):
    with pytest.raises(ValueError, match="work item type"):
        await compute_reports(window, memory_source, ["wip-trend"])


@pytest.mark.asyncio
async def test_compute_reports_validates_range_first(memory_source):
    bad = QueryContext(collection_name="acme", project="p", start_date=END, end_date=START)

    with pytest.raises(InvalidRangeError):
        await compute_reports(bad, memory_source, ["builds"])


@pytest.mark.asyncio
async def test_report_to_json(window, generated_source):
    report = await compute_reports(
        window, generated_source, ["consumer-producer-specs", "tests-by-definition"]
    )

    data = json.loads(report_to_json(report))

    assert data["number_of_intervals"] == 8
    assert data["start_date"] == "2024-01-08T00:00:00+00:00"
    assert len(data["series"]["consumer-producer-specs"]) == 8
    assert "week_index" in data["series"]["consumer-producer-specs"][0]


def test_run_weekly_report_job_requires_db(monkeypatch):
    monkeypatch.delenv("DB_CONN_STRING", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(ValueError, match="Database URI is required"):
        run_weekly_report_job(
            kinds=["builds"],
            collection_name="acme",
            project="p",
            start_date=START,
            end_date=END,
        )


def test_run_weekly_report_job_uses_env_source(monkeypatch, generated_source):
    monkeypatch.setenv("DB_CONN_STRING", "memory://")

    with patch("metrics.job_weekly.create_event_source", return_value=generated_source) as factory:
        report = run_weekly_report_job(
            kinds=["builds"],
            collection_name="acme",
            project="demo-project",
            start_date=START,
            end_date=END,
        )

    factory.assert_called_once()
    assert factory.call_args[0][0] == "memory://"
    assert report.series["builds"]["total"].count > 0


def test_run_weekly_report_job_honours_db_type(generated_source):
    with patch("metrics.job_weekly.create_event_source", return_value=generated_source) as factory:
        run_weekly_report_job(
            db_url="mongodb://localhost:27017/ado",
            db_type="memory",
            kinds=["builds"],
            collection_name="acme",
            project="demo-project",
            start_date=START,
            end_date=END,
        )

    assert factory.call_args[0][:2] == ("mongodb://localhost:27017/ado", "memory")
