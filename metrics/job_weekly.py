from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import os
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from metrics.compute_builds import weekly_build_counts
from metrics.compute_contracts import (
    weekly_api_coverage_summary,
    weekly_consumer_producer_spec_count,
    weekly_stub_usage_summary,
)
from metrics.compute_sonar import weekly_repos_with_sonar, weekly_sonar_project_status
from metrics.compute_tests import (
    weekly_coverage_by_definition,
    weekly_coverage_summary,
    weekly_pipelines_with_coverage_count,
    weekly_pipelines_with_tests_count,
    weekly_tests_by_definition,
    weekly_tests_summary,
)
from metrics.compute_work_items import (
    GRAPH_NEW,
    GRAPH_VELOCITY,
    weekly_work_item_counts,
    wip_trend,
)
from metrics.config import WorkItemsConfig, load_work_items_config
from metrics.intervals import create_intervals
from metrics.schemas import WeeklyTrendReport
from models.query import QueryContext, WorkItemFilter, WorkItemQuery
from storage import create_event_source

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ReportOptions:
    repository_ids: Optional[List[str]] = None
    definition_ids: Optional[List[int]] = None
    work_item_type: Optional[str] = None
    filters: Optional[List[WorkItemFilter]] = None
    priority: Optional[List[int]] = None
    config: Optional[WorkItemsConfig] = None


ReportFn = Callable[[QueryContext, Any, ReportOptions], Awaitable[Any]]


def _work_item_query(opts: ReportOptions) -> WorkItemQuery:
    if not opts.work_item_type:
        raise ValueError("Work item reports require a work item type.")
    return WorkItemQuery(
        work_item_type=opts.work_item_type,
        filters=opts.filters,
        priority=opts.priority,
    )


def _config(opts: ReportOptions) -> WorkItemsConfig:
    return opts.config if opts.config is not None else load_work_items_config()


def _tests_kwargs(opts: ReportOptions) -> Dict[str, Any]:
    return {"repository_ids": opts.repository_ids, "definition_ids": opts.definition_ids}


REPORTS: Dict[str, ReportFn] = {
    "builds": lambda ctx, src, o: weekly_build_counts(
        ctx, src, repository_ids=o.repository_ids
    ),
    "tests-by-definition": lambda ctx, src, o: weekly_tests_by_definition(
        ctx, src, **_tests_kwargs(o)
    ),
    "tests": lambda ctx, src, o: weekly_tests_summary(ctx, src, **_tests_kwargs(o)),
    "coverage-by-definition": lambda ctx, src, o: weekly_coverage_by_definition(
        ctx, src, **_tests_kwargs(o)
    ),
    "coverage": lambda ctx, src, o: weekly_coverage_summary(ctx, src, **_tests_kwargs(o)),
    "pipelines-with-tests": lambda ctx, src, o: weekly_pipelines_with_tests_count(
        ctx, src, **_tests_kwargs(o)
    ),
    "pipelines-with-coverage": lambda ctx, src, o: weekly_pipelines_with_coverage_count(
        ctx, src, **_tests_kwargs(o)
    ),
    "api-coverage": lambda ctx, src, o: weekly_api_coverage_summary(ctx, src),
    "stub-usage": lambda ctx, src, o: weekly_stub_usage_summary(ctx, src),
    "consumer-producer-specs": lambda ctx, src, o: weekly_consumer_producer_spec_count(
        ctx, src
    ),
    "work-items-new": lambda ctx, src, o: weekly_work_item_counts(
        ctx, src, _work_item_query(o), graph=GRAPH_NEW, config=_config(o)
    ),
    "work-items-velocity": lambda ctx, src, o: weekly_work_item_counts(
        ctx, src, _work_item_query(o), graph=GRAPH_VELOCITY, config=_config(o)
    ),
    "wip-trend": lambda ctx, src, o: wip_trend(
        ctx, src, _work_item_query(o), config=_config(o)
    ),
    "sonar-status": lambda ctx, src, o: weekly_sonar_project_status(
        ctx, src, repository_ids=o.repository_ids
    ),
    "repos-with-sonar": lambda ctx, src, o: weekly_repos_with_sonar(
        ctx, src, repository_ids=o.repository_ids
    ),
}


async def compute_reports(
    ctx: QueryContext,
    source: Any,
    kinds: Sequence[str],
    options: Optional[ReportOptions] = None,
) -> WeeklyTrendReport:
    """
    Compute several weekly reports for one window concurrently.

    The window is validated before any event is fetched.
    """
    intervals = create_intervals(ctx.start_date, ctx.end_date)
    unknown = [k for k in kinds if k not in REPORTS]
    if unknown:
        raise ValueError(f"Unknown report kind(s): {unknown}. Known: {sorted(REPORTS)}")

    opts = options or ReportOptions()
    results = await asyncio.gather(*[REPORTS[k](ctx, source, opts) for k in kinds])
    return WeeklyTrendReport(
        start_date=ctx.start_date,
        end_date=ctx.end_date,
        number_of_intervals=intervals.number_of_intervals,
        week_starts=intervals.week_starts(ctx.start_date),
        series=dict(zip(kinds, results)),
    )


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: _jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)
        }
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_jsonable(v) for v in value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def report_to_json(report: WeeklyTrendReport, *, indent: Optional[int] = 2) -> str:
    return json.dumps(_jsonable(report), indent=indent)


def run_weekly_report_job(
    *,
    db_url: Optional[str] = None,
    db_name: Optional[str] = None,
    db_type: Optional[str] = None,
    kinds: Sequence[str],
    collection_name: str,
    project: str,
    start_date: datetime,
    end_date: datetime,
    options: Optional[ReportOptions] = None,
) -> WeeklyTrendReport:
    """
    Read events from the source at `db_url` and compute weekly reports.

    `db_url` falls back to DB_CONN_STRING / DATABASE_URL and `db_name` to
    MONGO_DB_NAME. `db_type` overrides detection from the URL.
    """
    db_url = db_url or os.getenv("DB_CONN_STRING") or os.getenv("DATABASE_URL")
    if not db_url:
        raise ValueError("Database URI is required (pass --db or set DB_CONN_STRING).")
    db_name = db_name or os.getenv("MONGO_DB_NAME")

    ctx = QueryContext(
        collection_name=collection_name,
        project=project,
        start_date=start_date,
        end_date=end_date,
    )
    logger.info(
        "Weekly report job: kinds=%s collection=%s project=%s start=%s end=%s",
        ",".join(kinds),
        collection_name,
        project,
        ctx.start_date.isoformat(),
        ctx.end_date.isoformat(),
    )

    async def _run() -> WeeklyTrendReport:
        source = create_event_source(db_url, db_type, db_name=db_name)
        async with source:
            return await compute_reports(ctx, source, kinds, options)

    return asyncio.run(_run())
