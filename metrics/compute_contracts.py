from __future__ import annotations

import logging
from typing import Any, List, Mapping

from metrics.intervals import create_intervals
from metrics.rollups import merge_series
from metrics.schemas import (
    ApiCoverage,
    SpecUsage,
    StubUsage,
    WeeklyApiCoverage,
    WeeklySpecCount,
    WeeklyStubUsage,
)
from metrics.weekly import latest_per_key, scope_match
from models.events import BUILD_REPORTS
from models.query import QueryContext

logger = logging.getLogger(__name__)


def api_coverage_from_report(doc: Mapping[str, Any]) -> ApiCoverage:
    return ApiCoverage(
        total_operations=int(doc.get("total_operations") or 0),
        covered_operations=int(doc.get("covered_operations") or 0),
    )


def stub_usage_from_report(doc: Mapping[str, Any]) -> StubUsage:
    return StubUsage(
        total_operations=int(doc.get("stub_total_operations") or 0),
        zero_count_operations=int(doc.get("stub_zero_count_operations") or 0),
    )


def spec_usage_from_report(doc: Mapping[str, Any]) -> SpecUsage:
    return SpecUsage(
        coverage_specs=frozenset(doc.get("coverage_specs") or ()),
        stub_specs=frozenset(doc.get("stub_specs") or ()),
    )


async def weekly_api_coverage_summary(
    ctx: QueryContext, source: Any
) -> List[WeeklyApiCoverage]:
    """Covered and total API operations per week, summed across pipelines."""
    intervals = create_intervals(ctx.start_date, ctx.end_date)
    filled = await latest_per_key(
        ctx,
        source,
        BUILD_REPORTS,
        intervals=intervals,
        key_field="build_definition_id",
        fields=("total_operations", "covered_operations"),
        to_value=api_coverage_from_report,
        empty=ApiCoverage(),
        match=scope_match(ctx, extra={"total_operations": {"$exists": True}}),
    )
    merged = merge_series(
        [s.entries for s in filled],
        combine=lambda acc, c: ApiCoverage(
            total_operations=acc.total_operations + c.total_operations,
            covered_operations=acc.covered_operations + c.covered_operations,
        ),
        zero=ApiCoverage(),
        number_of_intervals=intervals.number_of_intervals,
    )
    logger.info("Computed weekly API coverage across %d pipelines", len(filled))
    return [
        WeeklyApiCoverage(
            week_index=w.week_index,
            total_operations=w.value.total_operations,
            covered_operations=w.value.covered_operations,
        )
        for w in merged
    ]


async def weekly_stub_usage_summary(ctx: QueryContext, source: Any) -> List[WeeklyStubUsage]:
    """Stubbed operations per week, and how many of them were never called."""
    intervals = create_intervals(ctx.start_date, ctx.end_date)
    filled = await latest_per_key(
        ctx,
        source,
        BUILD_REPORTS,
        intervals=intervals,
        key_field="build_definition_id",
        fields=("stub_total_operations", "stub_zero_count_operations"),
        to_value=stub_usage_from_report,
        empty=StubUsage(),
        match=scope_match(ctx, extra={"stub_total_operations": {"$exists": True}}),
    )
    merged = merge_series(
        [s.entries for s in filled],
        combine=lambda acc, s: StubUsage(
            total_operations=acc.total_operations + s.total_operations,
            zero_count_operations=acc.zero_count_operations + s.zero_count_operations,
        ),
        zero=StubUsage(),
        number_of_intervals=intervals.number_of_intervals,
    )
    logger.info("Computed weekly stub usage across %d pipelines", len(filled))
    return [
        WeeklyStubUsage(
            week_index=w.week_index,
            total_operations=w.value.total_operations,
            zero_count_operations=w.value.zero_count_operations,
        )
        for w in merged
    ]


async def weekly_consumer_producer_spec_count(
    ctx: QueryContext, source: Any
) -> List[WeeklySpecCount]:
    """
    Per week: how many API specs are both consumed (stubbed) and produced
    (covered) by some pipeline, out of all distinct specs seen.
    """
    intervals = create_intervals(ctx.start_date, ctx.end_date)
    filled = await latest_per_key(
        ctx,
        source,
        BUILD_REPORTS,
        intervals=intervals,
        key_field="build_definition_id",
        fields=("coverage_specs", "stub_specs"),
        to_value=spec_usage_from_report,
        empty=SpecUsage(),
        match=scope_match(ctx),
    )
    merged = merge_series(
        [s.entries for s in filled],
        combine=lambda acc, s: SpecUsage(
            coverage_specs=acc.coverage_specs | s.coverage_specs,
            stub_specs=acc.stub_specs | s.stub_specs,
        ),
        zero=SpecUsage(),
        number_of_intervals=intervals.number_of_intervals,
    )
    return [
        WeeklySpecCount(
            week_index=w.week_index,
            count=len(w.value.coverage_specs & w.value.stub_specs),
            total=len(w.value.coverage_specs | w.value.stub_specs),
        )
        for w in merged
    ]
