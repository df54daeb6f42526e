from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Generic, List, Optional, Tuple, TypedDict, TypeVar
from typing_extensions import NotRequired

T = TypeVar("T")


class ScopedRow(TypedDict):
    """Every scraped document belongs to one collection and project."""

    collection_name: str
    project: str


class BuildRow(ScopedRow):
    id: int
    build_definition_id: int
    repository_id: str
    start_time: datetime
    result: str  # succeeded|partiallySucceeded|failed|canceled


class TestRunRow(ScopedRow):
    id: int
    build_id: int
    build_definition_id: int
    repository_id: str
    completed_date: datetime
    total_tests: int
    passed_tests: int
    started_date: NotRequired[Optional[datetime]]


class CoverageRow(ScopedRow):
    id: int
    build_id: int
    build_definition_id: int
    repository_id: str
    date: datetime
    covered_branches: int
    total_branches: int


class BuildReportRow(ScopedRow):
    """Specmatic results attached to a single build (HTTP services only)."""

    id: str
    build_id: str
    build_definition_id: str
    created_at: datetime
    covered_operations: NotRequired[int]
    total_operations: NotRequired[int]
    stub_total_operations: NotRequired[int]
    stub_zero_count_operations: NotRequired[int]
    coverage_specs: NotRequired[List[str]]
    stub_specs: NotRequired[List[str]]


class WorkItemStateChangeRow(ScopedRow):
    id: str  # state change id
    work_item_id: int
    work_item_type: str
    state: str
    date: datetime
    # Raw work item fields used for grouping (e.g. "System.AreaPath").
    fields: NotRequired[Dict[str, Any]]


class SonarAlertRow(ScopedRow):
    id: str
    repository_id: str
    sonar_project_id: str
    date: datetime
    value: str  # OK|WARN|ERROR


@dataclass(frozen=True)
class WeekValue(Generic[T]):
    week_index: int
    value: T


@dataclass(frozen=True)
class Series(Generic[T]):
    """
    A grouping key with its per-week aggregates.

    Sparse series may skip weeks; dense series (continuity-filled) carry
    exactly one entry per week index, ascending.
    """

    key: Any
    entries: Tuple[WeekValue[T], ...] = ()

    def values(self) -> List[T]:
        return [e.value for e in self.entries]


@dataclass(frozen=True)
class WeeklyCount:
    week_index: int
    count: int


@dataclass(frozen=True)
class BuildsSplitUp:
    count: int
    by_week: List[WeeklyCount]


@dataclass(frozen=True)
class WeekTests:
    has_tests: bool
    build_id: Optional[int] = None
    total_tests: int = 0
    passed_tests: int = 0
    completed_date: Optional[datetime] = None


@dataclass(frozen=True)
class WeekCoverage:
    has_coverage: bool
    build_id: Optional[int] = None
    covered_branches: int = 0
    total_branches: int = 0


@dataclass(frozen=True)
class DefinitionTests:
    definition_id: int
    repository_id: Optional[str]
    tests: List[WeekValue[WeekTests]]
    latest: Optional[WeekTests] = None


@dataclass(frozen=True)
class DefinitionCoverage:
    definition_id: int
    repository_id: Optional[str]
    coverage_by_week: List[WeekValue[WeekCoverage]]
    latest: Optional[WeekCoverage] = None


@dataclass(frozen=True)
class WeeklyTestsSummary:
    week_index: int
    passed_tests: int
    total_tests: int


@dataclass(frozen=True)
class WeeklyCoverageSummary:
    week_index: int
    covered_branches: int
    total_branches: int


@dataclass(frozen=True)
class ApiCoverage:
    total_operations: int = 0
    covered_operations: int = 0


@dataclass(frozen=True)
class StubUsage:
    total_operations: int = 0
    zero_count_operations: int = 0


@dataclass(frozen=True)
class SpecUsage:
    coverage_specs: FrozenSet[str] = frozenset()
    stub_specs: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class WeeklyApiCoverage:
    week_index: int
    total_operations: int
    covered_operations: int


@dataclass(frozen=True)
class WeeklyStubUsage:
    week_index: int
    total_operations: int
    zero_count_operations: int


@dataclass(frozen=True)
class WeeklySpecCount:
    week_index: int
    count: int  # specs that are both consumed and produced
    total: int  # distinct specs seen


@dataclass(frozen=True)
class WorkItemGroupCounts:
    group_name: str
    counts_by_week: List[WeeklyCount]


@dataclass(frozen=True)
class WeeklyWip:
    week_index: int
    count: int
    added: int
    completed: int


@dataclass(frozen=True)
class WeeklySonarStatus:
    week_index: int
    passed_projects: int
    projects_with_warnings: int
    failed_projects: int
    total_projects: int


@dataclass(frozen=True)
class WeeklyTrendReport:
    """Bundle of weekly series returned to the caller for one query window."""

    start_date: datetime
    end_date: datetime
    number_of_intervals: int
    week_starts: List[datetime]
    series: Dict[str, Any] = field(default_factory=dict)
