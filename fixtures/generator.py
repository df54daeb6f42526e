import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from metrics.schemas import (
    BuildReportRow,
    BuildRow,
    CoverageRow,
    SonarAlertRow,
    TestRunRow,
    WorkItemStateChangeRow,
)
from models.events import (
    BUILD_REPORTS,
    BUILD_SUCCEEDED,
    BUILDS,
    CODE_COVERAGE,
    PRIORITY_FIELD,
    SONAR_ALERT_HISTORY,
    SONAR_ERROR,
    SONAR_OK,
    SONAR_WARN,
    TEST_RUNS,
    WORK_ITEM_STATE_CHANGES,
)


class SyntheticEventGenerator:
    """Random but plausible Azure DevOps events for demos and local testing."""

    def __init__(
        self,
        collection_name: str = "acme",
        project: str = "demo-project",
        *,
        repositories: int = 3,
        definitions_per_repo: int = 2,
        seed: Optional[int] = None,
        end_date: Optional[datetime] = None,
    ):
        self.collection_name = collection_name
        self.project = project
        self.random = random.Random(seed)
        self.end_date = end_date or datetime.now(timezone.utc)
        self.repositories = [f"repo-{i + 1}" for i in range(repositories)]
        self.definitions = {
            (r * 100) + d + 1: repo
            for r, repo in enumerate(self.repositories)
            for d in range(definitions_per_repo)
        }
        self.specs = [f"specs/service-{i}.yaml" for i in range(6)]
        self.environments = ["Production", "Staging", "Development"]
        self.area_paths = ["demo-project\\Payments", "demo-project\\Search"]
        self._next_build_id = 1000

    def _base(self) -> Dict[str, str]:
        return {"collection_name": self.collection_name, "project": self.project}

    def _random_time(self, start: datetime, end: datetime) -> datetime:
        seconds = int((end - start).total_seconds())
        return start + timedelta(seconds=self.random.randint(0, max(seconds - 1, 0)))

    def generate_builds(self, weeks: int = 8, builds_per_week: int = 10) -> List[BuildRow]:
        builds = []
        start = self.end_date - timedelta(weeks=weeks)
        for definition_id, repo in self.definitions.items():
            for _ in range(self.random.randint(builds_per_week // 2, builds_per_week) * weeks):
                self._next_build_id += 1
                builds.append(
                    {
                        **self._base(),
                        "id": self._next_build_id,
                        "build_definition_id": definition_id,
                        "repository_id": repo,
                        "start_time": self._random_time(start, self.end_date),
                        "result": self.random.choices(
                            [BUILD_SUCCEEDED, "failed", "partiallySucceeded", "canceled"],
                            weights=[7, 2, 1, 1],
                        )[0],
                    }
                )
        return builds

    def generate_test_runs(self, builds: List[BuildRow]) -> List[TestRunRow]:
        runs = []
        for build in builds:
            if build["result"] == "canceled" or self.random.random() < 0.3:
                continue
            total = self.random.randint(50, 400)
            completed = build["start_time"] + timedelta(minutes=self.random.randint(2, 30))
            runs.append(
                {
                    **self._base(),
                    "id": build["id"] * 10,
                    "build_id": build["id"],
                    "build_definition_id": build["build_definition_id"],
                    "repository_id": build["repository_id"],
                    "started_date": build["start_time"],
                    "completed_date": completed,
                    "total_tests": total,
                    "passed_tests": total - self.random.randint(0, total // 10),
                }
            )
        return runs

    def generate_coverage(self, runs: List[TestRunRow]) -> List[CoverageRow]:
        coverage = []
        for run in runs:
            if self.random.random() < 0.4:
                continue
            total = self.random.randint(200, 2000)
            coverage.append(
                {
                    **self._base(),
                    "id": run["build_id"] * 10 + 1,
                    "build_id": run["build_id"],
                    "build_definition_id": run["build_definition_id"],
                    "repository_id": run["repository_id"],
                    "date": run["completed_date"] + timedelta(minutes=1),
                    "total_branches": total,
                    "covered_branches": self.random.randint(total // 3, total),
                }
            )
        return coverage

    def generate_build_reports(self, builds: List[BuildRow]) -> List[BuildReportRow]:
        reports = []
        for build in builds:
            if self.random.random() < 0.5:
                continue
            report: BuildReportRow = {
                **self._base(),
                "id": f"report-{build['id']}",
                "build_id": str(build["id"]),
                "build_definition_id": str(build["build_definition_id"]),
                "created_at": build["start_time"] + timedelta(minutes=5),
            }
            if self.random.random() < 0.7:
                total = self.random.randint(5, 40)
                report["total_operations"] = total
                report["covered_operations"] = self.random.randint(0, total)
                report["coverage_specs"] = self.random.sample(self.specs, 2)
            if self.random.random() < 0.5:
                total = self.random.randint(3, 20)
                report["stub_total_operations"] = total
                report["stub_zero_count_operations"] = self.random.randint(0, total)
                report["stub_specs"] = self.random.sample(self.specs, 2)
            reports.append(report)
        return reports

    def generate_work_item_state_changes(
        self, weeks: int = 8, items: int = 40, work_item_type: str = "Bug"
    ) -> List[WorkItemStateChangeRow]:
        changes = []
        # Some items start before the window so WIP has something to carry.
        start = self.end_date - timedelta(weeks=weeks + 2)
        for item_id in range(1, items + 1):
            fields = {
                "Microsoft.VSTS.Common.Environment": self.random.choice(self.environments),
                "System.AreaPath": self.random.choice(self.area_paths),
                PRIORITY_FIELD: self.random.randint(1, 4),
            }
            created = self._random_time(start, self.end_date)
            path = [("New", created)]
            if self.random.random() < 0.8:
                active = created + timedelta(days=self.random.randint(0, 5))
                path.append(("Active", active))
                if self.random.random() < 0.6:
                    path.append(("Closed", active + timedelta(days=self.random.randint(1, 20))))
            for n, (state, date) in enumerate(path):
                if date >= self.end_date:
                    break
                changes.append(
                    {
                        **self._base(),
                        "id": f"{item_id}-{n}",
                        "work_item_id": item_id,
                        "work_item_type": work_item_type,
                        "state": state,
                        "date": date,
                        "fields": fields,
                    }
                )
        return changes

    def generate_sonar_alerts(self, weeks: int = 8) -> List[SonarAlertRow]:
        alerts = []
        start = self.end_date - timedelta(weeks=weeks + 2)
        for repo in self.repositories:
            if self.random.random() < 0.2:
                continue
            project_id = f"sonar-{repo}"
            for n in range(self.random.randint(1, weeks)):
                alerts.append(
                    {
                        **self._base(),
                        "id": f"{project_id}-{n}",
                        "repository_id": repo,
                        "sonar_project_id": project_id,
                        "date": self._random_time(start, self.end_date),
                        "value": self.random.choices(
                            [SONAR_OK, SONAR_WARN, SONAR_ERROR], weights=[6, 2, 2]
                        )[0],
                    }
                )
        return alerts

    def generate_all(self, weeks: int = 8) -> Dict[str, List[Dict[str, Any]]]:
        builds = self.generate_builds(weeks=weeks)
        runs = self.generate_test_runs(builds)
        return {
            BUILDS: builds,
            TEST_RUNS: runs,
            CODE_COVERAGE: self.generate_coverage(runs),
            BUILD_REPORTS: self.generate_build_reports(builds),
            WORK_ITEM_STATE_CHANGES: self.generate_work_item_state_changes(weeks=weeks),
            SONAR_ALERT_HISTORY: self.generate_sonar_alerts(weeks=weeks),
        }
