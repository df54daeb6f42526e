from datetime import datetime, timezone

import pytest

from metrics.compute_sonar import weekly_repos_with_sonar, weekly_sonar_project_status
from metrics.schemas import WeeklyCount, WeeklySonarStatus
from storage import MemoryEventSource


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def alerts(make_event):
    def alert(id, repo, project, when, value):
        return make_event(
            id=id, repository_id=repo, sonar_project_id=project, date=when, value=value
        )

    return [
        alert("a1", "r1", "p1", utc(2023, 12, 1), "ERROR"),
        alert("a2", "r1", "p1", utc(2023, 12, 20), "OK"),
        alert("a3", "r2", "p2", utc(2024, 1, 3), "WARN"),
        alert("a4", "r2", "p2", utc(2024, 1, 5), "ERROR"),
        alert("a5", "r1", "p1", utc(2024, 1, 17), "ERROR"),
        alert("a6", "r3", "p3", utc(2024, 1, 18), "OK"),
    ]


@pytest.mark.asyncio
async def test_weekly_sonar_project_status(ctx, alerts):
    source = MemoryEventSource({"sonaralerthistories": alerts})

    result = await weekly_sonar_project_status(ctx, source)

    assert result == [
        WeeklySonarStatus(0, passed_projects=1, projects_with_warnings=0, failed_projects=1, total_projects=2),
        WeeklySonarStatus(1, passed_projects=1, projects_with_warnings=0, failed_projects=1, total_projects=2),
        WeeklySonarStatus(2, passed_projects=1, projects_with_warnings=0, failed_projects=2, total_projects=3),
    ]


@pytest.mark.asyncio
async def test_weekly_sonar_project_status_filters_repositories(ctx, alerts):
    source = MemoryEventSource({"sonaralerthistories": alerts})

    result = await weekly_sonar_project_status(ctx, source, repository_ids=["r2"])

    assert [(w.failed_projects, w.total_projects) for w in result] == [(1, 1)] * 3


@pytest.mark.asyncio
async def test_weekly_repos_with_sonar(ctx, alerts):
    source = MemoryEventSource({"sonaralerthistories": alerts})

    result = await weekly_repos_with_sonar(ctx, source)

    assert result == [WeeklyCount(0, 2), WeeklyCount(1, 2), WeeklyCount(2, 3)]


@pytest.mark.asyncio
async def test_unknown_gate_values_keep_last_valid_state(ctx, make_event):
    def alert(id, project, when, value):
        return make_event(
            id=id, repository_id="r1", sonar_project_id=project, date=when, value=value
        )

    source = MemoryEventSource(
        {
            "sonaralerthistories": [
                alert("b1", "p1", utc(2023, 12, 20), "OK"),
                alert("b2", "p1", utc(2023, 12, 28), "NONE"),
                alert("b3", "p2", utc(2024, 1, 2), "ERROR"),
                alert("b4", "p2", utc(2024, 1, 4), "NONE"),
                alert("b5", "p3", utc(2024, 1, 10), "NONE"),
            ]
        }
    )

    result = await weekly_sonar_project_status(ctx, source)

    assert result == [
        WeeklySonarStatus(i, passed_projects=1, projects_with_warnings=0, failed_projects=1, total_projects=2)
        for i in range(3)
    ]


@pytest.mark.asyncio
async def test_sonar_reports_without_data(ctx, memory_source):
    status = await weekly_sonar_project_status(ctx, memory_source)
    repos = await weekly_repos_with_sonar(ctx, memory_source)

    assert [w.total_projects for w in status] == [0, 0, 0]
    assert [w.count for w in repos] == [0, 0, 0]
