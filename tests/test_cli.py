import argparse
import json
import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from cli import _load_dotenv, _parse_date, _parse_filter, build_parser, main
from metrics.schemas import WeeklyTrendReport


def test_parse_date_accepts_day_and_datetime():
    assert _parse_date("2024-01-01") == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert _parse_date("2024-01-01T12:30:00") == datetime(
        2024, 1, 1, 12, 30, tzinfo=timezone.utc
    )
    with pytest.raises(argparse.ArgumentTypeError):
        _parse_date("01/02/2024")


def test_parse_filter():
    parsed = _parse_filter("Tags=payments, urgent")

    assert parsed.label == "Tags"
    assert parsed.values == ["payments", "urgent"]
    with pytest.raises(argparse.ArgumentTypeError):
        _parse_filter("Tags")


def test_report_parser_collects_options():
    ns = build_parser().parse_args(
        [
            "report",
            "builds",
            "tests",
            "--db",
            "memory://",
            "--collection",
            "acme",
            "--project",
            "p",
            "--start",
            "2024-01-01",
            "--end",
            "2024-01-22",
            "--repo-id",
            "r1",
            "--repo-id",
            "r2",
            "--definition-id",
            "7",
        ]
    )

    assert ns.kinds == ["builds", "tests"]
    assert ns.repo_id == ["r1", "r2"]
    assert ns.definition_id == [7]


def test_report_parser_rejects_unknown_kind():
    with pytest.raises(SystemExit):
        build_parser().parse_args(
            ["report", "nope", "--collection", "a", "--project", "p",
             "--start", "2024-01-01", "--end", "2024-01-08"]
        )


def test_report_prints_json(monkeypatch, capsys):
    monkeypatch.setenv("DISABLE_DOTENV", "1")

    code = main(
        [
            "report",
            "builds",
            "--db",
            "memory://",
            "--collection",
            "acme",
            "--project",
            "p",
            "--start",
            "2024-01-01",
            "--end",
            "2024-01-22",
        ]
    )

    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["number_of_intervals"] == 3
    assert data["series"]["builds"]["total"]["count"] == 0


def test_report_invalid_range_exits_nonzero(monkeypatch, capsys):
    monkeypatch.setenv("DISABLE_DOTENV", "1")

    code = main(
        ["report", "builds", "--db", "memory://", "--collection", "acme",
         "--project", "p", "--start", "2024-01-22", "--end", "2024-01-01"]
    )

    assert code == 1
    assert capsys.readouterr().out == ""


def test_report_passes_options_to_job(monkeypatch):
    monkeypatch.setenv("DISABLE_DOTENV", "1")
    report = WeeklyTrendReport(
        start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        end_date=datetime(2024, 1, 8, tzinfo=timezone.utc),
        number_of_intervals=1,
        week_starts=[datetime(2024, 1, 1, tzinfo=timezone.utc)],
    )

    with patch("cli.run_weekly_report_job", return_value=report) as job:
        main(
            ["report", "wip-trend", "--db", "mongodb://localhost:27017/ado",
             "--collection", "acme", "--project", "p", "--start", "2024-01-01",
             "--end", "2024-01-08", "--work-item-type", "Bug",
             "--filter", "Tags=urgent", "--priority", "1"]
        )

    kwargs = job.call_args.kwargs
    assert kwargs["kinds"] == ["wip-trend"]
    assert kwargs["options"].work_item_type == "Bug"
    assert kwargs["options"].filters[0].values == ["urgent"]
    assert kwargs["options"].priority == [1]


def test_unsupported_db_scheme_exits(monkeypatch):
    monkeypatch.setenv("DISABLE_DOTENV", "1")

    with pytest.raises(SystemExit):
        main(
            ["report", "builds", "--db", "sqlite:///x.db", "--collection", "acme",
             "--project", "p", "--start", "2024-01-01", "--end", "2024-01-08"]
        )


def test_report_bad_config_exits_nonzero(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("DISABLE_DOTENV", "1")
    bad_yaml = tmp_path / "bad.yaml"
    bad_yaml.write_text("work_items: [Bug\n", encoding="utf-8")

    code = main(
        ["report", "builds", "--db", "memory://", "--collection", "acme",
         "--project", "p", "--start", "2024-01-01", "--end", "2024-01-22",
         "--config", str(bad_yaml)]
    )

    assert code == 1
    assert capsys.readouterr().out == ""


def test_report_db_type_overrides_detection(monkeypatch):
    monkeypatch.setenv("DISABLE_DOTENV", "1")
    report = WeeklyTrendReport(
        start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        end_date=datetime(2024, 1, 8, tzinfo=timezone.utc),
        number_of_intervals=1,
        week_starts=[datetime(2024, 1, 1, tzinfo=timezone.utc)],
    )

    with patch("cli.run_weekly_report_job", return_value=report) as job:
        code = main(
            ["report", "builds", "--db", "mongodb://localhost:27017/ado",
             "--db-type", "memory", "--collection", "acme", "--project", "p",
             "--start", "2024-01-01", "--end", "2024-01-08"]
        )

    assert code == 0
    assert job.call_args.kwargs["db_type"] == "memory"


def test_fixtures_generate_into_memory(monkeypatch):
    monkeypatch.setenv("DISABLE_DOTENV", "1")

    code = main(
        ["fixtures", "generate", "--db", "memory://", "--collection", "acme",
         "--project", "p", "--weeks", "2", "--seed", "1"]
    )

    assert code == 0


def test_load_dotenv_does_not_override(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\nexport MONGO_DB_NAME='ado'\nLOG_LEVEL=DEBUG\n", encoding="utf-8"
    )
    monkeypatch.delenv("MONGO_DB_NAME", raising=False)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    loaded = _load_dotenv(env_file)

    assert loaded == 1
    assert os.environ["MONGO_DB_NAME"] == "ado"
    assert os.environ["LOG_LEVEL"] == "WARNING"
    monkeypatch.delenv("MONGO_DB_NAME")
