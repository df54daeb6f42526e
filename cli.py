#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional

from metrics.config import load_work_items_config
from metrics.exceptions import MetricsException
from metrics.job_weekly import REPORTS, ReportOptions, report_to_json, run_weekly_report_job
from models.query import WorkItemFilter
from storage import create_event_source, detect_db_type

REPO_ROOT = Path(__file__).resolve().parent


def _load_dotenv(path: Path) -> int:
    """
    Load a .env file into process environment (without overriding existing vars).

    Keeps dependencies minimal (avoids python-dotenv).
    """
    if not path.exists():
        return 0
    loaded = 0
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key or key in os.environ:
            continue
        if (len(value) >= 2) and ((value[0] == value[-1]) and value[0] in {"'", '"'}):
            value = value[1:-1]
        os.environ[key] = value
        loaded += 1
    return loaded


def _parse_date(value: str) -> datetime:
    """YYYY-MM-DD (midnight UTC) or a full ISO datetime."""
    try:
        if len(value) == 10:
            day = date.fromisoformat(value)
            return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"Invalid date '{value}', expected YYYY-MM-DD or ISO datetime"
        ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_filter(value: str) -> WorkItemFilter:
    """LABEL=value1,value2"""
    if "=" not in value:
        raise argparse.ArgumentTypeError(
            f"Invalid filter '{value}', expected LABEL=value1,value2"
        )
    label, raw_values = value.split("=", 1)
    values = [v.strip() for v in raw_values.split(",") if v.strip()]
    return WorkItemFilter(label=label.strip(), values=values)


def _resolve_db_type(db_url: Optional[str], db_type: Optional[str]) -> str:
    if not db_url:
        raise SystemExit("Database URI is required (pass --db or set DB_CONN_STRING).")
    if db_type:
        resolved = db_type.lower()
    else:
        try:
            resolved = detect_db_type(db_url)
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc

    if resolved not in {"mongo", "memory"}:
        raise SystemExit("DB_TYPE must be 'mongo' or 'memory'")
    return resolved


def _cmd_report(ns: argparse.Namespace) -> int:
    db_type = _resolve_db_type(ns.db, ns.db_type)
    try:
        options = ReportOptions(
            repository_ids=ns.repo_id or None,
            definition_ids=ns.definition_id or None,
            work_item_type=ns.work_item_type,
            filters=ns.filter or None,
            priority=ns.priority or None,
            config=load_work_items_config(Path(ns.config)) if ns.config else None,
        )
        report = run_weekly_report_job(
            db_url=ns.db,
            db_name=ns.db_name,
            db_type=db_type,
            kinds=ns.kinds,
            collection_name=ns.collection,
            project=ns.project,
            start_date=ns.start,
            end_date=ns.end,
            options=options,
        )
    except (MetricsException, ValueError) as exc:
        logging.error("Report failed: %s", exc)
        return 1
    print(report_to_json(report))
    return 0


def _cmd_fixtures_generate(ns: argparse.Namespace) -> int:
    from fixtures.generator import SyntheticEventGenerator

    db_type = _resolve_db_type(ns.db, ns.db_type)
    generator = SyntheticEventGenerator(
        collection_name=ns.collection,
        project=ns.project,
        repositories=ns.repos,
        seed=ns.seed,
    )

    async def _handler() -> None:
        source = create_event_source(ns.db, db_type, db_name=ns.db_name)
        async with source:
            for collection, events in generator.generate_all(weeks=ns.weeks).items():
                await source.insert_events(collection, events)
                logging.info(f"- {collection}: {len(events)}")

    logging.info(f"Generating synthetic events for {ns.collection}/{ns.project}")
    asyncio.run(_handler())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ado-weekly-metrics",
        description="Weekly trend reports over scraped Azure DevOps data.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def _add_source_args(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--db",
            default=os.getenv("DB_CONN_STRING") or os.getenv("DATABASE_URL"),
            help="Event source URI (mongodb://..., memory://).",
        )
        p.add_argument(
            "--db-type", choices=["mongo", "memory"], help="Optional source override."
        )
        p.add_argument(
            "--db-name",
            default=os.getenv("MONGO_DB_NAME"),
            help="MongoDB database name (defaults to the one in the URI).",
        )
        p.add_argument("--collection", required=True, help="Azure DevOps collection.")
        p.add_argument("--project", required=True, help="Azure DevOps project.")

    # ---- report ----
    report = sub.add_parser("report", help="Compute weekly reports and print JSON.")
    report.add_argument(
        "kinds",
        nargs="+",
        choices=sorted(REPORTS),
        metavar="KIND",
        help=f"Report kind(s): {', '.join(sorted(REPORTS))}.",
    )
    _add_source_args(report)
    report.add_argument(
        "--start", type=_parse_date, required=True, help="Window start (inclusive)."
    )
    report.add_argument(
        "--end", type=_parse_date, required=True, help="Window end (exclusive)."
    )
    report.add_argument(
        "--repo-id", action="append", help="Limit to repository id (repeatable)."
    )
    report.add_argument(
        "--definition-id",
        action="append",
        type=int,
        help="Always report this build definition (repeatable).",
    )
    report.add_argument("--work-item-type", help="Work item type for work item reports.")
    report.add_argument(
        "--filter",
        action="append",
        type=_parse_filter,
        help="Work item filter LABEL=v1,v2 (repeatable).",
    )
    report.add_argument(
        "--priority", action="append", type=int, help="Work item priority (repeatable)."
    )
    report.add_argument(
        "--config",
        default=os.getenv("WORK_ITEM_CONFIG"),
        help="Work item config YAML (defaults to config/work_items.yaml).",
    )
    report.set_defaults(func=_cmd_report)

    # ---- fixtures ----
    fix = sub.add_parser("fixtures", help="Data simulation and fixtures.")
    fix_sub = fix.add_subparsers(dest="fixtures_command", required=True)
    fix_gen = fix_sub.add_parser("generate", help="Generate synthetic events.")
    _add_source_args(fix_gen)
    fix_gen.add_argument("--weeks", type=int, default=8, help="Weeks of data.")
    fix_gen.add_argument("--repos", type=int, default=3, help="Number of repositories.")
    fix_gen.add_argument("--seed", type=int, help="Random seed for repeatable data.")
    fix_gen.set_defaults(func=_cmd_fixtures_generate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    if os.getenv("DISABLE_DOTENV", "").strip().lower() not in {
        "1",
        "true",
        "yes",
        "on",
    }:
        _load_dotenv(REPO_ROOT / ".env")

    parser = build_parser()
    ns = parser.parse_args(argv)

    level_name = str(getattr(ns, "log_level", "") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    func = getattr(ns, "func", None)
    if func is None:
        parser.print_help()
        return 2
    return int(func(ns))


if __name__ == "__main__":
    raise SystemExit(main())
