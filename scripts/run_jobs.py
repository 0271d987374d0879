# scripts/run_jobs.py
import argparse
import asyncio
import logging
from datetime import datetime

from fleet_telemetry.core.config import settings
from fleet_telemetry.db.session import init_db
from fleet_telemetry.schemas.timeline import UPDATE_SOURCE_CRON, UPDATE_SOURCE_MANUAL
from fleet_telemetry.services.archival import archival_job
from fleet_telemetry.services.hours_ticker import hours_ticker
from fleet_telemetry.services.rollup import rollup_job

JOBS = ("hours-tick", "archive", "rollup")


async def run(job: str, *, now: datetime | None, source: str) -> None:
    await init_db()
    if job == "hours-tick":
        report = await hours_ticker.run_once(now=now)
    elif job == "archive":
        report = await archival_job.run_once(now=now, source=source)
    else:
        report = await rollup_job.run_once(now=now)
    print(f"[{job}] {report.model_dump_json(indent=2)}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run one hours tick, archival or rollup against the configured database."
    )
    parser.add_argument("job", choices=JOBS)
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Override the current time (ISO 8601, UTC when no offset is given).",
    )
    parser.add_argument(
        "--source",
        choices=(UPDATE_SOURCE_CRON, UPDATE_SOURCE_MANUAL),
        default=UPDATE_SOURCE_MANUAL,
        help="Update source recorded on archived records.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run(args.job, now=args.now, source=args.source))


if __name__ == "__main__":
    main()
