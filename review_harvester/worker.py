#!/usr/bin/env python3
"""Run one scraping job to completion, e.g. from a weekly cron trigger."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from review_harvester.core.config import get_settings
from review_harvester.core.dates import DATE_FILTER_WINDOWS
from review_harvester.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from review_harvester.jobs.errors import AlreadyRunning, TargetNotFound
from review_harvester.jobs.orchestrator import get_orchestrator
from review_harvester.services.repository import get_repository

logger = logging.getLogger(__name__)


async def run_once(date_filter: str, company_name: str | None) -> str:
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings)
    orchestrator = get_orchestrator()
    try:
        job = await orchestrator.run(date_filter, company_name)
    finally:
        await get_repository().close()
        shutdown_telemetry(telemetry_runtime)

    if job is None:
        return "failed"
    logger.info(
        "job id=%s finished status=%s total=%s success=%s errors=%s",
        job["id"],
        job["status"],
        job["total_reviews"],
        job["success_count"],
        job["error_count"],
    )
    return job["status"]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Harvest portal reviews for the configured companies.")
    parser.add_argument("--date-filter", choices=sorted(DATE_FILTER_WINDOWS), default="week")
    parser.add_argument("--company", default=None, help="Only scrape this company name.")
    args = parser.parse_args(argv)

    try:
        status = asyncio.run(run_once(args.date_filter, args.company))
    except (AlreadyRunning, TargetNotFound) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return 0 if status == "completed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
