from __future__ import annotations

import argparse
import asyncio
from datetime import timedelta

from evalcouncil.db import AsyncSessionLocal
from evalcouncil.logger import logger
from evalcouncil.services.jobs import find_stuck_jobs


async def report_stuck_jobs(*, max_age_minutes: int) -> int:
    async with AsyncSessionLocal() as db:
        stuck = await find_stuck_jobs(db, timedelta(minutes=max_age_minutes))

    for job in stuck:
        logger.warning(
            "Stuck evaluation job",
            extra={
                "job_id": job.id,
                "status": job.status,
                "url": job.url,
                "updated_at": job.updated_at.isoformat() if job.updated_at else None,
            },
        )

    logger.info(
        "Stuck job report completed",
        extra={"stuck_jobs": len(stuck), "max_age_minutes": max_age_minutes},
    )
    return len(stuck)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="List evaluation jobs still pending or processing beyond a given age.",
    )
    parser.add_argument(
        "--max-age-minutes",
        type=int,
        default=30,
        help="Report jobs whose last update is older than this (default: 30).",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    count = asyncio.run(report_stuck_jobs(max_age_minutes=args.max_age_minutes))
    raise SystemExit(1 if count else 0)


if __name__ == "__main__":
    main()
