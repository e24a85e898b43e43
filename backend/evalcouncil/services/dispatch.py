from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from ..config import settings
from ..exceptions import DispatchError
from ..logger import logger
from ..workers import celery_app


def _publish(job_id: str, url: str, demographics: Dict[str, Any]) -> None:
    celery_app.send_task(
        settings.EVALUATION_TASK_NAME,
        kwargs={"job_id": job_id, "url": url, "demographics": demographics},
    )


async def dispatch(
    job_id: str,
    url: str,
    demographics: Dict[str, Any],
    timeout: Optional[float] = None,
) -> None:
    """
    Hand a job to the external scraping worker. Fire-and-forget: one publish attempt,
    bounded by a timeout. The job row is left untouched on failure.
    """
    timeout = settings.DISPATCH_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        await asyncio.wait_for(asyncio.to_thread(_publish, job_id, url, demographics), timeout)
    except asyncio.TimeoutError:
        logger.error("Dispatch timed out", extra={"job_id": job_id, "timeout": timeout})
        raise DispatchError(job_id, f"timed out after {timeout}s")
    except Exception as e:
        logger.error("Dispatch failed", extra={"job_id": job_id, "error": str(e)})
        raise DispatchError(job_id, str(e))

    logger.info("Job dispatched", extra={"job_id": job_id, "task": settings.EVALUATION_TASK_NAME})
