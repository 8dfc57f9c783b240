"""Background worker for processing social post tasks from the Redis queue

Spawns an async task per queued job without blocking the polling loop, and
periodically sweeps jobs that were never dispatched or whose worker died.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.logging import worker_logger
from app.core.metrics import worker_sweep_counter
from app.db.helpers import find_stale_jobs, mark_post_job_failed
from app.db.session import SessionLocal
from app.db.task_queue import (
    SOCIAL_POST_TASK, cleanup_stale_tasks, dequeue_task, get_task_status,
    mark_task_completed, mark_task_failed, mark_task_processing
)
from app.models.social_post_job import JobStatus
from app.services.social.processor import SocialClients, process_social_post_job
from app.services.social.submission import dispatch_post_job

logger = logging.getLogger(__name__)

STALE_PROCESSING_ERROR = "Job timed out while processing"
DISPATCH_FAILED_ERROR = "dispatch failed"


async def process_post_task(task_data: Dict[str, Any], clients: Optional[SocialClients] = None) -> None:
    """Process a single social post task (runs concurrently with other tasks)

    Args:
        task_data: Task data from queue
        clients: Injected collaborators; a fresh HTTP client is created when omitted
    """
    task_id = task_data.get("task_id")
    payload = task_data.get("payload", {})
    job_id = payload.get("jobId")
    # Set on retries of an attempt that raised
    failed_attempt_error = task_data.get("last_error")

    if not job_id or not payload.get("owner"):
        logger.error(f"Task {task_id} missing jobId/owner in payload")
        mark_task_failed(task_id, "Missing jobId or owner in task payload", retry=False)
        return

    mark_task_processing(task_id)
    db = SessionLocal()

    try:
        worker_logger.info(f"Processing social post task {task_id} for job {job_id}")
        if clients is None:
            async with httpx.AsyncClient(timeout=settings.VENDOR_HTTP_TIMEOUT_SECONDS) as http:
                job = await process_social_post_job(payload, db, SocialClients.create(http), failed_attempt_error)
        else:
            job = await process_social_post_job(payload, db, clients, failed_attempt_error)

        mark_task_completed(task_id, {"job_id": job_id, "status": job.status if job else "skipped"})

    except Exception as e:
        # The job could not even be marked failed - retry with exponential backoff
        error_msg = str(e)
        logger.error(f"Task {task_id} failed: {error_msg}", exc_info=True)
        mark_task_failed(task_id, error_msg, retry=True)

    finally:
        try:
            db.close()
        except Exception as e:
            logger.warning(f"Error closing DB session for task {task_id}: {e}")


def sweep_stale_jobs() -> Dict[str, int]:
    """Re-dispatch pending jobs nobody picked up and fail processing jobs that stalled

    Returns:
        Counts of jobs re-dispatched and failed
    """
    db = SessionLocal()
    redispatched = 0
    failed = 0
    try:
        for job in find_stale_jobs(JobStatus.PENDING, settings.STALE_PENDING_JOB_SECONDS, db):
            if (job.dispatch_attempts or 0) >= settings.MAX_DISPATCH_ATTEMPTS:
                worker_logger.warning(
                    f"Failing pending job {job.id} after {job.dispatch_attempts} dispatches without a claim"
                )
                mark_post_job_failed(job, DISPATCH_FAILED_ERROR, db)
                failed += 1
                worker_sweep_counter.labels(action="failed").inc()
                continue
            worker_logger.info(
                f"Re-dispatching stale pending job {job.id} (dispatch_attempts={job.dispatch_attempts})"
            )
            if dispatch_post_job(job, db):
                redispatched += 1
                worker_sweep_counter.labels(action="redispatched").inc()

        for job in find_stale_jobs(JobStatus.PROCESSING, settings.STALE_PROCESSING_JOB_SECONDS, db):
            worker_logger.warning(f"Failing stale processing job {job.id} (last update {job.updated_at})")
            mark_post_job_failed(job, STALE_PROCESSING_ERROR, db)
            failed += 1
            worker_sweep_counter.labels(action="failed").inc()
    finally:
        db.close()

    if redispatched or failed:
        worker_logger.info(f"Stale job sweep: {redispatched} re-dispatched, {failed} failed")
    return {"redispatched": redispatched, "failed": failed}


async def _wait_for_retry(task_data: Dict[str, Any]) -> None:
    """Delay a retried task until its retry_after time (exponential backoff)"""
    task_id = task_data.get("task_id")
    task_meta = get_task_status(task_id)
    retry_after_str = task_meta.get("retry_after") if task_meta else None
    if not retry_after_str:
        return

    try:
        retry_after = datetime.fromisoformat(retry_after_str.replace('Z', '+00:00'))
    except (ValueError, TypeError) as e:
        logger.warning(f"Error parsing retry_after for task {task_id}: {e}")
        return

    delay_seconds = (retry_after - datetime.now(timezone.utc)).total_seconds()
    if delay_seconds > 0:
        logger.info(
            f"Task {task_id} is retry attempt {task_data.get('retry_count', 0)}, "
            f"waiting {delay_seconds:.0f}s before processing"
        )
        await asyncio.sleep(delay_seconds)


async def post_worker_task() -> None:
    """Main worker loop: poll the social post queue and process tasks concurrently"""
    logger.info("Starting social post worker task")
    last_sweep = 0.0

    while True:
        try:
            if time.monotonic() - last_sweep >= settings.JOB_SWEEP_INTERVAL_SECONDS:
                last_sweep = time.monotonic()
                # Tasks stuck in processing are likely from crashed workers
                cleanup_stale_tasks(timeout_seconds=settings.STALE_PROCESSING_JOB_SECONDS)
                sweep_stale_jobs()

            task_data = await dequeue_task(SOCIAL_POST_TASK, timeout=5)
            if task_data is None:
                continue

            await _wait_for_retry(task_data)
            asyncio.create_task(process_post_task(task_data))

        except Exception as e:
            logger.error(f"Error in social post worker loop: {e}", exc_info=True)
            await asyncio.sleep(5)
