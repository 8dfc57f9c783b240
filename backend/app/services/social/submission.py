"""Social post job creation and dispatch to the worker queue"""
from typing import Any, Dict, Optional, Tuple

import redis
from sqlalchemy.orm import Session

from app.core.logging import social_post_logger
from app.core.metrics import job_dispatch_failures_counter, social_post_jobs_created_counter
from app.db.helpers import create_post_job, increment_dispatch_attempts
from app.db.task_queue import SOCIAL_POST_TASK, enqueue_task
from app.models.product_video import ProductVideo
from app.models.social_post_job import SocialPostJob
from app.schemas.social_post import SocialPostRequest
from app.services.social.video_source import resolve_video


def default_metadata(video: ProductVideo, title: Optional[str], description: Optional[str]) -> Tuple[str, str]:
    """Fill in title/description from the product video when the request leaves them out"""
    resolved_title = title or video.video_title or video.product_title or video.filename
    resolved_description = description or f"Check out this product: https://amazon.com/dp/{video.asin or ''}"
    return resolved_title, resolved_description


def build_task_payload(job: SocialPostJob) -> Dict[str, Any]:
    return {
        "jobId": job.id,
        "owner": job.user_id,
        "videoReference": job.video_id,
        "platforms": list(job.platforms or []),
        "title": job.title,
        "description": job.description,
    }


def dispatch_post_job(job: SocialPostJob, db: Session) -> Optional[str]:
    """Hand a job to the worker queue

    A failure is logged and counted but not raised; the job stays pending and
    the worker's stale-job sweep dispatches it again.

    Returns:
        Task id, or None if the queue was unavailable
    """
    try:
        task_id = enqueue_task(SOCIAL_POST_TASK, build_task_payload(job))
    except redis.RedisError as e:
        job_dispatch_failures_counter.inc()
        social_post_logger.error(
            f"Failed to dispatch job {job.id}: {e}",
            extra={"job_id": job.id, "user_id": job.user_id, "dispatch_attempts": job.dispatch_attempts},
            exc_info=True
        )
        return None

    increment_dispatch_attempts(job, db)
    social_post_logger.info(f"Dispatched job {job.id} as task {task_id}")
    return task_id


def create_social_post_job(user_id: str, request: SocialPostRequest, db: Session) -> SocialPostJob:
    """Create a pending job for the request and dispatch it

    Raises:
        VideoNotFoundError: The video does not exist or belongs to someone else
    """
    video = resolve_video(db, user_id, request.video_reference)
    title, description = default_metadata(video, request.title, request.description)

    job = create_post_job(user_id, video.id, request.platforms, title, description, db)
    social_post_jobs_created_counter.inc()
    social_post_logger.info(
        f"Created job {job.id} for user {user_id}: video {video.id} -> {', '.join(job.platforms)}"
    )

    dispatch_post_job(job, db)
    return job
