"""Social post job processing - runs one job's platforms in order and records results"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import SUPPORTED_PLATFORMS, Settings, settings as default_settings
from app.core.errors import PlatformNotConnected, PublishError, TokenRefreshError
from app.core.logging import social_post_logger
from app.core.metrics import platform_posts_counter, social_post_jobs_finished_counter
from app.db.helpers import (
    PlatformCredential, claim_post_job, get_post_job, mark_post_job_failed,
    save_post_job_result, update_post_job_status
)
from app.models.social_post_job import JobStatus, SocialPostJob
from app.services.social.credentials import CredentialManager
from app.services.social.platforms.base import BasePlatformPublisher, PublishRequest, PublishResult
from app.services.social.registry import build_publishers
from app.services.social.transcoder import TranscoderClient
from app.services.social.video_source import JobVideo, OneDriveVideoSource, resolve_video


@dataclass
class SocialClients:
    """Collaborators a job needs, created once per task and injected"""
    http: httpx.AsyncClient
    credentials: CredentialManager
    video_source: OneDriveVideoSource
    publishers: Dict[str, BasePlatformPublisher]

    @classmethod
    def create(cls, http: httpx.AsyncClient, settings: Settings = default_settings,
               poll_interval: Optional[float] = None) -> "SocialClients":
        credentials = CredentialManager(http, settings)
        return cls(
            http=http,
            credentials=credentials,
            video_source=OneDriveVideoSource(http, credentials, settings),
            publishers=build_publishers(http, TranscoderClient(http, settings), settings, poll_interval),
        )


async def attempt_platform(platform: str, publish_fn: Callable[[], Awaitable[PublishResult]]) -> Dict[str, Any]:
    """Run one platform attempt and turn its outcome into a result record

    A failure here never stops the other platforms. Database errors are
    re-raised since they mean the job itself can no longer be written.
    """
    try:
        published = await publish_fn()
    except PlatformNotConnected:
        error = f"{platform} not connected"
    except TokenRefreshError:
        error = "token refresh failed"
    except PublishError as e:
        error = str(e)
    except SQLAlchemyError:
        raise
    except Exception as e:
        social_post_logger.error(f"Unexpected error posting to {platform}: {e}", exc_info=True)
        error = str(e) or type(e).__name__
    else:
        platform_posts_counter.labels(platform=platform, status="success").inc()
        return published.to_result()

    platform_posts_counter.labels(platform=platform, status="failure").inc()
    return {"success": False, "error": error}


class _CredentialCache:
    """Resolves each credential once per job; a failure is remembered and re-raised"""

    def __init__(self, manager: CredentialManager, db: Session, user_id: str):
        self.manager = manager
        self.db = db
        self.user_id = user_id
        self._resolved: Dict[str, Union[PlatformCredential, Exception]] = {}

    async def get(self, platform: str) -> PlatformCredential:
        if platform not in self._resolved:
            try:
                self._resolved[platform] = await self.manager.get_valid_credential(self.db, self.user_id, platform)
            except (PlatformNotConnected, TokenRefreshError) as e:
                self._resolved[platform] = e
        resolved = self._resolved[platform]
        if isinstance(resolved, Exception):
            raise resolved
        return resolved


def ordered_platforms(platforms) -> list:
    """Requested platforms in processing order (YouTube, then the Meta pair)"""
    requested = set(platforms or [])
    return [platform for platform in SUPPORTED_PLATFORMS if platform in requested]


def _publish_fn(publisher: BasePlatformPublisher, job: SocialPostJob, credentials: _CredentialCache,
                job_video: JobVideo) -> Callable[[], Awaitable[PublishResult]]:
    async def publish() -> PublishResult:
        credential = await credentials.get(publisher.credential_platform)
        publisher.ensure_connected(credential)
        return await publisher.publish(PublishRequest(
            user_id=job.user_id,
            job_id=job.id,
            title=job.title or "",
            description=job.description or "",
            credential=credential,
            video=job_video,
        ))
    return publish


async def process_social_post_job(payload: Dict[str, Any], db: Session, clients: SocialClients,
                                  failed_attempt_error: Optional[str] = None) -> Optional[SocialPostJob]:
    """Process one social post job

    Args:
        payload: Task payload {jobId, owner, videoReference, platforms, title, description}
        db: Database session owned by the caller
        clients: Injected HTTP client, credential manager, video source and publishers
        failed_attempt_error: Set when this task retries an attempt that raised; a job that
            attempt left in processing is failed with this error instead of being skipped

    Returns:
        The finished job, or None if the job was missing or already claimed
    """
    job_id = payload.get("jobId")
    owner = payload.get("owner")

    job = get_post_job(job_id, db)
    if job is None:
        social_post_logger.warning(f"Job {job_id} not found, skipping")
        return None
    if job.user_id != owner:
        social_post_logger.warning(f"Job {job_id} does not belong to user {owner}, skipping")
        return None
    if not claim_post_job(job_id, db):
        db.refresh(job)
        if failed_attempt_error and job.status == JobStatus.PROCESSING.value:
            return _record_failed_attempt(job, failed_attempt_error, db)
        social_post_logger.info(f"Job {job_id} already claimed (status {job.status}), skipping redelivery")
        return None
    db.refresh(job)

    social_post_logger.info(
        f"[Job {job_id}] Starting processing for user {owner}: {', '.join(job.platforms or [])}",
        extra={"job_id": job_id, "user_id": owner, "platforms": job.platforms}
    )

    try:
        video = resolve_video(db, owner, job.video_id)
        job_video = JobVideo(clients.video_source, db, owner, video)
        credentials = _CredentialCache(clients.credentials, db, owner)

        for platform in ordered_platforms(job.platforms):
            publisher = clients.publishers[platform]
            social_post_logger.info(f"[Job {job_id}] Posting to {platform}")
            result = await attempt_platform(platform, _publish_fn(publisher, job, credentials, job_video))
            if result["success"]:
                social_post_logger.info(f"[Job {job_id}] {platform} succeeded: {result['platformUrl']}")
            else:
                social_post_logger.warning(f"[Job {job_id}] {platform} failed: {result['error']}")
            save_post_job_result(job, platform, result, db)

        succeeded = any(result.get("success") for result in (job.results or {}).values())
        final_status = JobStatus.COMPLETED if succeeded else JobStatus.FAILED
        update_post_job_status(job, final_status, db)

    except Exception as e:
        social_post_logger.error(f"[Job {job_id}] Processing aborted: {e}", exc_info=True)
        _fail_job(job, str(e) or type(e).__name__, db, cause=e)

    social_post_jobs_finished_counter.labels(status=job.status).inc()
    social_post_logger.info(f"[Job {job_id}] Finished with status {job.status}: {job.results}")
    return job


def _record_failed_attempt(job: SocialPostJob, error: str, db: Session) -> SocialPostJob:
    """Fail a job whose previous attempt died before it could record the failure

    Database errors propagate so the queue retries again.
    """
    social_post_logger.warning(f"[Job {job.id}] Previous attempt failed without recording it: {error}")
    mark_post_job_failed(job, error, db)
    social_post_jobs_finished_counter.labels(status=job.status).inc()
    return job


def _fail_job(job: SocialPostJob, error: str, db: Session, cause: Exception) -> None:
    """Record a processor-fatal error on the job; re-raise when even that is impossible"""
    try:
        db.rollback()
        db.refresh(job)
        if not JobStatus(job.status).is_terminal:
            mark_post_job_failed(job, error, db)
    except Exception as mark_error:
        social_post_logger.error(
            f"[Job {job.id}] Could not record failure: {mark_error}", exc_info=True
        )
        raise cause from mark_error
