"""Social posts API routes"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.errors import JobAccessDenied, JobNotFoundError, VideoNotFoundError
from app.core.logging import social_post_logger
from app.core.security import require_auth
from app.db.helpers import get_post_job, list_user_post_jobs
from app.db.session import get_db
from app.models.social_post_job import JobStatus, SocialPostJob
from app.schemas.social_post import (
    SocialPostAccepted, SocialPostJobList, SocialPostJobResponse, SocialPostRequest
)
from app.services.social.submission import create_social_post_job

router = APIRouter(prefix="/api/social", tags=["social"])


def _get_owned_job(job_id: str, user_id: str, db: Session) -> SocialPostJob:
    """Load a job the caller owns

    Raises:
        JobNotFoundError: Unknown job id
        JobAccessDenied: Job belongs to another user
    """
    job = get_post_job(job_id, db)
    if job is None:
        raise JobNotFoundError(job_id)
    if job.user_id != user_id:
        raise JobAccessDenied(job_id)
    return job


def _job_response(job_id: str, user_id: str, db: Session) -> SocialPostJobResponse:
    try:
        job = _get_owned_job(job_id, user_id, db)
    except JobNotFoundError:
        raise HTTPException(404, "Job not found")
    except JobAccessDenied:
        social_post_logger.warning(f"User {user_id} attempted to read job {job_id} owned by another user")
        raise HTTPException(403, "Access denied")
    return SocialPostJobResponse.from_job(job)


@router.post("/posts", status_code=202, response_model=SocialPostAccepted)
def submit_social_post(
    request: SocialPostRequest,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create a social post job and process it in the background"""
    try:
        job = create_social_post_job(user_id, request, db)
    except VideoNotFoundError:
        raise HTTPException(404, "Video not found")

    return SocialPostAccepted(
        jobId=job.id,
        # Always pending here, even if a worker claimed the job during dispatch
        status=JobStatus.PENDING.value,
        message="Post job created and processing in background"
    )


@router.get("/posts", response_model=SocialPostJobList)
def list_social_posts(
    limit: int = Query(20, ge=1, le=100),
    status: Optional[JobStatus] = Query(None),
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Posts history for the current user, newest first"""
    jobs = list_user_post_jobs(user_id, db, limit=limit, status=status)
    return SocialPostJobList(jobs=[SocialPostJobResponse.from_job(job) for job in jobs], count=len(jobs))


@router.get("/posts/{job_id}", response_model=SocialPostJobResponse)
def get_social_post(
    job_id: str,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Get the status and per-platform results of a job"""
    return _job_response(job_id, user_id, db)


@router.get("/post-status", response_model=SocialPostJobResponse)
def get_social_post_status(
    jobId: Optional[str] = Query(None),
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Query-string form of the status endpoint"""
    if not jobId:
        raise HTTPException(400, "jobId is required")
    return _job_response(jobId, user_id, db)
