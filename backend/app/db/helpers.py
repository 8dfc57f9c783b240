"""Database helper functions for social post jobs, credentials and product videos"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from app.core.errors import InvalidStatusTransition
from app.models.product_video import ProductVideo
from app.models.social_connection import SocialConnection
from app.models.social_post_job import JobStatus, SocialPostJob
from app.utils.encryption import decrypt, encrypt

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# SOCIAL POST JOBS
# ============================================================================

def create_post_job(user_id: str, video_id: str, platforms: List[str],
                    title: Optional[str], description: Optional[str], db: Session) -> SocialPostJob:
    """Insert a pending job with an empty results map"""
    job = SocialPostJob(
        user_id=user_id,
        video_id=video_id,
        platforms=list(platforms),
        title=title,
        description=description,
        status=JobStatus.PENDING.value,
        results={},
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_post_job(job_id: str, db: Session) -> Optional[SocialPostJob]:
    return db.query(SocialPostJob).filter(SocialPostJob.id == job_id).first()


def list_user_post_jobs(user_id: str, db: Session, limit: int = 20,
                        status: Optional[JobStatus] = None) -> List[SocialPostJob]:
    """Jobs owned by a user, newest first"""
    query = db.query(SocialPostJob).filter(SocialPostJob.user_id == user_id)
    if status is not None:
        query = query.filter(SocialPostJob.status == status.value)
    return query.order_by(SocialPostJob.created_at.desc()).limit(limit).all()


def claim_post_job(job_id: str, db: Session) -> bool:
    """Move a job from pending to processing if nobody else has

    Returns:
        True if this caller claimed the job, False if it was missing or already claimed
    """
    updated = db.query(SocialPostJob).filter(
        SocialPostJob.id == job_id,
        SocialPostJob.status == JobStatus.PENDING.value
    ).update(
        {SocialPostJob.status: JobStatus.PROCESSING.value, SocialPostJob.updated_at: _utcnow()},
        synchronize_session=False
    )
    db.commit()
    return updated == 1


def update_post_job_status(job: SocialPostJob, target: JobStatus, db: Session,
                           error: Optional[str] = None) -> SocialPostJob:
    """Apply a status transition

    Raises:
        InvalidStatusTransition: If the transition would move backwards or skip a state
    """
    current = JobStatus(job.status)
    if not current.can_transition_to(target):
        raise InvalidStatusTransition(current.value, target.value)

    job.status = target.value
    if error is not None:
        job.error = error
    job.updated_at = _utcnow()
    db.commit()
    db.refresh(job)
    return job


def save_post_job_result(job: SocialPostJob, platform: str, result: Dict[str, Any], db: Session) -> None:
    """Merge one platform result into the job and commit so pollers see it immediately"""
    results = dict(job.results or {})
    results[platform] = result
    job.results = results
    # SQLAlchemy doesn't detect in-place changes to JSON fields
    flag_modified(job, "results")
    job.updated_at = _utcnow()
    db.commit()


def fill_missing_results(job: SocialPostJob, reason: str) -> bool:
    """Record every requested platform without a result as not attempted

    Returns:
        True if any result was added
    """
    results = dict(job.results or {})
    added = False
    for platform in job.platforms or []:
        if platform not in results:
            results[platform] = {"success": False, "error": f"not attempted: {reason}"}
            added = True
    if added:
        job.results = results
        flag_modified(job, "results")
    return added


def mark_post_job_failed(job: SocialPostJob, error: str, db: Session) -> SocialPostJob:
    """Fail a non-terminal job, keeping the one-result-per-platform invariant"""
    fill_missing_results(job, error)
    return update_post_job_status(job, JobStatus.FAILED, db, error=error)


def find_stale_jobs(status: JobStatus, older_than_seconds: int, db: Session,
                    limit: int = 100) -> List[SocialPostJob]:
    """Jobs stuck in a status whose updated_at is older than the threshold"""
    cutoff = _utcnow() - timedelta(seconds=older_than_seconds)
    return db.query(SocialPostJob).filter(
        SocialPostJob.status == status.value,
        SocialPostJob.updated_at < cutoff
    ).order_by(SocialPostJob.updated_at.asc()).limit(limit).all()


def increment_dispatch_attempts(job: SocialPostJob, db: Session) -> None:
    job.dispatch_attempts = (job.dispatch_attempts or 0) + 1
    job.updated_at = _utcnow()
    db.commit()


# ============================================================================
# CREDENTIAL STORE
# ============================================================================

@dataclass
class PlatformCredential:
    """Decrypted view of a stored connection"""
    user_id: str
    platform: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    instagram_account_id: Optional[str] = None
    extra_data: Dict[str, Any] = field(default_factory=dict)

    def expires_within(self, seconds: int) -> bool:
        """True when the token is expired or will expire within ``seconds``

        Credentials without an expiry (long-lived page tokens) never need refreshing.
        """
        expires_at = _as_utc(self.expires_at)
        if expires_at is None:
            return False
        return expires_at <= _utcnow() + timedelta(seconds=seconds)


def _get_connection(user_id: str, platform: str, db: Session) -> Optional[SocialConnection]:
    return db.query(SocialConnection).filter(
        SocialConnection.user_id == user_id,
        SocialConnection.platform == platform
    ).first()


def get_credential(user_id: str, platform: str, db: Session) -> Optional[PlatformCredential]:
    """Get the decrypted credential for a platform (youtube, meta, onedrive)"""
    connection = _get_connection(user_id, platform, db)
    if not connection:
        return None

    try:
        access_token = decrypt(connection.access_token)
        refresh_token = decrypt(connection.refresh_token) if connection.refresh_token else None
    except ValueError as e:
        logger.warning(f"Failed to decrypt credential for user {user_id}, platform {platform}: {e}")
        return None

    if not access_token:
        return None

    return PlatformCredential(
        user_id=user_id,
        platform=platform,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=_as_utc(connection.expires_at),
        account_id=connection.account_id,
        account_name=connection.account_name,
        instagram_account_id=connection.instagram_account_id,
        extra_data=connection.extra_data or {},
    )


def update_credential(user_id: str, platform: str, db: Session, **patch) -> SocialConnection:
    """Create or update a stored credential (token fields are encrypted)

    Args:
        user_id: Owner
        platform: youtube, meta or onedrive
        db: Database session
        **patch: Columns to set. ``refresh_token=None`` keeps the stored refresh token.
    """
    connection = _get_connection(user_id, platform, db)
    if connection is None:
        if not patch.get("access_token"):
            raise ValueError("access_token is required for a new connection")
        connection = SocialConnection(user_id=user_id, platform=platform, extra_data={})
        db.add(connection)

    for key, value in patch.items():
        if key == "access_token":
            connection.access_token = encrypt(value)
        elif key == "refresh_token":
            # Only replace the refresh token when the vendor issued a new one
            if value:
                connection.refresh_token = encrypt(value)
        elif key == "extra_data":
            connection.extra_data = {**(connection.extra_data or {}), **(value or {})}
            flag_modified(connection, "extra_data")
        elif hasattr(SocialConnection, key):
            setattr(connection, key, value)
        else:
            raise ValueError(f"Unknown credential field: {key}")

    connection.updated_at = _utcnow()
    db.commit()
    db.refresh(connection)
    return connection


# ============================================================================
# PRODUCT VIDEOS
# ============================================================================

def get_product_video(video_id: str, user_id: str, db: Session) -> Optional[ProductVideo]:
    """Get a product video owned by the user"""
    return db.query(ProductVideo).filter(
        ProductVideo.id == video_id,
        ProductVideo.user_id == user_id
    ).first()
