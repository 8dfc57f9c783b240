"""SocialPostJob model"""
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text

from app.models.base import Base


class JobStatus(str, Enum):
    """Lifecycle of a social post job: pending -> processing -> completed | failed"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def _utcnow():
    return datetime.now(timezone.utc)


class SocialPostJob(Base):
    """One request to post a video to a set of social platforms"""
    __tablename__ = "social_post_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)  # Supabase auth user id
    video_id = Column(String(64), nullable=False, index=True)  # product_videos.id
    platforms = Column(JSON, nullable=False)  # ["youtube", "facebook", "instagram"]
    title = Column(Text)
    description = Column(Text)
    status = Column(String(20), default=JobStatus.PENDING.value, nullable=False)
    results = Column(JSON, default=dict, nullable=False)  # {platform: {success, platformPostId, platformUrl, error}}
    error = Column(Text)  # Top-level error when the processor itself failed
    dispatch_attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index('ix_social_post_jobs_status_updated_at', 'status', 'updated_at'),
        Index('ix_social_post_jobs_user_created_at', 'user_id', 'created_at'),
    )

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)
