"""Pydantic schemas for social post jobs"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from app.core.config import SUPPORTED_PLATFORMS
from app.models.social_post_job import SocialPostJob


class SocialPostRequest(BaseModel):
    """Schema for submitting a social post job"""
    video_reference: str = Field(
        ..., min_length=1,
        validation_alias=AliasChoices("videoReference", "videoId")
    )
    platforms: List[str] = Field(..., min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None

    @field_validator("video_reference")
    @classmethod
    def strip_reference(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("videoReference is required")
        return value

    @field_validator("platforms")
    @classmethod
    def check_platforms(cls, value: List[str]) -> List[str]:
        """Lower-case, de-duplicate (keeping request order) and reject unknown names"""
        normalised = []
        for platform in value:
            name = platform.strip().lower()
            if name not in SUPPORTED_PLATFORMS:
                raise ValueError(
                    f"Unsupported platform '{platform}' (expected one of: {', '.join(SUPPORTED_PLATFORMS)})"
                )
            if name not in normalised:
                normalised.append(name)
        return normalised


class SocialPostAccepted(BaseModel):
    """202 response for a newly created job"""
    jobId: str
    status: str
    message: str


class PlatformResult(BaseModel):
    """Outcome of posting to one platform"""
    model_config = ConfigDict(extra="ignore")

    success: bool
    platformPostId: Optional[str] = None
    platformUrl: Optional[str] = None
    error: Optional[str] = None


class SocialPostJobResponse(BaseModel):
    """Full job record as shown to its owner"""
    jobId: str
    status: str
    videoReference: str
    platforms: List[str]
    title: Optional[str] = None
    description: Optional[str] = None
    results: Dict[str, PlatformResult] = {}
    error: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: SocialPostJob) -> "SocialPostJobResponse":
        results: Dict[str, Any] = job.results or {}
        return cls(
            jobId=job.id,
            status=job.status,
            videoReference=job.video_id,
            platforms=list(job.platforms or []),
            title=job.title,
            description=job.description,
            results={platform: PlatformResult(**result) for platform, result in results.items()},
            error=job.error,
            createdAt=job.created_at,
            updatedAt=job.updated_at,
        )


class SocialPostJobList(BaseModel):
    """Posts history for the current user"""
    jobs: List[SocialPostJobResponse]
    count: int
