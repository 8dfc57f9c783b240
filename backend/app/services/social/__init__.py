"""Social posting service module - public API exports"""
from app.services.social.credentials import CredentialManager
from app.services.social.processor import SocialClients, attempt_platform, process_social_post_job
from app.services.social.registry import build_publishers
from app.services.social.submission import create_social_post_job, default_metadata, dispatch_post_job
from app.services.social.transcoder import TranscoderClient
from app.services.social.video_source import JobVideo, OneDriveVideoSource, VideoPayload, resolve_video

__all__ = [
    "CredentialManager",
    "SocialClients",
    "attempt_platform",
    "process_social_post_job",
    "build_publishers",
    "create_social_post_job",
    "default_metadata",
    "dispatch_post_job",
    "TranscoderClient",
    "JobVideo",
    "OneDriveVideoSource",
    "VideoPayload",
    "resolve_video",
]
