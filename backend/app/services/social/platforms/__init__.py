"""Platform publishers"""
from app.services.social.platforms.base import BasePlatformPublisher, PublishRequest, PublishResult
from app.services.social.platforms.facebook import FacebookPublisher
from app.services.social.platforms.instagram import InstagramPublisher
from app.services.social.platforms.youtube import YouTubePublisher

__all__ = [
    "BasePlatformPublisher",
    "PublishRequest",
    "PublishResult",
    "YouTubePublisher",
    "FacebookPublisher",
    "InstagramPublisher",
]
