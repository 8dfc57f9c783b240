"""Platform publisher registry"""
from typing import Dict, Optional

import httpx

from app.core.config import Settings, settings as default_settings
from app.services.social.platforms.base import BasePlatformPublisher
from app.services.social.platforms.facebook import FacebookPublisher
from app.services.social.platforms.instagram import InstagramPublisher
from app.services.social.platforms.youtube import YouTubePublisher
from app.services.social.transcoder import TranscoderClient


def build_publishers(
    http: httpx.AsyncClient,
    transcoder: TranscoderClient,
    settings: Settings = default_settings,
    poll_interval: Optional[float] = None
) -> Dict[str, BasePlatformPublisher]:
    """Instantiate one publisher per supported platform sharing the HTTP client"""
    return {
        "youtube": YouTubePublisher(http, settings),
        "facebook": FacebookPublisher(http, settings),
        "instagram": InstagramPublisher(http, transcoder, settings, poll_interval=poll_interval),
    }
