"""Logging configuration for the application"""
import logging

from app.core.config import settings


def setup_logging():
    """Configure logging for the application"""
    LOG_LEVEL = settings.LOG_LEVEL.upper()
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Silence noisy third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# Named loggers shared across modules (platform publishers log under their platform name)
social_post_logger = logging.getLogger("social_post")
worker_logger = logging.getLogger("worker")
onedrive_logger = logging.getLogger("onedrive")
transcoder_logger = logging.getLogger("transcoder")
security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")
