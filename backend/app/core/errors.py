"""Domain exceptions shared by services, workers and API routes"""
from typing import Optional


class VideoNotFoundError(Exception):
    """The requested video reference does not exist for this user"""


class JobNotFoundError(Exception):
    """No social post job with the given id"""


class JobAccessDenied(Exception):
    """The caller does not own the job"""


class InvalidStatusTransition(Exception):
    """A job status change that would move backwards or skip a state"""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid job status transition: {current} -> {target}")


class PlatformNotConnected(Exception):
    """No stored credential for the platform"""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"{platform} not connected")


class TokenRefreshError(Exception):
    """The vendor token endpoint refused or failed to refresh a credential"""

    def __init__(self, platform: str, reason: Optional[str] = None):
        self.platform = platform
        self.reason = reason
        super().__init__("token refresh failed")


class PublishError(Exception):
    """A vendor publishing call failed; the message is shown to the job owner"""

    def __init__(self, message: str, platform: Optional[str] = None, stage: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.platform = platform
        self.stage = stage
        self.status_code = status_code
        super().__init__(message)


class VideoSourceError(PublishError):
    """The source video could not be fetched from cloud storage"""


class TranscodeError(PublishError):
    """The transcoding service failed"""
