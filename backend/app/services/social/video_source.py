"""Product videos stored in OneDrive (Microsoft Graph)"""
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.core.errors import PlatformNotConnected, TokenRefreshError, VideoNotFoundError, VideoSourceError
from app.core.logging import onedrive_logger
from app.db.helpers import get_product_video
from app.models.product_video import ProductVideo
from app.services.social.credentials import CredentialManager


DOWNLOAD_FAILED = "Failed to download from OneDrive"


@dataclass
class VideoPayload:
    content: bytes
    content_type: str
    size: int


def resolve_video(db: Session, user_id: str, video_reference: str) -> ProductVideo:
    """Look up a product video owned by the user

    Raises:
        VideoNotFoundError: Unknown reference or owned by someone else
    """
    video = get_product_video(video_reference, user_id, db)
    if video is None:
        raise VideoNotFoundError("Video not found")
    return video


class OneDriveVideoSource:
    """Resolves video references and downloads their bytes from the owner's OneDrive"""

    def __init__(self, http: httpx.AsyncClient, credentials: CredentialManager,
                 settings: Settings = default_settings):
        self.http = http
        self.credentials = credentials
        self.settings = settings

    def resolve(self, db: Session, user_id: str, video_reference: str) -> ProductVideo:
        return resolve_video(db, user_id, video_reference)

    def download_url(self, video: ProductVideo) -> str:
        return f"{self.settings.MICROSOFT_GRAPH_API_BASE}/me/drive/items/{video.onedrive_file_id}/content"

    async def get_access_token(self, db: Session, user_id: str, force_refresh: bool = False) -> str:
        """Get a valid OneDrive access token for the user

        Raises:
            VideoSourceError: OneDrive is not connected or the token cannot be refreshed
        """
        try:
            credential = await self.credentials.get_valid_credential(db, user_id, "onedrive")
            if force_refresh:
                credential = await self.credentials.refresh(db, credential)
        except PlatformNotConnected:
            raise VideoSourceError("OneDrive not connected", platform="onedrive", stage="auth")
        except TokenRefreshError:
            raise VideoSourceError("OneDrive token refresh failed", platform="onedrive", stage="auth")
        return credential.access_token

    async def fetch_video(self, db: Session, user_id: str, video: ProductVideo) -> VideoPayload:
        """Download the video, retrying once with a fresh token on 401"""
        url = self.download_url(video)
        token = await self.get_access_token(db, user_id)
        response = await self._download(url, token)

        if response.status_code == 401:
            onedrive_logger.info(f"OneDrive returned 401 for video {video.id}, refreshing token and retrying")
            token = await self.get_access_token(db, user_id, force_refresh=True)
            response = await self._download(url, token)

        if response.status_code != 200:
            onedrive_logger.error(
                f"❌ OneDrive download FAILED - User {user_id}, Video {video.id} ({video.filename}): "
                f"HTTP {response.status_code}",
                extra={
                    "user_id": user_id,
                    "video_id": video.id,
                    "onedrive_file_id": video.onedrive_file_id,
                    "http_status": response.status_code,
                }
            )
            raise VideoSourceError(DOWNLOAD_FAILED, platform="onedrive", stage="download",
                                   status_code=response.status_code)

        content = response.content
        content_type = video.content_type or response.headers.get("content-type", "video/mp4")
        onedrive_logger.info(f"Downloaded video {video.id} ({len(content)} bytes) from OneDrive")
        return VideoPayload(content=content, content_type=content_type, size=len(content))

    async def _download(self, url: str, token: str) -> httpx.Response:
        try:
            return await self.http.get(
                url,
                headers={"Authorization": f"Bearer {token}"},
                follow_redirects=True,
                timeout=self.settings.VENDOR_HTTP_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            onedrive_logger.error(f"OneDrive download request failed: {e}", exc_info=True)
            raise VideoSourceError(DOWNLOAD_FAILED, platform="onedrive", stage="download")


class JobVideo:
    """The source video of one job, downloaded at most once and shared by the publishers"""

    def __init__(self, source: OneDriveVideoSource, db: Session, user_id: str, video: ProductVideo):
        self.source = source
        self.db = db
        self.user_id = user_id
        self.video = video
        self._payload: Optional[VideoPayload] = None

    @property
    def download_url(self) -> str:
        return self.source.download_url(self.video)

    async def access_token(self) -> str:
        return await self.source.get_access_token(self.db, self.user_id)

    async def payload(self) -> VideoPayload:
        if self._payload is None:
            self._payload = await self.source.fetch_video(self.db, self.user_id, self.video)
        return self._payload
