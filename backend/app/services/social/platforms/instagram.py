"""Instagram reel publishing (transcode, container, bounded poll, publish)"""
import asyncio
from typing import Optional

import httpx

from app.core.config import INSTAGRAM_CAPTION_MAX_LENGTH, Settings, settings as default_settings
from app.core.errors import PlatformNotConnected, PublishError
from app.db.helpers import PlatformCredential
from app.services.social.platforms.base import BasePlatformPublisher, PublishRequest, PublishResult
from app.services.social.transcoder import TranscodedAsset, TranscoderClient


class InstagramPublisher(BasePlatformPublisher):
    name = "instagram"
    credential_platform = "meta"

    def __init__(self, http: httpx.AsyncClient, transcoder: TranscoderClient,
                 settings: Settings = default_settings,
                 poll_interval: Optional[float] = None, max_checks: Optional[int] = None):
        super().__init__(http, settings)
        self.transcoder = transcoder
        self.poll_interval = settings.INSTAGRAM_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.max_checks = settings.INSTAGRAM_POLL_MAX_CHECKS if max_checks is None else max_checks

    def ensure_connected(self, credential: Optional[PlatformCredential]) -> None:
        # A Meta connection without a linked business account cannot post reels
        super().ensure_connected(credential)
        if not credential.instagram_account_id:
            raise PlatformNotConnected(self.name)

    async def publish(self, request: PublishRequest) -> PublishResult:
        ig_user_id = request.credential.instagram_account_id
        access_token = request.credential.access_token
        caption = (request.description or request.title or "")[:INSTAGRAM_CAPTION_MAX_LENGTH]

        asset: Optional[TranscodedAsset] = None
        try:
            self.logger.info(f"Transcoding video for Instagram (job {request.job_id})")
            asset = await self.transcoder.transcode(request.video.download_url, await request.video.access_token())

            response = await self._request(
                "POST", f"{self.graph_url}/{ig_user_id}/media", "create_container",
                params={
                    "access_token": access_token,
                    "video_url": asset.url,
                    "media_type": "REELS",
                    "caption": caption,
                },
            )
            container_id = self._json_or_fail(
                response, "create_container", request, "Instagram container failed"
            ).get("id")
            if not container_id:
                raise PublishError("Instagram container failed: no container id returned", platform=self.name,
                                   stage="create_container")
            self.logger.info(f"Created Instagram container {container_id}")

            await self._wait_until_ready(request, container_id, access_token)

            response = await self._request(
                "POST", f"{self.graph_url}/{ig_user_id}/media_publish", "publish",
                params={"access_token": access_token, "creation_id": container_id},
            )
            media_id = self._json_or_fail(response, "publish", request, "Instagram publish failed").get("id")
            if not media_id:
                raise PublishError("Instagram publish failed: no media id returned", platform=self.name,
                                   stage="publish")

            url = await self._permalink(media_id, access_token)
            self.logger.info(f"Published to Instagram: {media_id}")
            return PublishResult(post_id=str(media_id), url=url)
        finally:
            if asset is not None:
                await self.transcoder.cleanup(asset)

    async def _wait_until_ready(self, request: PublishRequest, container_id: str, access_token: str) -> None:
        """Poll the container until FINISHED; bounded by max_checks"""
        for attempt in range(self.max_checks):
            await asyncio.sleep(self.poll_interval)
            response = await self._request(
                "GET", f"{self.graph_url}/{container_id}", "status",
                params={"access_token": access_token, "fields": "status_code"},
            )
            status_code = self._json_or_fail(response, "status", request, "Instagram status check failed").get(
                "status_code"
            )
            self.logger.info(f"Container status (attempt {attempt + 1}/{self.max_checks}): {status_code}")

            if status_code == "FINISHED":
                return
            if status_code == "ERROR":
                raise PublishError("Instagram processing failed", platform=self.name, stage="status")
            if status_code == "EXPIRED":
                raise PublishError("Instagram container expired", platform=self.name, stage="status")

        raise PublishError("Instagram processing timeout", platform=self.name, stage="status")

    async def _permalink(self, media_id: str, access_token: str) -> str:
        fallback = f"https://instagram.com/reel/{media_id}"
        try:
            response = await self.http.get(
                f"{self.graph_url}/{media_id}",
                params={"access_token": access_token, "fields": "permalink"},
                timeout=30.0,
            )
        except httpx.HTTPError as e:
            self.logger.warning(f"Permalink lookup failed for {media_id}: {e}")
            return fallback
        if not response.is_success:
            return fallback
        try:
            return response.json().get("permalink") or fallback
        except ValueError:
            return fallback
