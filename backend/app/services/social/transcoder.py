"""Client for the external transcoding service used for Instagram reels"""
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import Settings, settings as default_settings
from app.core.errors import TranscodeError
from app.core.logging import transcoder_logger


@dataclass
class TranscodedAsset:
    url: str
    handle: Optional[str] = None


class TranscoderClient:
    def __init__(self, http: httpx.AsyncClient, settings: Settings = default_settings):
        self.http = http
        self.settings = settings

    @property
    def base_url(self) -> str:
        return self.settings.TRANSCODER_URL.rstrip("/")

    async def transcode(self, source_url: str, access_token: str) -> TranscodedAsset:
        """Ask the transcoder to fetch ``source_url`` and produce an Instagram-compatible file

        Transcoding large files can take several minutes.
        """
        if not self.base_url:
            raise TranscodeError("TRANSCODER_URL not configured", platform="instagram", stage="transcode")

        try:
            response = await self.http.post(
                f"{self.base_url}/transcode",
                json={"sourceUrl": source_url},
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.settings.TRANSCODER_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            transcoder_logger.error(f"Transcoder request failed: {e}", exc_info=True)
            raise TranscodeError(f"Transcoding failed: {e}", platform="instagram", stage="transcode")

        if response.status_code >= 300:
            transcoder_logger.error(f"Transcoder returned HTTP {response.status_code}: {response.text[:500]}")
            raise TranscodeError(f"Transcoding failed: {response.text[:500]}", platform="instagram",
                                 stage="transcode", status_code=response.status_code)

        data = response.json()
        transcoded_url = data.get("transcodedUrl")
        if not transcoded_url:
            raise TranscodeError("Transcoding failed: no transcodedUrl in response", platform="instagram",
                                 stage="transcode")

        asset = TranscodedAsset(url=transcoded_url, handle=data.get("assetHandle") or data.get("fileName"))
        transcoder_logger.info(f"Transcoded asset ready: {asset.handle}")
        return asset

    async def cleanup(self, asset: TranscodedAsset) -> None:
        """Delete a transcoded asset; failures are logged, never raised"""
        if not asset.handle or not self.base_url:
            return
        try:
            response = await self.http.delete(
                f"{self.base_url}/transcode/{asset.handle}",
                timeout=30.0,
            )
            if response.status_code >= 300:
                transcoder_logger.warning(
                    f"Transcoded asset cleanup for {asset.handle} returned HTTP {response.status_code}"
                )
        except httpx.HTTPError as e:
            transcoder_logger.warning(f"Transcoded asset cleanup failed for {asset.handle}: {e}")
