"""YouTube resumable upload"""
import httpx

from app.core.config import YOUTUBE_CATEGORY_ID, YOUTUBE_DESCRIPTION_MAX_LENGTH, YOUTUBE_TITLE_MAX_LENGTH
from app.core.errors import PublishError
from app.services.social.platforms.base import BasePlatformPublisher, PublishRequest, PublishResult
from app.services.social.video_source import VideoPayload


class YouTubePublisher(BasePlatformPublisher):
    name = "youtube"
    credential_platform = "youtube"

    async def publish(self, request: PublishRequest) -> PublishResult:
        payload = await request.video.payload()
        title = (request.title or "")[:YOUTUBE_TITLE_MAX_LENGTH]
        description = (request.description or "")[:YOUTUBE_DESCRIPTION_MAX_LENGTH]

        self.logger.info(f"Starting YouTube upload for job {request.job_id} ({payload.size} bytes)")
        session_url = await self._init_upload(request, payload, title, description)
        response = await self._transfer(request, session_url, payload)

        data = self._json_or_fail(response, "upload", request, "YouTube upload failed")
        video_id = data.get("id")
        if not video_id:
            raise PublishError("YouTube upload failed: no video id in response", platform=self.name, stage="upload")

        self.logger.info(f"Published to YouTube: {video_id}")
        return PublishResult(post_id=video_id, url=f"https://youtube.com/watch?v={video_id}")

    async def _init_upload(self, request: PublishRequest, payload: VideoPayload,
                           title: str, description: str) -> str:
        response = await self._request(
            "POST",
            self.settings.YOUTUBE_UPLOAD_URL,
            "init",
            params={"uploadType": "resumable", "part": "snippet,status"},
            headers={
                "Authorization": f"Bearer {request.credential.access_token}",
                "X-Upload-Content-Length": str(payload.size),
                "X-Upload-Content-Type": payload.content_type,
            },
            json={
                "snippet": {
                    "title": title,
                    "description": description,
                    "categoryId": YOUTUBE_CATEGORY_ID,
                },
                "status": {
                    "privacyStatus": self.settings.YOUTUBE_PRIVACY_STATUS,
                    "selfDeclaredMadeForKids": False,
                },
            },
        )
        if not response.is_success:
            raise self._fail(response, "init", request, "YouTube init failed")

        session_url = response.headers.get("Location")
        if not session_url:
            raise PublishError("YouTube init failed: no upload URL returned", platform=self.name, stage="init")
        return session_url

    async def _transfer(self, request: PublishRequest, session_url: str, payload: VideoPayload) -> httpx.Response:
        chunk_size = self.settings.YOUTUBE_UPLOAD_CHUNK_SIZE
        headers = {
            "Authorization": f"Bearer {request.credential.access_token}",
            "Content-Type": payload.content_type,
        }

        if chunk_size <= 0 or chunk_size >= payload.size:
            return await self._request("PUT", session_url, "upload", content=payload.content, headers=headers)

        offset = 0
        while True:
            end = min(offset + chunk_size, payload.size)
            response = await self._request(
                "PUT", session_url, "upload",
                content=payload.content[offset:end],
                headers={**headers, "Content-Range": f"bytes {offset}-{end - 1}/{payload.size}"},
            )
            if response.status_code != 308:
                return response

            # 308 Resume Incomplete: Range holds the bytes the server has so far
            received = response.headers.get("Range")
            next_offset = int(received.rsplit("-", 1)[-1]) + 1 if received else 0
            if next_offset <= offset:
                raise PublishError("YouTube upload made no progress", platform=self.name, stage="upload")
            self.logger.debug(f"YouTube received {next_offset}/{payload.size} bytes")
            offset = next_offset
