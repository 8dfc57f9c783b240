"""Facebook page video upload (chunked start/transfer/finish)"""
from typing import Optional

from app.core.errors import PlatformNotConnected, PublishError
from app.db.helpers import PlatformCredential
from app.services.social.platforms.base import BasePlatformPublisher, PublishRequest, PublishResult


def _offset(value, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PublishError(f"Facebook upload failed: invalid {field} {value!r}", platform="facebook",
                           stage="transfer")


class FacebookPublisher(BasePlatformPublisher):
    name = "facebook"
    credential_platform = "meta"

    def ensure_connected(self, credential: Optional[PlatformCredential]) -> None:
        super().ensure_connected(credential)
        if not credential.account_id:
            raise PlatformNotConnected(self.name)

    async def publish(self, request: PublishRequest) -> PublishResult:
        payload = await request.video.payload()
        page_id = request.credential.account_id
        url = f"{self.graph_url}/{page_id}/videos"
        params = {"access_token": request.credential.access_token}
        total = payload.size

        self.logger.info(f"Starting Facebook upload for job {request.job_id} to page {page_id} ({total} bytes)")

        response = await self._request(
            "POST", url, "start",
            params=params,
            data={"upload_phase": "start", "file_size": str(total)},
        )
        start_data = self._json_or_fail(response, "start", request, "Facebook upload start failed")
        session_id = start_data.get("upload_session_id")
        if not session_id:
            raise PublishError("Facebook upload start failed: no upload session", platform=self.name, stage="start")
        start_offset = _offset(start_data.get("start_offset"), "start_offset")
        end_offset = _offset(start_data.get("end_offset"), "end_offset")

        transfers = 0
        while start_offset < total:
            if end_offset <= start_offset:
                raise PublishError(
                    f"Facebook upload failed: empty transfer window {start_offset}-{end_offset}",
                    platform=self.name, stage="transfer"
                )
            response = await self._request(
                "POST", url, "transfer",
                params=params,
                data={
                    "upload_phase": "transfer",
                    "upload_session_id": session_id,
                    "start_offset": str(start_offset),
                },
                files={
                    "video_file_chunk": ("chunk", payload.content[start_offset:end_offset], "application/octet-stream")
                },
            )
            transfer_data = self._json_or_fail(response, "transfer", request, "Facebook upload transfer failed")
            transfers += 1

            next_start = _offset(transfer_data.get("start_offset"), "start_offset")
            if next_start <= start_offset:
                raise PublishError(
                    f"Facebook upload failed: offset did not advance past {start_offset}",
                    platform=self.name, stage="transfer"
                )
            start_offset = next_start
            end_offset = _offset(transfer_data.get("end_offset"), "end_offset")

        self.logger.info(f"Facebook transfer complete for job {request.job_id} after {transfers} chunks")

        response = await self._request(
            "POST", url, "finish",
            params=params,
            data={
                "upload_phase": "finish",
                "upload_session_id": session_id,
                "title": request.title or "",
                "description": request.description or "",
            },
        )
        finish_data = self._json_or_fail(response, "finish", request, "Facebook upload finish failed")
        if finish_data.get("success") is False:
            raise PublishError("Facebook upload finish failed", platform=self.name, stage="finish")

        video_id = finish_data.get("id") or finish_data.get("video_id") or start_data.get("video_id")
        if not video_id:
            raise PublishError("Facebook upload finish failed: no video id returned", platform=self.name,
                               stage="finish")

        self.logger.info(f"Published to Facebook: {video_id}")
        return PublishResult(post_id=str(video_id), url=f"https://facebook.com/{video_id}")
