"""Abstract base class for platform publishers"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.core.config import Settings, settings as default_settings
from app.core.errors import PlatformNotConnected, PublishError
from app.db.helpers import PlatformCredential
from app.services.social.video_source import JobVideo


@dataclass
class PublishRequest:
    """Everything a publisher needs to post one video"""
    user_id: str
    job_id: str
    title: str
    description: str
    credential: PlatformCredential
    video: JobVideo


@dataclass
class PublishResult:
    post_id: str
    url: str

    def to_result(self) -> Dict[str, Any]:
        return {"success": True, "platformPostId": self.post_id, "platformUrl": self.url}


class BasePlatformPublisher(ABC):
    """Abstract base class defining the interface contract for platform publishers.

    Publishers get the shared HTTP client and settings injected, and raise
    ``PublishError`` with a message fit for the job owner when the vendor
    rejects a call.
    """

    name: str = ""
    credential_platform: str = ""

    def __init__(self, http: httpx.AsyncClient, settings: Settings = default_settings):
        self.http = http
        self.settings = settings
        self.logger = logging.getLogger(self.name)

    @property
    def graph_url(self) -> str:
        return f"{self.settings.META_GRAPH_API_BASE}/{self.settings.META_GRAPH_API_VERSION}"

    @property
    def timeout(self) -> float:
        return self.settings.VENDOR_HTTP_TIMEOUT_SECONDS

    def ensure_connected(self, credential: Optional[PlatformCredential]) -> None:
        """Raise PlatformNotConnected when the credential cannot be used for this platform"""
        if credential is None or not credential.access_token:
            raise PlatformNotConnected(self.name)

    @abstractmethod
    async def publish(self, request: PublishRequest) -> PublishResult:
        """Post the video to the platform.

        Raises:
            PublishError: If any vendor call fails
        """

    async def _request(self, method: str, url: str, stage: str, **kwargs) -> httpx.Response:
        """Send a vendor request, turning transport errors into PublishError"""
        kwargs.setdefault("timeout", self.timeout)
        try:
            return await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            self.logger.error(f"{self.name} {stage} request failed: {e}", exc_info=True)
            raise PublishError(f"{self.name} {stage} request failed: {e}", platform=self.name, stage=stage)

    def _fail(self, response: httpx.Response, stage: str, request: PublishRequest, prefix: str) -> PublishError:
        """Log a vendor error with its context and build the PublishError to raise"""
        error_data = _response_body(response)
        error_context = {
            "user_id": request.user_id,
            "job_id": request.job_id,
            "platform": self.name,
            "http_status": response.status_code,
            "stage": stage,
            "response_data": json.dumps(error_data) if isinstance(error_data, (dict, list)) else str(error_data),
        }
        message = _vendor_message(error_data) or f"HTTP {response.status_code}"
        if isinstance(error_data, dict) and isinstance(error_data.get("error"), dict):
            error_context["error_code"] = error_data["error"].get("code")
            error_context["error_type"] = error_data["error"].get("type")

        self.logger.error(
            f"❌ {self.name} post FAILED - {stage} - User {request.user_id}, Job {request.job_id}: "
            f"HTTP {response.status_code} - {message}",
            extra=error_context
        )
        return PublishError(f"{prefix}: {message}", platform=self.name, stage=stage,
                            status_code=response.status_code)

    def _json_or_fail(self, response: httpx.Response, stage: str, request: PublishRequest,
                      prefix: str) -> Dict[str, Any]:
        """Decode a Graph-style response; non-2xx or an ``error`` object is a failure"""
        data = _response_body(response)
        if not response.is_success or not isinstance(data, dict) or "error" in data:
            raise self._fail(response, stage, request, prefix)
        return data


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _vendor_message(error_data: Any) -> Optional[str]:
    if isinstance(error_data, dict):
        error = error_data.get("error")
        if isinstance(error, dict):
            return error.get("message") or error.get("error_user_msg")
        if isinstance(error, str):
            return error_data.get("error_description") or error
        return None
    if error_data:
        return str(error_data)[:500]
    return None
