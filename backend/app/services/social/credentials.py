"""OAuth credential access with vendor token refresh"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.core.errors import PlatformNotConnected, TokenRefreshError
from app.core.metrics import token_refresh_counter
from app.db.helpers import PlatformCredential, get_credential, update_credential

logger = logging.getLogger(__name__)


class CredentialManager:
    """Loads stored credentials and refreshes them when they are about to expire

    Refreshed tokens are written back encrypted. Two jobs of the same user may
    refresh the same credential concurrently; the last write wins.
    """

    def __init__(self, http: httpx.AsyncClient, settings: Settings = default_settings):
        self.http = http
        self.settings = settings

    async def get_valid_credential(self, db: Session, user_id: str, platform: str) -> PlatformCredential:
        """Return a usable credential for ``platform`` (youtube, meta, onedrive)

        Raises:
            PlatformNotConnected: No stored credential
            TokenRefreshError: The credential expired and could not be refreshed
        """
        credential = get_credential(user_id, platform, db)
        if credential is None:
            raise PlatformNotConnected(platform)

        if credential.expires_within(self.settings.TOKEN_REFRESH_WINDOW_SECONDS):
            logger.info(f"{platform} token for user {user_id} expires at {credential.expires_at}, refreshing")
            credential = await self.refresh(db, credential)
        return credential

    async def refresh(self, db: Session, credential: PlatformCredential) -> PlatformCredential:
        """Refresh a credential against its vendor and persist the new token"""
        platform = credential.platform
        try:
            if platform == "youtube":
                token_data = await self._refresh_google(credential)
            elif platform == "meta":
                token_data = await self._refresh_meta(credential)
            elif platform == "onedrive":
                token_data = await self._refresh_microsoft(credential)
            else:
                raise TokenRefreshError(platform, f"no refresh flow for {platform}")
        except TokenRefreshError as e:
            token_refresh_counter.labels(platform=platform, status="failure").inc()
            logger.warning(
                f"Token refresh failed for user {credential.user_id}, platform {platform}: {e.reason}",
                extra={"user_id": credential.user_id, "platform": platform, "reason": e.reason}
            )
            raise
        except httpx.HTTPError as e:
            token_refresh_counter.labels(platform=platform, status="failure").inc()
            logger.warning(
                f"Token refresh request failed for user {credential.user_id}, platform {platform}: {e}",
                extra={"user_id": credential.user_id, "platform": platform}
            )
            raise TokenRefreshError(platform, str(e))

        access_token = token_data.get("access_token")
        if not access_token:
            token_refresh_counter.labels(platform=platform, status="failure").inc()
            raise TokenRefreshError(platform, "no access_token in refresh response")

        expires_at = _expiry_from(token_data.get("expires_in"))
        update_credential(
            credential.user_id, platform, db,
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            expires_at=expires_at,
        )
        token_refresh_counter.labels(platform=platform, status="success").inc()
        logger.info(f"Refreshed {platform} token for user {credential.user_id}")

        credential.access_token = access_token
        if token_data.get("refresh_token"):
            credential.refresh_token = token_data["refresh_token"]
        credential.expires_at = expires_at
        return credential

    async def _refresh_google(self, credential: PlatformCredential) -> Dict[str, Any]:
        if not credential.refresh_token:
            raise TokenRefreshError("youtube", "no refresh token stored")
        response = await self.http.post(
            self.settings.GOOGLE_TOKEN_URL,
            data={
                "client_id": self.settings.GOOGLE_CLIENT_ID,
                "client_secret": self.settings.GOOGLE_CLIENT_SECRET,
                "refresh_token": credential.refresh_token,
                "grant_type": "refresh_token",
            },
            timeout=30.0,
        )
        return _token_response(response, "youtube")

    async def _refresh_meta(self, credential: PlatformCredential) -> Dict[str, Any]:
        # Meta has no refresh token; a still-valid token is exchanged for a new long-lived one
        response = await self.http.get(
            f"{self.settings.META_GRAPH_API_BASE}/{self.settings.META_GRAPH_API_VERSION}/oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.settings.META_APP_ID,
                "client_secret": self.settings.META_APP_SECRET,
                "fb_exchange_token": credential.access_token,
            },
            timeout=30.0,
        )
        return _token_response(response, "meta")

    async def _refresh_microsoft(self, credential: PlatformCredential) -> Dict[str, Any]:
        if not credential.refresh_token:
            raise TokenRefreshError("onedrive", "no refresh token stored")
        response = await self.http.post(
            self.settings.MICROSOFT_TOKEN_URL,
            data={
                "client_id": self.settings.MICROSOFT_CLIENT_ID,
                "client_secret": self.settings.MICROSOFT_CLIENT_SECRET,
                "refresh_token": credential.refresh_token,
                "grant_type": "refresh_token",
            },
            timeout=30.0,
        )
        return _token_response(response, "onedrive")


def _token_response(response: httpx.Response, platform: str) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        data = {}
    if response.status_code != 200 or "error" in data:
        error = data.get("error_description") or data.get("error") or response.text[:200]
        if isinstance(error, dict):
            error = error.get("message")
        raise TokenRefreshError(platform, f"HTTP {response.status_code}: {error}")
    return data


def _expiry_from(expires_in: Optional[Any]) -> Optional[datetime]:
    if expires_in in (None, ""):
        return None
    try:
        return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
    except (TypeError, ValueError):
        return None
