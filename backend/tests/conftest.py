"""Shared pytest fixtures for test suite"""
import os
import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Union
from unittest.mock import patch
from urllib.parse import parse_qs

import fakeredis
import httpx
import jwt
import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Settings are read at import time, so the test environment must be in place first
TEST_JWT_SECRET = "test-supabase-jwt-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SUPABASE_JWT_SECRET"] = TEST_JWT_SECRET
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["RUN_POST_WORKER"] = "false"
os.environ["TRANSCODER_URL"] = "https://transcoder.test"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""

from app.main import app  # noqa: E402
from app.db import redis as redis_module  # noqa: E402
from app.db.helpers import update_credential  # noqa: E402
from app.db.session import get_db  # noqa: E402
from app.models import Base  # noqa: E402
from app.models.product_video import ProductVideo  # noqa: E402
from app.models.social_post_job import SocialPostJob  # noqa: E402

# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

TEST_USER_ID = "8f14e45f-ceea-467f-a0e6-1b3c1a2d4e5f"
OTHER_USER_ID = "c9f0f895-fb98-4b91-9f1e-7a2b3c4d5e6f"

# Vendor endpoints as configured by default settings
GRAPH = "https://graph.facebook.com/v18.0"
ONEDRIVE_CONTENT = "https://graph.microsoft.com/v1.0/me/drive/items/{}/content"
YOUTUBE_UPLOAD = "https://www.googleapis.com/upload/youtube/v3/videos"
YOUTUBE_SESSION = "https://www.googleapis.com/upload/youtube/v3/videos?upload_id=session-1"
GOOGLE_TOKEN = "https://oauth2.googleapis.com/token"
MICROSOFT_TOKEN = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
TRANSCODER = "https://transcoder.test"

VIDEO_BYTES = b"0123456789"


def make_token(user_id: str, expires_in: int = 3600, secret: str = TEST_JWT_SECRET) -> str:
    """Build a Supabase-style access token"""
    return jwt.encode(
        {
            "sub": user_id,
            "aud": "authenticated",
            "role": "authenticated",
            "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        },
        secret,
        algorithm="HS256",
    )


def auth_headers(user_id: str = TEST_USER_ID) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def form_field(request: httpx.Request, name: str) -> Optional[str]:
    """Read a form field from a urlencoded or multipart request body"""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        match = re.search(
            rb'name="' + name.encode() + rb'"\r\n\r\n(.*?)\r\n', request.content, re.DOTALL
        )
        return match.group(1).decode() if match else None
    values = parse_qs(request.content.decode())
    return values[name][0] if name in values else None


Responder = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeVendors:
    """Routes requests on a MockTransport to canned vendor responses

    A route is a method plus URL without query string. A list of responders is
    consumed in order and its last entry repeats.
    """

    def __init__(self):
        self.routes: Dict[tuple, List[Responder]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, *responders: Responder) -> "FakeVendors":
        self.routes[(method, url)] = list(responders)
        return self

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and str(r.url).split("?")[0] == url
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responders = self.routes.get((request.method, str(request.url).split("?")[0]))
        if not responders:
            return httpx.Response(404, json={"error": {"message": f"unexpected {request.method} {request.url}"}})
        responder = responders.pop(0) if len(responders) > 1 else responders[0]
        return responder(request) if callable(responder) else responder

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis

    Used without a context manager so the lifespan (database init, worker) does not run.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def vendors() -> FakeVendors:
    """Fake vendor APIs with the OneDrive download already routed"""
    fake = FakeVendors()
    fake.add("GET", ONEDRIVE_CONTENT.format("onedrive-file-1"),
             httpx.Response(200, content=VIDEO_BYTES, headers={"content-type": "video/mp4"}))
    return fake


@pytest.fixture(scope="function")
def product_video(db_session: Session) -> ProductVideo:
    video = ProductVideo(
        id="video-1",
        user_id=TEST_USER_ID,
        filename="gadget-demo.mp4",
        onedrive_file_id="onedrive-file-1",
        product_title="Acme Gadget Pro",
        video_title="This gadget changed my kitchen",
        asin="B0TEST1234",
    )
    db_session.add(video)
    db_session.commit()
    return video


def _future(seconds: int = 3600) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


@pytest.fixture(scope="function")
def onedrive_connection(db_session: Session):
    return update_credential(
        TEST_USER_ID, "onedrive", db_session,
        access_token="onedrive-token", refresh_token="onedrive-refresh", expires_at=_future()
    )


@pytest.fixture(scope="function")
def youtube_connection(db_session: Session):
    return update_credential(
        TEST_USER_ID, "youtube", db_session,
        access_token="youtube-token", refresh_token="youtube-refresh", expires_at=_future(),
        account_id="UC-channel", account_name="Gadget Channel"
    )


@pytest.fixture(scope="function")
def meta_connection(db_session: Session):
    """Meta page connection with a linked Instagram business account"""
    return update_credential(
        TEST_USER_ID, "meta", db_session,
        access_token="page-token", account_id="page-1", account_name="Gadget Page",
        instagram_account_id="ig-1"
    )


@pytest.fixture(scope="function")
def pending_job(db_session: Session, product_video: ProductVideo):
    """Factory for pending jobs on the test video"""
    def _create(platforms, user_id: str = TEST_USER_ID, **fields) -> SocialPostJob:
        job = SocialPostJob(
            user_id=user_id,
            video_id=product_video.id,
            platforms=list(platforms),
            title=fields.pop("title", "Gadget demo"),
            description=fields.pop("description", "Check out this product: https://amazon.com/dp/B0TEST1234"),
            results=fields.pop("results", {}),
            **fields
        )
        db_session.add(job)
        db_session.commit()
        db_session.refresh(job)
        return job
    return _create


def job_payload(job: SocialPostJob) -> Dict[str, object]:
    return {
        "jobId": job.id,
        "owner": job.user_id,
        "videoReference": job.video_id,
        "platforms": list(job.platforms),
        "title": job.title,
        "description": job.description,
    }


# Canned vendor flows shared by processor and platform tests

def route_youtube_success(fake: FakeVendors, video_id: str = "yt-video-1") -> FakeVendors:
    fake.add("POST", YOUTUBE_UPLOAD, httpx.Response(200, headers={"Location": YOUTUBE_SESSION}))
    fake.add("PUT", YOUTUBE_UPLOAD, httpx.Response(200, json={"id": video_id}))
    return fake


def route_facebook_success(fake: FakeVendors, page_id: str = "page-1", video_id: str = "fb-video-1",
                           windows=((0, 10), (10, 10))) -> FakeVendors:
    """Facebook session whose transfer windows come from ``windows`` (start, then one per transfer)"""
    remaining = list(windows)

    def respond(request: httpx.Request) -> httpx.Response:
        phase = form_field(request, "upload_phase")
        if phase == "start":
            start, end = remaining.pop(0)
            return httpx.Response(200, json={
                "upload_session_id": "session-1", "video_id": video_id,
                "start_offset": str(start), "end_offset": str(end),
            })
        if phase == "transfer":
            start, end = remaining.pop(0)
            return httpx.Response(200, json={"start_offset": str(start), "end_offset": str(end)})
        return httpx.Response(200, json={"success": True})

    fake.add("POST", f"{GRAPH}/{page_id}/videos", respond)
    return fake


def route_instagram_success(fake: FakeVendors, ig_id: str = "ig-1", media_id: str = "ig-media-1",
                            statuses=("IN_PROGRESS", "FINISHED")) -> FakeVendors:
    fake.add("POST", f"{TRANSCODER}/transcode",
             httpx.Response(200, json={"transcodedUrl": "https://cdn.test/reel.mp4", "assetHandle": "asset-1"}))
    fake.add("DELETE", f"{TRANSCODER}/transcode/asset-1", httpx.Response(204))
    fake.add("POST", f"{GRAPH}/{ig_id}/media", httpx.Response(200, json={"id": "container-1"}))
    fake.add("GET", f"{GRAPH}/container-1",
             *[httpx.Response(200, json={"status_code": status, "id": "container-1"}) for status in statuses])
    fake.add("POST", f"{GRAPH}/{ig_id}/media_publish", httpx.Response(200, json={"id": media_id}))
    fake.add("GET", f"{GRAPH}/{media_id}",
             httpx.Response(200, json={"permalink": f"https://www.instagram.com/reel/{media_id}/"}))
    return fake
