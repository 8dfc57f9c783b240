"""Database helper and model tests"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.errors import InvalidStatusTransition
from app.db.helpers import (
    PlatformCredential, claim_post_job, create_post_job, find_stale_jobs, get_credential,
    list_user_post_jobs, mark_post_job_failed, save_post_job_result, update_credential, update_post_job_status
)
from app.models.social_connection import SocialConnection
from app.models.social_post_job import JobStatus
from conftest import OTHER_USER_ID, TEST_USER_ID


@pytest.mark.high
class TestJobStatus:
    """Test the forward-only status lifecycle"""

    @pytest.mark.parametrize("current,target,allowed", [
        (JobStatus.PENDING, JobStatus.PROCESSING, True),
        (JobStatus.PENDING, JobStatus.FAILED, True),
        (JobStatus.PROCESSING, JobStatus.COMPLETED, True),
        (JobStatus.PROCESSING, JobStatus.FAILED, True),
        (JobStatus.PENDING, JobStatus.COMPLETED, False),
        (JobStatus.PROCESSING, JobStatus.PENDING, False),
        (JobStatus.COMPLETED, JobStatus.FAILED, False),
        (JobStatus.FAILED, JobStatus.PROCESSING, False),
    ])
    def test_transitions(self, current, target, allowed):
        """Test which transitions are allowed"""
        assert current.can_transition_to(target) is allowed

    def test_terminal_states(self):
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.PROCESSING.is_terminal

    def test_update_rejects_backward_transition(self, db_session, pending_job):
        """Test that a completed job cannot be moved again"""
        job = pending_job(["youtube"])
        update_post_job_status(job, JobStatus.PROCESSING, db_session)
        update_post_job_status(job, JobStatus.COMPLETED, db_session)

        with pytest.raises(InvalidStatusTransition, match="completed -> failed"):
            update_post_job_status(job, JobStatus.FAILED, db_session, error="late failure")
        db_session.refresh(job)
        assert job.status == "completed"
        assert job.error is None


@pytest.mark.critical
class TestPostJobHelpers:
    """Test job creation, claiming and result persistence"""

    def test_create_post_job(self, db_session, product_video):
        """Test that a new job is pending with an empty results map"""
        job = create_post_job(TEST_USER_ID, product_video.id, ["youtube", "facebook"], "Title", "Desc", db_session)

        assert job.id
        assert job.status == "pending"
        assert job.results == {}
        assert job.platforms == ["youtube", "facebook"]
        assert job.dispatch_attempts == 0

    def test_claim_is_exclusive(self, db_session, pending_job):
        """Test that only the first claim of a pending job succeeds"""
        job = pending_job(["youtube"])

        assert claim_post_job(job.id, db_session) is True
        assert claim_post_job(job.id, db_session) is False
        db_session.refresh(job)
        assert job.status == "processing"

    def test_claim_unknown_job(self, db_session):
        assert claim_post_job("no-such-job", db_session) is False

    def test_save_result_merges(self, db_session, pending_job):
        """Test that each saved result is merged and committed"""
        job = pending_job(["youtube", "facebook"])
        save_post_job_result(job, "youtube", {"success": True, "platformPostId": "v1"}, db_session)
        save_post_job_result(job, "facebook", {"success": False, "error": "boom"}, db_session)

        db_session.expire_all()
        db_session.refresh(job)
        assert job.results == {
            "youtube": {"success": True, "platformPostId": "v1"},
            "facebook": {"success": False, "error": "boom"},
        }

    def test_mark_failed_fills_missing_platforms(self, db_session, pending_job):
        """Test that failing a job records every unattempted platform"""
        job = pending_job(["youtube", "facebook", "instagram"])
        claim_post_job(job.id, db_session)
        db_session.refresh(job)
        save_post_job_result(job, "youtube", {"success": True}, db_session)

        mark_post_job_failed(job, "worker crashed", db_session)

        assert job.status == "failed"
        assert job.error == "worker crashed"
        assert job.results["youtube"] == {"success": True}
        assert job.results["facebook"] == {"success": False, "error": "not attempted: worker crashed"}
        assert job.results["instagram"] == {"success": False, "error": "not attempted: worker crashed"}

    def test_list_user_jobs(self, db_session, pending_job):
        """Test that history is scoped to the user, newest first, with optional status filter"""
        older = pending_job(["youtube"], created_at=datetime.now(timezone.utc) - timedelta(hours=1))
        newer = pending_job(["facebook"])
        pending_job(["instagram"], user_id=OTHER_USER_ID)
        claim_post_job(newer.id, db_session)

        jobs = list_user_post_jobs(TEST_USER_ID, db_session)
        assert [j.id for j in jobs] == [newer.id, older.id]

        pending = list_user_post_jobs(TEST_USER_ID, db_session, status=JobStatus.PENDING)
        assert [j.id for j in pending] == [older.id]

    def test_find_stale_jobs(self, db_session, pending_job):
        """Test that only jobs older than the threshold are returned"""
        stale = pending_job(["youtube"], updated_at=datetime.now(timezone.utc) - timedelta(minutes=30))
        pending_job(["youtube"])

        found = find_stale_jobs(JobStatus.PENDING, 600, db_session)
        assert [j.id for j in found] == [stale.id]
        assert find_stale_jobs(JobStatus.PROCESSING, 600, db_session) == []


@pytest.mark.critical
class TestCredentialStore:
    """Test encrypted credential storage"""

    def test_tokens_encrypted_at_rest(self, db_session):
        """Test that tokens are never stored in plaintext"""
        update_credential(TEST_USER_ID, "youtube", db_session,
                          access_token="secret-access", refresh_token="secret-refresh")

        row = db_session.query(SocialConnection).one()
        assert row.access_token != "secret-access"
        assert row.refresh_token != "secret-refresh"

        credential = get_credential(TEST_USER_ID, "youtube", db_session)
        assert credential.access_token == "secret-access"
        assert credential.refresh_token == "secret-refresh"

    def test_update_keeps_refresh_token_and_merges_extra_data(self, db_session):
        """Test partial updates of an existing credential"""
        update_credential(TEST_USER_ID, "meta", db_session, access_token="a1", refresh_token="r1",
                          extra_data={"pages": 1})
        update_credential(TEST_USER_ID, "meta", db_session, access_token="a2", refresh_token=None,
                          extra_data={"scopes": "pages_manage_posts"})

        credential = get_credential(TEST_USER_ID, "meta", db_session)
        assert credential.access_token == "a2"
        assert credential.refresh_token == "r1"
        assert credential.extra_data == {"pages": 1, "scopes": "pages_manage_posts"}

    def test_new_credential_requires_access_token(self, db_session):
        with pytest.raises(ValueError, match="access_token is required"):
            update_credential(TEST_USER_ID, "youtube", db_session, account_id="UC-1")

    def test_unknown_field_rejected(self, db_session):
        with pytest.raises(ValueError, match="Unknown credential field"):
            update_credential(TEST_USER_ID, "youtube", db_session, access_token="a", colour="blue")

    def test_undecryptable_credential_is_missing(self, db_session):
        """Test that a token encrypted with another key reads as not connected"""
        db_session.add(SocialConnection(user_id=TEST_USER_ID, platform="youtube", access_token="not-a-fernet-token"))
        db_session.commit()

        assert get_credential(TEST_USER_ID, "youtube", db_session) is None

    def test_one_connection_per_user_and_platform(self, db_session):
        """Test the unique (user, platform) index"""
        update_credential(TEST_USER_ID, "youtube", db_session, access_token="a")
        db_session.add(SocialConnection(user_id=TEST_USER_ID, platform="youtube", access_token="b"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    @pytest.mark.parametrize("offset,expected", [
        (timedelta(seconds=-10), True),
        (timedelta(seconds=120), True),
        (timedelta(hours=1), False),
    ])
    def test_expires_within(self, offset, expected):
        """Test the refresh window check"""
        credential = PlatformCredential(
            user_id=TEST_USER_ID, platform="youtube", access_token="a",
            expires_at=datetime.now(timezone.utc) + offset
        )
        assert credential.expires_within(300) is expected

    def test_no_expiry_never_expires(self):
        credential = PlatformCredential(user_id=TEST_USER_ID, platform="meta", access_token="a")
        assert credential.expires_within(300) is False
