"""
Tests for the background cleanup jobs
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from immochat.db.base import utcnow
from immochat.db.models import OneTimeCode, OTPPurpose, Session
from immochat.services import scheduled_jobs
from immochat.services.scheduled_jobs import run_otp_cleanup_job, run_session_cleanup_job
from immochat.services.session_service import SessionService


class TestCleanupJobs:
    def test_otp_cleanup(self, session_factory, db_session):
        db_session.add_all([
            OneTimeCode(email="a@example.com", code="111111", purpose=OTPPurpose.PASSWORD_RESET,
                        expires_at=utcnow() - timedelta(minutes=1)),
            OneTimeCode(email="b@example.com", code="222222", purpose=OTPPurpose.PASSWORD_RESET,
                        expires_at=utcnow() + timedelta(minutes=5)),
        ])
        db_session.commit()

        assert run_otp_cleanup_job(session_factory) == 1
        assert db_session.query(OneTimeCode).count() == 1

    def test_session_cleanup(self, session_factory, db_session, test_user):
        service = SessionService(db_session)
        service.mint(test_user)
        service.mint(test_user)
        expired = db_session.query(Session).order_by(Session.id).first()
        expired.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert run_session_cleanup_job(session_factory) == 1
        assert db_session.query(Session).count() == 1

    def test_job_failure_is_raised(self):
        """The scheduler records the failure; the job never hides it"""
        db = MagicMock()
        db.query.side_effect = RuntimeError("database gone")

        with pytest.raises(RuntimeError):
            run_session_cleanup_job(lambda: db)

        db.rollback.assert_called_once()
        db.close.assert_called_once()


class TestScheduler:
    def test_jobs_registered(self, monkeypatch):
        scheduler = MagicMock()
        scheduler.running = False
        monkeypatch.setattr(scheduled_jobs, "get_scheduler", lambda: scheduler)

        scheduled_jobs.start_scheduler()

        job_ids = {call.kwargs["id"] for call in scheduler.add_job.call_args_list}
        assert job_ids == {"otp_cleanup", "session_cleanup"}
        scheduler.start.assert_called_once()

    def test_stop_when_not_running(self, monkeypatch):
        scheduler = MagicMock()
        scheduler.running = False
        monkeypatch.setattr(scheduled_jobs, "get_scheduler", lambda: scheduler)

        scheduled_jobs.stop_scheduler()
        scheduler.shutdown.assert_not_called()
