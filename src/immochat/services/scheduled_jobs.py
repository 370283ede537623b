"""
Background cleanup of dead one-time codes and expired sessions

Runs inside the API process on an APScheduler BackgroundScheduler when
ENABLE_SCHEDULER is on.
"""
import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    global _scheduler

    if _scheduler is None:
        # A late or overlapping run collapses into one
        _scheduler = BackgroundScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 600}
        )

    return _scheduler


def _cleanup(label: str, purge: Callable, session_factory=None) -> int:
    """Run one purge in its own session; failures propagate to the scheduler"""
    from ..db.engine import SessionLocal

    db = (session_factory or SessionLocal)()
    try:
        removed = purge(db)
    except Exception:
        db.rollback()
        logger.error(f"{label} cleanup failed", exc_info=True)
        raise
    finally:
        db.close()

    logger.info(f"{label} cleanup removed {removed} row(s)")
    return removed


def run_otp_cleanup_job(session_factory=None) -> int:
    """Unused codes past expiry, and verified codes whose otpId handle has lapsed"""
    from .otp_service import OTPService
    from .email_provider import DevEmailProvider

    # No mail is sent during cleanup
    return _cleanup(
        "One-time code",
        lambda db: OTPService(db, email_provider=DevEmailProvider()).cleanup_expired(),
        session_factory,
    )


def run_session_cleanup_job(session_factory=None) -> int:
    from .session_service import SessionService

    return _cleanup("Session", lambda db: SessionService(db).cleanup_expired(), session_factory)


JOBS = (
    ("otp_cleanup", "Expired one-time code cleanup", run_otp_cleanup_job, {"minute": "*/15"}),
    ("session_cleanup", "Expired session cleanup", run_session_cleanup_job, {"minute": 5}),
)


def start_scheduler():
    scheduler = get_scheduler()
    if scheduler.running:
        logger.warning("Scheduler already running")
        return

    for job_id, name, func, cron in JOBS:
        scheduler.add_job(func=func, trigger=CronTrigger(**cron), id=job_id, name=name, replace_existing=True)
        logger.info(f"Scheduled {job_id} ({cron})")

    scheduler.start()
    logger.info("Background scheduler started")


def stop_scheduler():
    scheduler = get_scheduler()
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")
