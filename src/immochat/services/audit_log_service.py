"""
Audit trail for authentication and account administration

Rows are append-only. Client IPs, user agents and submitted emails are stored
as SHA256 fingerprints so the trail can correlate events without holding PII.
"""
import logging
import hashlib
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from ..db.base import utcnow
from ..db.models.audit import AuditLog

logger = logging.getLogger(__name__)


def fingerprint(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class AuditAction:
    """Values stored in audit_log.action_type"""
    SIGNUP = "SIGNUP"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAIL = "LOGIN_FAIL"
    OAUTH_LOGIN = "OAUTH_LOGIN"
    IDENTITY_LINKED = "IDENTITY_LINKED"
    LOGOUT = "LOGOUT"
    SESSION_REFRESH = "SESSION_REFRESH"

    PASSWORD_SET = "PASSWORD_SET"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PASSWORD_RESET_REQUEST = "PASSWORD_RESET_REQUEST"
    PASSWORD_RESET_CONFIRM = "PASSWORD_RESET_CONFIRM"
    OTP_VERIFY_FAIL = "OTP_VERIFY_FAIL"
    EMAIL_VERIFICATION_SUCCESS = "EMAIL_VERIFICATION_SUCCESS"

    ADMIN_USER_CREATE = "ADMIN_USER_CREATE"
    ADMIN_USER_UPDATE = "ADMIN_USER_UPDATE"
    ADMIN_ROLE_CHANGE = "ADMIN_ROLE_CHANGE"
    ADMIN_USER_DELETE = "ADMIN_USER_DELETE"


class AuditLogService:
    """Writes audit entries through the request's database session"""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action_type: str,
        actor_user_id: Optional[int] = None,
        target_user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Append one entry and commit it.

        The entry gets its own commit, so callers record an event only once the
        change it describes has been committed. `details` must not carry PII.
        """
        entry = AuditLog(
            action_type=action_type,
            actor_user_id=actor_user_id,
            target_user_id=target_user_id,
            ip_hash=fingerprint(ip_address),
            user_agent_hash=fingerprint(user_agent),
            details=details or {},
            created_at=utcnow(),
        )
        self.db.add(entry)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(f"Could not write audit entry {action_type}", exc_info=True)
            raise

        logger.debug(f"Audit {action_type}: actor={actor_user_id} target={target_user_id}")
        return entry

    def log_login_success(self, user_id: int, ip_address: Optional[str] = None,
                          user_agent: Optional[str] = None, login_method: str = "password"):
        action = AuditAction.LOGIN_SUCCESS if login_method == "password" else AuditAction.OAUTH_LOGIN
        self.log(action, actor_user_id=user_id, ip_address=ip_address, user_agent=user_agent,
                 details={"login_method": login_method})

    def log_login_fail(self, email: str, reason: str, ip_address: Optional[str] = None,
                       user_agent: Optional[str] = None):
        """Failed sign-in; the submitted email is kept only as a fingerprint"""
        self.log(AuditAction.LOGIN_FAIL, ip_address=ip_address, user_agent=user_agent,
                 details={"email_hash": fingerprint(email), "reason": reason})

    def log_otp_event(self, action_type: str, email: str, purpose: str, reason: Optional[str] = None):
        details = {"email_hash": fingerprint(email), "purpose": purpose}
        if reason:
            details["reason"] = reason
        self.log(action_type, details=details)

    def log_admin_action(self, action_type: str, admin_id: int, target_user_id: int,
                         details: Optional[Dict[str, Any]] = None):
        self.log(action_type, actor_user_id=admin_id, target_user_id=target_user_id, details=details)
