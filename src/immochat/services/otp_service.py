"""
OTP Service
Issues and verifies six-digit one-time codes scoped by (email, purpose)

Lifecycle per (email, purpose):
    NONE -> ACTIVE (issue) -> VERIFIED (verify) -> REDEEMED (redeem)
                           -> EXPIRED (clock)
Issuing again replaces any ACTIVE code. All state lives in the database.
"""
import hmac
import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import config
from ..db.base import utcnow
from ..db.models.otp import OneTimeCode, OTPPurpose
from ..db.models.user import User
from ..exceptions import AuthenticationFailed, DependencyFailure, GENERIC_CODE_MESSAGE
from ..logging_config import mask_email
from .email_provider import EmailProvider, get_email_provider, send_otp_email
from .identity_service import normalize_email

logger = logging.getLogger(__name__)

CODE_DIGITS = 6


class OTPVerificationFailed(AuthenticationFailed):
    """Every subclass reaches the client as the same generic 401"""
    default_reason = "otp verification failed"

    def __init__(self, reason: Optional[str] = None):
        super().__init__(GENERIC_CODE_MESSAGE, reason=reason or self.default_reason)


class OTPNotFound(OTPVerificationFailed):
    default_reason = "no active code for email and purpose"


class OTPExpired(OTPVerificationFailed):
    default_reason = "code expired"


class OTPAlreadyUsed(OTPVerificationFailed):
    default_reason = "code already used"


class OTPMismatch(OTPVerificationFailed):
    default_reason = "wrong code"


class OTPHandleInvalid(OTPVerificationFailed):
    default_reason = "verification handle unknown, expired or already redeemed"


def generate_code() -> str:
    """Uniform 000000-999999 from the OS CSPRNG, leading zeros kept"""
    return f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"


class OTPService:
    def __init__(self, db: Session, email_provider: Optional[EmailProvider] = None):
        self.db = db
        self.email_provider = email_provider or get_email_provider()

    def _active_query(self, email: str, purpose: OTPPurpose):
        return self.db.query(OneTimeCode).filter(
            OneTimeCode.email == email,
            OneTimeCode.purpose == purpose,
            OneTimeCode.used.is_(False),
        )

    def issue(self, email: str, purpose: OTPPurpose) -> OneTimeCode:
        """
        Replace any unused code for (email, purpose) and email the new one

        Raises:
            DependencyFailure: the email could not be dispatched; the new
            code is removed again so no undeliverable code stays active
        """
        email = normalize_email(email)
        now = utcnow()
        code = generate_code()

        record = OneTimeCode(
            email=email,
            code=code,
            purpose=purpose,
            expires_at=now + timedelta(minutes=config.OTP_EXPIRE_MINUTES),
            used=False,
            attempts=0,
            created_at=now,
        )

        try:
            replaced = self._active_query(email, purpose).delete(synchronize_session=False)
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        otp_id = record.id
        logger.info(f"Issued {purpose.value} code for {mask_email(email)} (replaced {replaced})")

        try:
            sent = send_otp_email(self.email_provider, email, code, purpose)
        except Exception as e:
            logger.error(f"Email provider raised while sending {purpose.value} code: {type(e).__name__}: {e}")
            sent = False

        if not sent:
            self.db.query(OneTimeCode).filter(OneTimeCode.id == otp_id).delete(synchronize_session=False)
            self.db.commit()
            raise DependencyFailure(reason=f"could not dispatch {purpose.value} code")

        return record

    def _record_failed_attempt(self, otp_id: str) -> None:
        """Count a wrong code; the code is destroyed once the limit is reached"""
        self.db.query(OneTimeCode).filter(OneTimeCode.id == otp_id).update(
            {OneTimeCode.attempts: OneTimeCode.attempts + 1},
            synchronize_session=False,
        )
        self.db.commit()

        record = self.db.get(OneTimeCode, otp_id)
        if record is not None and record.attempts >= config.OTP_MAX_ATTEMPTS:
            self.db.delete(record)
            self.db.commit()
            logger.warning(f"Code {otp_id[:8]} destroyed after {config.OTP_MAX_ATTEMPTS} failed attempts")

    def verify(self, email: str, code: str, purpose: OTPPurpose) -> str:
        """
        Consume the active code

        Returns:
            the otpId handle, redeemable once within OTP_HANDLE_TTL_MINUTES

        Raises:
            OTPVerificationFailed
        """
        email = normalize_email(email)
        now = utcnow()

        record = self._active_query(email, purpose).order_by(OneTimeCode.created_at.desc()).first()
        if record is None:
            raise OTPNotFound()

        otp_id = record.id
        if record.expires_at <= now:
            raise OTPExpired()

        if not hmac.compare_digest(record.code.encode(), (code or "").encode()):
            self._record_failed_attempt(otp_id)
            raise OTPMismatch()

        # Conditional flip: only one concurrent verifier can win
        updated = self.db.query(OneTimeCode).filter(
            OneTimeCode.id == otp_id,
            OneTimeCode.used.is_(False),
            OneTimeCode.expires_at > now,
        ).update(
            {OneTimeCode.used: True, OneTimeCode.verified_at: now},
            synchronize_session=False,
        )
        if updated != 1:
            self.db.rollback()
            raise OTPAlreadyUsed()

        if purpose == OTPPurpose.EMAIL_VERIFICATION:
            self.db.query(User).filter(User.email == email).update(
                {User.email_verified: True},
                synchronize_session=False,
            )

        self.db.commit()
        logger.info(f"Verified {purpose.value} code for {mask_email(email)}")
        return otp_id

    def redeem(self, otp_id: str, email: str, purpose: OTPPurpose) -> None:
        """
        Spend a verification handle

        Does not commit; the caller commits together with the change the
        handle authorises, so a failed change leaves the handle unspent.

        Raises:
            OTPHandleInvalid
        """
        now = utcnow()
        cutoff = now - timedelta(minutes=config.OTP_HANDLE_TTL_MINUTES)

        updated = self.db.query(OneTimeCode).filter(
            OneTimeCode.id == otp_id,
            OneTimeCode.email == normalize_email(email),
            OneTimeCode.purpose == purpose,
            OneTimeCode.used.is_(True),
            OneTimeCode.redeemed_at.is_(None),
            OneTimeCode.verified_at >= cutoff,
        ).update(
            {OneTimeCode.redeemed_at: now},
            synchronize_session=False,
        )
        if updated != 1:
            raise OTPHandleInvalid()

    def has_active_code(self, email: str, purpose: OTPPurpose) -> bool:
        return self._active_query(normalize_email(email), purpose).filter(
            OneTimeCode.expires_at > utcnow()
        ).count() > 0

    def cleanup_expired(self) -> int:
        """Delete unused codes past expiry and used codes past the handle TTL"""
        now = utcnow()
        handle_cutoff = now - timedelta(minutes=config.OTP_HANDLE_TTL_MINUTES)

        deleted = self.db.query(OneTimeCode).filter(or_(
            and_(OneTimeCode.used.is_(False), OneTimeCode.expires_at <= now),
            and_(OneTimeCode.used.is_(True), OneTimeCode.verified_at < handle_cutoff),
        )).delete(synchronize_session=False)
        self.db.commit()
        return deleted
