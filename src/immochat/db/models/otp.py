"""
One-time codes scoped by (email, purpose)
"""
import enum
import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index, Enum as SQLEnum

from ..base import Base, utcnow


class OTPPurpose(str, enum.Enum):
    PASSWORD_RESET = "PASSWORD_RESET"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"


def _new_otp_id() -> str:
    return str(uuid.uuid4())


class OneTimeCode(Base):
    """
    Short-lived numeric code

    The primary key doubles as the opaque verification handle returned by
    a successful verify, so it is a random uuid rather than a sequence.
    """
    __tablename__ = "one_time_codes"
    __table_args__ = (
        Index("ix_one_time_codes_email_purpose", "email", "purpose"),
    )

    id = Column(String(36), primary_key=True, default=_new_otp_id)
    email = Column(String(255), nullable=False)
    code = Column(String(6), nullable=False)
    purpose = Column(SQLEnum(OTPPurpose, name="otp_purpose"), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    used = Column(Boolean, default=False, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    redeemed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
