"""
Database models for Immochat authentication
"""
from .user import User, UserRole, Session, DEFAULT_ROLE
from .identity import ExternalIdentity
from .otp import OneTimeCode, OTPPurpose
from .audit import AuditLog

__all__ = [
    "User",
    "UserRole",
    "Session",
    "DEFAULT_ROLE",
    "ExternalIdentity",
    "OneTimeCode",
    "OTPPurpose",
    "AuditLog",
]
