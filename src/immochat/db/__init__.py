"""
Database module for Immochat
"""
from .engine import engine, SessionLocal, get_db, init_db
from .base import Base, utcnow
from .models import (
    User,
    UserRole,
    Session,
    DEFAULT_ROLE,
    ExternalIdentity,
    OneTimeCode,
    OTPPurpose,
    AuditLog,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
    "Base",
    "utcnow",
    "User",
    "UserRole",
    "Session",
    "DEFAULT_ROLE",
    "ExternalIdentity",
    "OneTimeCode",
    "OTPPurpose",
    "AuditLog",
]
