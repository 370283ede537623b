"""
User and Session models
"""
import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship

from ..base import Base, utcnow


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    CUSTOMER = "CUSTOMER"


DEFAULT_ROLE = UserRole.CUSTOMER


class User(Base):
    """User account model"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)  # NULL until a password is set (OAuth-only accounts)
    role = Column(SQLEnum(UserRole, name="user_role"), nullable=False, default=DEFAULT_ROLE)

    # Profile
    phone = Column(String(50), nullable=True)
    company = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)
    image = Column(String(1024), nullable=True)

    email_verified = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    sessions = relationship("Session", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    identities = relationship("ExternalIdentity", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    @property
    def linked_providers(self) -> list:
        return sorted({identity.provider for identity in self.identities})


class Session(Base):
    """Server-side record of a minted session token"""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, index=True, nullable=False)  # sha256 of the token's jti
    role = Column(SQLEnum(UserRole, name="user_role"), nullable=False)  # snapshot at mint time
    issued_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    # Relationships
    user = relationship("User", back_populates="sessions")
