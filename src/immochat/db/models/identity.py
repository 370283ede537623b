"""
External OAuth identity linked to a local user
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from ..base import Base, utcnow


class ExternalIdentity(Base):
    """One row per (provider, provider account); never duplicated"""
    __tablename__ = "external_identities"
    __table_args__ = (
        UniqueConstraint("provider", "provider_account_id", name="uq_external_identity_provider_account"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(50), nullable=False)
    provider_account_id = Column(String(255), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Opaque provider tokens, refreshed on each sign-in
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    id_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="identities")
