"""
Audit log table
"""
from sqlalchemy import Column, Integer, String, JSON, DateTime

from ..base import Base, utcnow


class AuditLog(Base):
    """
    Audit log table - append-only

    Records security-critical actions with PII-protected metadata.
    User ids are plain integers so entries outlive deleted accounts.
    """
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    action_type = Column(String(64), nullable=False, index=True)
    actor_user_id = Column(Integer, nullable=True, index=True)  # User performing action
    target_user_id = Column(Integer, nullable=True)  # User affected (if different)
    ip_hash = Column(String(64), nullable=True)  # SHA256 hash of IP
    user_agent_hash = Column(String(64), nullable=True)  # SHA256 hash of user agent
    details = Column(JSON, nullable=True)  # Additional context (no PII)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
