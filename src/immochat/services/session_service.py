"""
Session Service
Mints signed session tokens and tracks them server side so they can be revoked
"""
import calendar
import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session as DBSession

from ..auth import create_access_token, verify_token
from ..config import config
from ..db.base import utcnow
from ..db.models.user import User, UserRole, Session
from ..exceptions import AuthenticationFailed

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ("sub", "role", "iat", "exp", "jti")


@dataclass(frozen=True)
class SessionClaims:
    """Validated contents of a session token"""
    user_id: int
    role: UserRole
    issued_at: datetime
    expires_at: datetime
    session_id: int

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def hash_token_id(jti: str) -> str:
    return hashlib.sha256(jti.encode()).hexdigest()


def _epoch(value: datetime) -> int:
    return calendar.timegm(value.utctimetuple())


class SessionService:
    """
    Session minting, validation, refresh and revocation

    Tokens are HS256 JWTs carrying {sub, role, iat, exp, jti}. Each token
    has a row in `sessions` keyed by sha256(jti); deleting the row revokes
    the token even though its signature is still valid.
    """

    def __init__(self, db: DBSession):
        self.db = db

    def mint(self, user: User) -> str:
        """Issue a token for the user's current role and persist its session row"""
        issued_at = utcnow().replace(microsecond=0)
        expires_at = issued_at + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
        jti = str(uuid.uuid4())
        role = UserRole(user.role)

        token = create_access_token({
            "sub": str(user.id),
            "role": role.value,
            "iat": _epoch(issued_at),
            "exp": _epoch(expires_at),
            "jti": jti,
        })

        self.db.add(Session(
            user_id=user.id,
            token_hash=hash_token_id(jti),
            role=role,
            issued_at=issued_at,
            expires_at=expires_at,
        ))
        self.db.commit()

        logger.info(f"Session minted for user {user.id} (role {role.value})")
        return token

    def validate(self, token: str) -> Optional[SessionClaims]:
        """
        Returns:
            SessionClaims, or None if the token is forged, expired,
            malformed or revoked
        """
        payload = verify_token(token)
        if payload is None:
            return None

        if any(payload.get(claim) in (None, "") for claim in REQUIRED_CLAIMS):
            logger.warning("Session token rejected: missing claims")
            return None

        try:
            user_id = int(payload["sub"])
            role = UserRole(payload["role"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), timezone.utc).replace(tzinfo=None)
        except (ValueError, TypeError):
            logger.warning("Session token rejected: malformed claims")
            return None

        session = self.db.query(Session).filter(
            Session.token_hash == hash_token_id(str(payload["jti"]))
        ).first()

        if session is None:
            logger.info(f"Session token rejected: revoked session for user {user_id}")
            return None

        if session.user_id != user_id or session.role != role or session.expires_at <= utcnow():
            logger.warning(f"Session token rejected: session row does not match token for user {user_id}")
            return None

        return SessionClaims(
            user_id=user_id,
            role=role,
            issued_at=issued_at,
            expires_at=session.expires_at,
            session_id=session.id,
        )

    def refresh(self, claims: SessionClaims) -> str:
        """Replace the session with one whose role is re-read from the user record"""
        user = self.db.get(User, claims.user_id)
        if user is None:
            raise AuthenticationFailed("Invalid or expired session", reason="user deleted before refresh")

        self.db.query(Session).filter(Session.id == claims.session_id).delete(synchronize_session=False)
        token = self.mint(user)

        if user.role != claims.role:
            logger.info(f"Session refresh for user {user.id} picked up role change {claims.role.value} -> {user.role.value}")
        return token

    def revoke(self, claims: SessionClaims) -> None:
        """Sign out a single session"""
        self.db.query(Session).filter(Session.id == claims.session_id).delete(synchronize_session=False)
        self.db.commit()
        logger.info(f"Session {claims.session_id} revoked for user {claims.user_id}")

    def revoke_all(self, user_id: int, except_session_id: Optional[int] = None) -> int:
        """
        Delete every session of a user, optionally keeping one

        Does not commit; the caller commits together with the credential
        change that triggered the revocation.
        """
        query = self.db.query(Session).filter(Session.user_id == user_id)
        if except_session_id is not None:
            query = query.filter(Session.id != except_session_id)
        revoked = query.delete(synchronize_session=False)
        logger.info(f"Revoked {revoked} session(s) for user {user_id}")
        return revoked

    def cleanup_expired(self) -> int:
        """Delete sessions past their expiry"""
        deleted = self.db.query(Session).filter(
            Session.expires_at <= utcnow()
        ).delete(synchronize_session=False)
        self.db.commit()
        return deleted
