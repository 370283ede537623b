"""
Authentication utilities: password hashing, JWT handling and request dependencies
"""
import hashlib
import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import config
from .db.engine import get_db
from .db.models.user import User, UserRole
from .exceptions import AuthenticationFailed, PermissionDenied

logger = logging.getLogger(__name__)

# Security configuration
ALGORITHM = "HS256"
AUTH_COOKIE_NAME = "auth_token"

# Bcrypt configuration
# Cost factor (rounds): each increment doubles the time, 12 -> ~300ms.
# Config validation refuses anything below 12 outside dev/test.
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=config.BCRYPT_ROUNDS
)

# auto_error=False so a missing header falls through to the cookie
http_bearer = HTTPBearer(auto_error=False)


def _prepare_password(password: str) -> str:
    """
    Bcrypt only looks at the first 72 bytes, so longer passwords are
    SHA256 pre-hashed (64 hex chars) to keep distinct inputs distinct.
    """
    password_bytes = password.encode('utf-8')
    if len(password_bytes) > 72:
        return hashlib.sha256(password_bytes).hexdigest()
    return password


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against its hash; never raises"""
    if not plain_password or not hashed_password:
        return False

    try:
        return pwd_context.verify(_prepare_password(plain_password), hashed_password)
    except (ValueError, TypeError) as e:
        # Malformed or unrecognised hash string
        logger.warning(f"Password verification failed: {type(e).__name__}")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password, handling bcrypt's 72-byte limit"""
    if not password:
        raise ValueError("Password cannot be empty")

    return pwd_context.hash(_prepare_password(password))


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return pwd_context.hash("immochat-timing-equalizer")


def dummy_verify_password() -> None:
    """
    Burn one bcrypt verification

    Called when there is no hash to check (unknown email, OAuth-only account)
    so that path costs the same as a wrong password.
    """
    pwd_context.verify("not-the-password", _dummy_hash())


def create_access_token(data: dict) -> str:
    """
    Sign a JWT

    Args:
        data: claims; the session service supplies sub, role, iat, exp and jti
    """
    return jwt.encode(data.copy(), config.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Verify and decode a JWT token; None on any failure"""
    try:
        return jwt.decode(token, config.SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Token verification failed: Token has expired")
        return None
    except jwt.JWTClaimsError as e:
        logger.warning(f"Token verification failed: Invalid token claims - {e}")
        return None
    except JWTError as e:
        logger.warning(f"Token verification failed: {type(e).__name__}")
        return None


def get_auth_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> Optional[str]:
    """
    Extract authentication token from Authorization header or cookie.
    Returns None if no token is found.
    """
    if credentials and credentials.credentials:
        return credentials.credentials.strip()

    cookie_token = request.cookies.get(AUTH_COOKIE_NAME)
    if cookie_token:
        logger.debug("Using token from cookie (no Authorization header present)")
        return cookie_token.strip()

    return None


def get_current_session(
    token: Optional[str] = Depends(get_auth_token),
    db: Session = Depends(get_db)
):
    """
    Validate the presented token against the session store

    Returns:
        SessionClaims
    """
    from .services.session_service import SessionService

    if not token:
        raise AuthenticationFailed("Not authenticated", reason="no token presented")

    claims = SessionService(db).validate(token)
    if claims is None:
        raise AuthenticationFailed("Invalid or expired session", reason="token rejected by session store")

    return claims


def get_current_user(
    claims=Depends(get_current_session),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from the session"""
    user = db.get(User, claims.user_id)
    if user is None:
        raise AuthenticationFailed("Invalid or expired session", reason=f"user {claims.user_id} no longer exists")

    return user


def require_admin(
    claims=Depends(get_current_session),
    user: User = Depends(get_current_user)
) -> User:
    """
    Admin gate

    Both the role snapshot in the session and the role on the current user
    record must be ADMIN; a demoted admin loses access immediately.
    """
    if claims.role != UserRole.ADMIN or user.role != UserRole.ADMIN:
        logger.warning(f"User {user.id} denied admin access (session role {claims.role.value}, current role {user.role.value})")
        raise PermissionDenied("Admin access required")

    return user
