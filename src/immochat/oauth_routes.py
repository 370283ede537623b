"""
OAuth authentication routes (Google)
"""
import asyncio
import logging
from datetime import timedelta
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from fastapi_sso import GoogleSSO
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .config import config
from .db.base import utcnow
from .db.engine import get_db
from .exceptions import ImmochatError, DependencyFailure
from .services.audit_log_service import AuditLogService
from .services.identity_service import IdentityResolver, OAuthProfile, OAuthTokens
from .services.session_service import SessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/oauth", tags=["oauth"])

GOOGLE_PROVIDER = "google"
OAUTH_ERROR_CODE = "oauth_failed"


def build_google_sso() -> Optional[GoogleSSO]:
    """GoogleSSO client, or None when Google sign-in is not configured"""
    if not config.google_oauth_enabled:
        return None

    # redirect_uri must point to the BACKEND callback, not the frontend
    return GoogleSSO(
        client_id=config.GOOGLE_CLIENT_ID,
        client_secret=config.GOOGLE_CLIENT_SECRET,
        redirect_uri=f"{config.API_BASE_URL}/api/auth/oauth/google/callback",
        allow_insecure_http=not config.API_BASE_URL.startswith("https://"),
    )


google_sso = build_google_sso()


def get_google_sso() -> Optional[GoogleSSO]:
    return google_sso


def _frontend_redirect(**params) -> RedirectResponse:
    return RedirectResponse(url=f"{config.FRONTEND_CALLBACK_URL}?{urlencode(params)}")


def _tokens_from(sso: GoogleSSO) -> OAuthTokens:
    """Provider tokens captured by fastapi-sso during the code exchange"""
    access_token = getattr(sso, "access_token", None)
    expires_in = None
    oauth_client = getattr(sso, "oauth_client", None)
    if oauth_client is not None and isinstance(getattr(oauth_client, "token", None), dict):
        expires_in = oauth_client.token.get("expires_in")

    return OAuthTokens(
        access_token=access_token,
        refresh_token=getattr(sso, "refresh_token", None),
        id_token=getattr(sso, "id_token", None),
        expires_at=utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None,
    )


def _complete_sign_in(db: Session, user_info, tokens: OAuthTokens, ip_address: Optional[str], user_agent: Optional[str]) -> str:
    """Upsert and link the Google account, then mint a session from the current user record"""
    profile = OAuthProfile(
        email=user_info.email,
        name=user_info.display_name or user_info.first_name,
        image=user_info.picture,
    )

    user = IdentityResolver(db).resolve_or_create_by_oauth(GOOGLE_PROVIDER, user_info.id, profile, tokens)
    access_token = SessionService(db).mint(user)

    AuditLogService(db).log_login_success(
        user.id,
        ip_address=ip_address,
        user_agent=user_agent,
        login_method=GOOGLE_PROVIDER,
    )
    logger.info(f"User {user.id} signed in with Google")
    return access_token


@router.get("/google/login")
async def google_login(sso: Optional[GoogleSSO] = Depends(get_google_sso)):
    """Initiate Google OAuth login"""
    if sso is None:
        raise DependencyFailure("Google sign-in is not configured", reason="GOOGLE_CLIENT_ID/SECRET not set")

    async with sso:
        return await sso.get_login_redirect()


@router.get("/google/callback")
async def google_callback(
    request: Request,
    db: Session = Depends(get_db),
    sso: Optional[GoogleSSO] = Depends(get_google_sso),
):
    """
    Handle Google OAuth callback

    Always ends in a redirect to the frontend: with a session token on
    success, with a generic error code on any failure.
    """
    if sso is None:
        logger.error("Google callback hit while Google sign-in is not configured")
        return _frontend_redirect(error=OAUTH_ERROR_CODE)

    try:
        async with sso:
            user_info = await asyncio.wait_for(
                sso.verify_and_process(request),
                timeout=config.OAUTH_TIMEOUT_SECONDS,
            )
            tokens = _tokens_from(sso)
    except asyncio.TimeoutError:
        logger.error(f"Google token exchange timed out after {config.OAUTH_TIMEOUT_SECONDS}s")
        return _frontend_redirect(error=OAUTH_ERROR_CODE)
    except Exception as e:
        # fastapi-sso surfaces provider errors as several exception types
        logger.warning(f"Google OAuth verification failed: {type(e).__name__}: {e}")
        return _frontend_redirect(error=OAUTH_ERROR_CODE)

    if user_info is None:
        logger.warning("Google OAuth returned no user info")
        return _frontend_redirect(error=OAUTH_ERROR_CODE)

    try:
        access_token = await run_in_threadpool(
            _complete_sign_in,
            db,
            user_info,
            tokens,
            request.client.host if request.client else None,
            request.headers.get("user-agent"),
        )
    except ImmochatError as e:
        logger.warning(f"Google sign-in rejected: {e.code}: {getattr(e, 'reason', None) or e.message}")
        return _frontend_redirect(error=OAUTH_ERROR_CODE)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Google sign-in failed on the database: {type(e).__name__}", exc_info=e)
        return _frontend_redirect(error=OAUTH_ERROR_CODE)

    return _frontend_redirect(token=access_token, provider=GOOGLE_PROVIDER)
