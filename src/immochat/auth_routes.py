"""
Authentication API routes
Credentials signup/login, sessions, one-time codes and password management
"""
import logging
from typing import Tuple, Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from .auth import get_current_session, get_current_user, verify_password
from .config import config
from .db.engine import get_db
from .db.models.otp import OTPPurpose
from .db.models.user import User
from .exceptions import AuthenticationFailed, ValidationFailed, GENERIC_CODE_MESSAGE
from .logging_config import mask_email
from .schemas import (
    SignupRequest,
    SignupResponse,
    LoginRequest,
    Token,
    UserSummary,
    UserResponse,
    MessageResponse,
    ForgotPasswordRequest,
    VerifyOTPRequest,
    VerifyOTPResponse,
    ResetPasswordRequest,
    RequestOTPRequest,
    ChangePasswordRequest,
    SetPasswordRequest,
    PasswordStatusResponse,
)
from .services.audit_log_service import AuditLogService, AuditAction
from .services.email_provider import EmailProvider, get_email_provider
from .services.identity_service import IdentityResolver
from .services.otp_service import OTPService
from .services.session_service import SessionService, SessionClaims

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])

FORGOT_PASSWORD_MESSAGE = "If an account exists for this email, a verification code has been sent"


def _client(request: Request) -> Tuple[Optional[str], Optional[str]]:
    """Client IP and user agent for the audit log (hashed there)"""
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


def _token_response(db: Session, user: User) -> Token:
    return Token(
        access_token=SessionService(db).mint(user),
        token_type="bearer",
        user=UserSummary.model_validate(user),
    )


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest, request: Request, db: Session = Depends(get_db)):
    """Register a new customer account with email and password"""
    user = IdentityResolver(db).register(payload.name, payload.email, payload.password)

    ip_address, user_agent = _client(request)
    AuditLogService(db).log(
        action_type=AuditAction.SIGNUP,
        actor_user_id=user.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )

    return SignupResponse(
        message="Account created successfully",
        user=UserSummary.model_validate(user),
    )


@router.post("/login", response_model=Token)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    """Login with email and password"""
    ip_address, user_agent = _client(request)
    audit = AuditLogService(db)

    try:
        user = IdentityResolver(db).resolve_by_credentials(payload.email, payload.password)
    except AuthenticationFailed as e:
        audit.log_login_fail(payload.email, e.reason or "invalid credentials", ip_address, user_agent)
        raise

    response = _token_response(db, user)
    audit.log_login_success(user.id, ip_address, user_agent, login_method="password")
    logger.info(f"User {user.id} logged in with credentials")
    return response


@router.post("/logout", response_model=MessageResponse)
def logout(claims: SessionClaims = Depends(get_current_session), db: Session = Depends(get_db)):
    """Revoke the presented session"""
    SessionService(db).revoke(claims)
    AuditLogService(db).log(action_type=AuditAction.LOGOUT, actor_user_id=claims.user_id)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current authenticated user information"""
    return current_user


@router.post("/session/refresh", response_model=Token)
def refresh_session(claims: SessionClaims = Depends(get_current_session), db: Session = Depends(get_db)):
    """Swap the session for a new one carrying the user's current role"""
    service = SessionService(db)
    token = service.refresh(claims)
    user = db.get(User, claims.user_id)

    AuditLogService(db).log(
        action_type=AuditAction.SESSION_REFRESH,
        actor_user_id=user.id,
        details={"previous_role": claims.role.value, "role": user.role.value},
    )
    return Token(access_token=token, token_type="bearer", user=UserSummary.model_validate(user))


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    payload: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    email_provider: EmailProvider = Depends(get_email_provider),
):
    """
    Send a password reset code

    The response is the same whether or not the email is registered; a code
    is only issued for existing accounts.
    """
    user = IdentityResolver(db).get_by_email(payload.email)

    if user is None:
        logger.info(f"Password reset requested for unknown email {mask_email(payload.email)}")
    else:
        OTPService(db, email_provider).issue(user.email, OTPPurpose.PASSWORD_RESET)
        AuditLogService(db).log_otp_event(
            AuditAction.PASSWORD_RESET_REQUEST,
            user.email,
            OTPPurpose.PASSWORD_RESET.value,
        )

    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/verify-otp", response_model=VerifyOTPResponse)
def verify_otp(
    payload: VerifyOTPRequest,
    db: Session = Depends(get_db),
    email_provider: EmailProvider = Depends(get_email_provider),
):
    """Exchange a correct code for a single-use verification handle"""
    try:
        otp_id = OTPService(db, email_provider).verify(payload.email, payload.otp, payload.purpose)
    except AuthenticationFailed as e:
        AuditLogService(db).log_otp_event(
            AuditAction.OTP_VERIFY_FAIL,
            payload.email,
            payload.purpose.value,
            reason=e.reason,
        )
        raise

    if payload.purpose == OTPPurpose.EMAIL_VERIFICATION:
        user = IdentityResolver(db).get_by_email(payload.email)
        if user is not None:
            AuditLogService(db).log(action_type=AuditAction.EMAIL_VERIFICATION_SUCCESS, actor_user_id=user.id)

    return VerifyOTPResponse(message="Code verified successfully", otp_id=otp_id)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordRequest,
    db: Session = Depends(get_db),
    email_provider: EmailProvider = Depends(get_email_provider),
):
    """Set a new password using a verified PASSWORD_RESET handle; signs out every session"""
    resolver = IdentityResolver(db)
    user = resolver.get_by_email(payload.email)

    if user is None:
        raise AuthenticationFailed(GENERIC_CODE_MESSAGE, reason="reset for unknown email")

    OTPService(db, email_provider).redeem(payload.otp_id, user.email, OTPPurpose.PASSWORD_RESET)
    resolver.set_password(user, payload.new_password)
    SessionService(db).revoke_all(user.id)
    db.commit()

    AuditLogService(db).log(action_type=AuditAction.PASSWORD_RESET_CONFIRM, actor_user_id=user.id)
    logger.info(f"Password reset completed for user {user.id}")
    return MessageResponse(message="Password reset successfully")


@router.post("/request-otp", response_model=MessageResponse)
def request_otp(
    payload: RequestOTPRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    email_provider: EmailProvider = Depends(get_email_provider),
):
    """Send a PASSWORD_CHANGE or EMAIL_VERIFICATION code to the signed-in user"""
    if payload.purpose == OTPPurpose.EMAIL_VERIFICATION and current_user.email_verified:
        raise ValidationFailed("Email address is already verified")

    OTPService(db, email_provider).issue(current_user.email, payload.purpose)
    return MessageResponse(message="Verification code sent")


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    claims: SessionClaims = Depends(get_current_session),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    email_provider: EmailProvider = Depends(get_email_provider),
):
    """
    Change the password of a signed-in user

    Requires the current password, plus a verified PASSWORD_CHANGE handle
    when REQUIRE_OTP_FOR_PASSWORD_CHANGE is on (or when one is supplied).
    Other sessions are signed out; the current one stays valid.
    """
    if not current_user.password_hash:
        raise ValidationFailed(
            "No password is set for this account. Use set-password instead.",
            errors=[{"field": "currentPassword", "message": "No password is set for this account"}],
        )

    if not verify_password(payload.current_password, current_user.password_hash):
        raise AuthenticationFailed("Current password is incorrect", reason=f"wrong current password for user {current_user.id}")

    if payload.current_password == payload.new_password:
        raise ValidationFailed(
            "New password must be different from the current password",
            errors=[{"field": "newPassword", "message": "New password must be different from the current password"}],
        )

    if payload.otp_id:
        OTPService(db, email_provider).redeem(payload.otp_id, current_user.email, OTPPurpose.PASSWORD_CHANGE)
    elif config.REQUIRE_OTP_FOR_PASSWORD_CHANGE:
        raise ValidationFailed(
            "A verification code is required to change the password",
            errors=[{"field": "otpId", "message": "Verify a PASSWORD_CHANGE code first"}],
        )

    IdentityResolver(db).set_password(current_user, payload.new_password)
    SessionService(db).revoke_all(current_user.id, except_session_id=claims.session_id)
    db.commit()

    AuditLogService(db).log(action_type=AuditAction.PASSWORD_CHANGE, actor_user_id=current_user.id)
    return MessageResponse(message="Password changed successfully")


@router.get("/set-password", response_model=PasswordStatusResponse)
def password_status(current_user: User = Depends(get_current_user)):
    """Whether the account has a password, and which external providers are linked"""
    return PasswordStatusResponse(
        has_password=current_user.has_password,
        linked_providers=current_user.linked_providers,
    )


@router.post("/set-password", response_model=MessageResponse)
def set_password(
    payload: SetPasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Add a password to an account that signs in through an external provider only"""
    if current_user.password_hash:
        raise ValidationFailed(
            "A password is already set. Use change-password instead.",
            errors=[{"field": "newPassword", "message": "A password is already set"}],
        )

    IdentityResolver(db).set_password(current_user, payload.new_password)
    db.commit()

    AuditLogService(db).log(action_type=AuditAction.PASSWORD_SET, actor_user_id=current_user.id)
    return MessageResponse(message="Password set successfully")
