"""
Pydantic request and response schemas for the auth and user APIs
JSON field names are camelCase to match the web client
"""
from datetime import datetime
from typing import Optional, List, Annotated

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationInfo,
    field_validator,
)

from .db.models.otp import OTPPurpose
from .db.models.user import UserRole
from .services.password_validator import get_password_validator

NormalizedEmail = Annotated[EmailStr, AfterValidator(lambda value: value.strip().lower())]


def _check_password_policy(value: str) -> str:
    is_valid, error = get_password_validator().validate(value)
    if not is_valid:
        raise ValueError(error)
    return value


def _check_confirmation(value: str, info: ValidationInfo, field: str) -> str:
    # If the password itself failed validation it is absent from info.data
    if field in info.data and value != info.data[field]:
        raise ValueError("Passwords do not match")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Requests

class SignupRequest(CamelModel):
    """Self-service signup; any role sent by the client is ignored"""
    name: str = Field(..., min_length=2, max_length=255)
    email: NormalizedEmail
    password: str = Field(..., max_length=256)
    confirm_password: str = Field(..., alias="confirmPassword")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters long")
        return v

    @field_validator("password")
    @classmethod
    def password_policy(cls, v):
        return _check_password_policy(v)

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v, info: ValidationInfo):
        return _check_confirmation(v, info, "password")


class LoginRequest(BaseModel):
    email: NormalizedEmail
    password: str = Field(..., min_length=1, max_length=256)


class ForgotPasswordRequest(BaseModel):
    email: NormalizedEmail


class VerifyOTPRequest(CamelModel):
    email: NormalizedEmail
    otp: str = Field(..., pattern=r"^\d{6}$", description="Six-digit code from the email")
    purpose: OTPPurpose = Field(..., alias="type")


class RequestOTPRequest(CamelModel):
    """Codes requested by a signed-in user for their own email"""
    purpose: OTPPurpose = Field(..., alias="type")

    @field_validator("purpose")
    @classmethod
    def self_service_purpose(cls, v):
        if v == OTPPurpose.PASSWORD_RESET:
            raise ValueError("Use forgot-password to request a reset code")
        return v


class ResetPasswordRequest(CamelModel):
    email: NormalizedEmail
    new_password: str = Field(..., alias="newPassword", max_length=256)
    otp_id: str = Field(..., alias="otpId", min_length=1, max_length=36)

    @field_validator("new_password")
    @classmethod
    def password_policy(cls, v):
        return _check_password_policy(v)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., alias="currentPassword", min_length=1)
    new_password: str = Field(..., alias="newPassword", max_length=256)
    confirm_password: str = Field(
        ...,
        validation_alias=AliasChoices("confirmPassword", "confirmNewPassword", "confirm_password"),
    )
    otp_id: Optional[str] = Field(None, alias="otpId", max_length=36)

    @field_validator("new_password")
    @classmethod
    def password_policy(cls, v):
        return _check_password_policy(v)

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v, info: ValidationInfo):
        return _check_confirmation(v, info, "new_password")


class SetPasswordRequest(CamelModel):
    new_password: str = Field(..., alias="newPassword", max_length=256)
    confirm_password: str = Field(
        ...,
        validation_alias=AliasChoices("confirmPassword", "confirmNewPassword", "confirm_password"),
    )

    @field_validator("new_password")
    @classmethod
    def password_policy(cls, v):
        return _check_password_policy(v)

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v, info: ValidationInfo):
        return _check_confirmation(v, info, "new_password")


class UserCreateRequest(BaseModel):
    """Admin-created account"""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    email: NormalizedEmail
    role: Optional[UserRole] = None
    phone: Optional[str] = Field(None, max_length=50)
    company: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = Field(None, max_length=5000)


class UserUpdateRequest(BaseModel):
    """Profile fields only; role, email and password are rejected"""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    company: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = Field(None, max_length=5000)
    image: Optional[str] = Field(None, max_length=1024)


class RoleUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: UserRole


# Responses

class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: Optional[str] = None
    email: str
    role: UserRole


class UserResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    name: Optional[str] = None
    email: str
    role: UserRole
    phone: Optional[str] = None
    company: Optional[str] = None
    bio: Optional[str] = None
    image: Optional[str] = None
    email_verified: bool = Field(False, alias="emailVerified")
    has_password: bool = Field(False, alias="hasPassword")
    linked_providers: List[str] = Field(default_factory=list, alias="linkedProviders")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class SignupResponse(BaseModel):
    message: str
    user: UserSummary


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserSummary


class MessageResponse(BaseModel):
    message: str


class VerifyOTPResponse(CamelModel):
    message: str
    otp_id: str = Field(..., alias="otpId")


class PasswordStatusResponse(CamelModel):
    has_password: bool = Field(..., alias="hasPassword")
    linked_providers: List[str] = Field(..., alias="linkedProviders")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class UserListResponse(BaseModel):
    users: List[UserResponse]
    pagination: Pagination
