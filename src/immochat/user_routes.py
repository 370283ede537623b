"""
User management API routes
Listing, creation, role changes and deletion are admin only; users may read
and edit their own profile.
"""
import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .auth import get_current_user, require_admin
from .db.engine import get_db
from .db.models.user import User, UserRole
from .exceptions import PermissionDenied
from .schemas import (
    UserCreateRequest,
    UserUpdateRequest,
    RoleUpdateRequest,
    UserResponse,
    UserListResponse,
    Pagination,
    MessageResponse,
)
from .services.audit_log_service import AuditLogService, AuditAction
from .services.identity_service import IdentityResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


def _ensure_self_or_admin(current_user: User, user_id: int) -> None:
    if current_user.id != user_id and current_user.role != UserRole.ADMIN:
        raise PermissionDenied("You can only access your own account")


@router.get("", response_model=UserListResponse)
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=255),
    role: Optional[UserRole] = Query(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Paginated user list, newest first"""
    users, total = IdentityResolver(db).list_users(page=page, limit=limit, search=search, role=role)

    return UserListResponse(
        users=[UserResponse.model_validate(user) for user in users],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit) if total else 0,
        ),
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Create a user; the account has no password until the owner sets one"""
    user = IdentityResolver(db).create_user_as_admin(
        name=payload.name,
        email=payload.email,
        role=payload.role,
        phone=payload.phone,
        company=payload.company,
        bio=payload.bio,
    )
    AuditLogService(db).log_admin_action(
        AuditAction.ADMIN_USER_CREATE,
        admin.id,
        user.id,
        details={"role": user.role.value},
    )
    return user


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_self_or_admin(current_user, user_id)
    return IdentityResolver(db).get_by_id(user_id)


@router.put("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    payload: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update profile fields; role changes go through PUT /{user_id}/role"""
    _ensure_self_or_admin(current_user, user_id)

    resolver = IdentityResolver(db)
    changes = payload.model_dump(exclude_unset=True)
    user = resolver.update_profile(resolver.get_by_id(user_id), changes)

    if current_user.id != user_id:
        AuditLogService(db).log_admin_action(
            AuditAction.ADMIN_USER_UPDATE,
            current_user.id,
            user_id,
            details={"fields": sorted(changes)},
        )
    return user


@router.put("/{user_id}/role", response_model=UserResponse)
def change_user_role(
    user_id: int,
    payload: RoleUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Change a user's role; their sessions pick it up on refresh"""
    user = IdentityResolver(db).change_role(admin, user_id, payload.role)
    AuditLogService(db).log_admin_action(
        AuditAction.ADMIN_ROLE_CHANGE,
        admin.id,
        user_id,
        details={"role": payload.role.value},
    )
    return user


@router.delete("/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Delete a user with their sessions, identities and codes"""
    IdentityResolver(db).delete_user(admin, user_id)
    AuditLogService(db).log_admin_action(AuditAction.ADMIN_USER_DELETE, admin.id, user_id)
    return MessageResponse(message="User deleted successfully")
