"""
Identity Service
Resolves the local user behind credentials or an external OAuth account,
and owns every mutation of a user's role.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple, List, Dict, Any

from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import get_password_hash, verify_password, dummy_verify_password
from ..db.models.identity import ExternalIdentity
from ..db.models.otp import OneTimeCode
from ..db.models.user import User, UserRole, DEFAULT_ROLE
from ..exceptions import AuthenticationFailed, Conflict, DependencyFailure, NotFound, PermissionDenied
from ..logging_config import mask_email

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "phone", "company", "bio", "image")


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass
class OAuthProfile:
    """Subset of the provider's userinfo the service relies on"""
    email: Optional[str]
    name: Optional[str] = None
    image: Optional[str] = None


@dataclass
class OAuthTokens:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class AccountLinker:
    """Idempotent (provider, provider account) -> user association"""

    def __init__(self, db: Session):
        self.db = db

    def find(self, provider: str, provider_account_id: str) -> Optional[ExternalIdentity]:
        return self.db.query(ExternalIdentity).filter(
            ExternalIdentity.provider == provider,
            ExternalIdentity.provider_account_id == provider_account_id,
        ).first()

    @staticmethod
    def _apply_tokens(identity: ExternalIdentity, tokens: OAuthTokens) -> None:
        if tokens.access_token is not None:
            identity.access_token = tokens.access_token
        if tokens.refresh_token is not None:
            identity.refresh_token = tokens.refresh_token
        if tokens.id_token is not None:
            identity.id_token = tokens.id_token
        if tokens.expires_at is not None:
            identity.token_expires_at = tokens.expires_at

    def link(
        self,
        user: User,
        provider: str,
        provider_account_id: str,
        tokens: Optional[OAuthTokens] = None,
    ) -> ExternalIdentity:
        """
        Link an external account to the user, or refresh the tokens of an
        existing link. Repeating the call never creates a second row.

        Raises:
            Conflict: the external account belongs to a different user
            DependencyFailure: the link could not be stored
        """
        tokens = tokens or OAuthTokens()
        identity = self.find(provider, provider_account_id)

        if identity is None:
            identity = ExternalIdentity(
                provider=provider,
                provider_account_id=provider_account_id,
                user_id=user.id,
            )
            self._apply_tokens(identity, tokens)
            self.db.add(identity)
            try:
                self.db.commit()
            except IntegrityError:
                # Lost an insert race; the winner's row is the link
                self.db.rollback()
                identity = self.find(provider, provider_account_id)
                if identity is None:
                    raise DependencyFailure(reason=f"{provider} identity insert failed with no conflicting row")
                logger.info(f"Concurrent {provider} link resolved to existing identity {identity.id}")
            except SQLAlchemyError as e:
                self.db.rollback()
                raise DependencyFailure(reason=f"could not store {provider} identity: {type(e).__name__}") from e
            else:
                logger.info(f"Linked {provider} account to user {user.id}")
                return identity

        if identity.user_id != user.id:
            logger.warning(f"{provider} account already linked to user {identity.user_id}, refused for user {user.id}")
            raise Conflict("This external account is already linked to another user")

        self._apply_tokens(identity, tokens)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DependencyFailure(reason=f"could not refresh {provider} tokens: {type(e).__name__}") from e

        return identity


class IdentityResolver:
    """
    Maps credentials and external identities onto User rows

    Self-service paths always create users with the default role; the
    admin methods at the bottom are the only code that sets a role.
    """

    def __init__(self, db: Session, linker: Optional[AccountLinker] = None):
        self.db = db
        self.linker = linker or AccountLinker(db)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == normalize_email(email)).first()

    def get_by_id(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def _commit_new_user(self, user: User) -> User:
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("An account with this email already exists")
        self.db.refresh(user)
        return user

    # Self-service

    def register(self, name: str, email: str, password: str) -> User:
        """
        Create a credentials account with the default role

        Raises:
            Conflict: the email is already registered
        """
        email = normalize_email(email)
        if self.get_by_email(email) is not None:
            logger.info(f"Signup rejected for existing email {mask_email(email)}")
            raise Conflict("An account with this email already exists")

        user = self._commit_new_user(User(
            name=name.strip(),
            email=email,
            password_hash=get_password_hash(password),
            role=DEFAULT_ROLE,
            email_verified=False,
        ))
        logger.info(f"User {user.id} registered with credentials")
        return user

    def resolve_by_credentials(self, email: str, password: str) -> User:
        """
        Raises:
            AuthenticationFailed: same generic error for unknown email,
            missing password and wrong password
        """
        user = self.get_by_email(email)

        if user is None or not user.password_hash:
            dummy_verify_password()
            reason = "unknown email" if user is None else f"user {user.id} has no password set"
            raise AuthenticationFailed(reason=reason)

        if not verify_password(password, user.password_hash):
            raise AuthenticationFailed(reason=f"wrong password for user {user.id}")

        return user

    def resolve_or_create_by_oauth(
        self,
        provider: str,
        provider_account_id: str,
        profile: OAuthProfile,
        tokens: Optional[OAuthTokens] = None,
    ) -> User:
        """
        Upsert the user behind an external account and link it

        An existing link wins over the email; otherwise the user is matched
        by email, or created without a password. Only name and image are
        refreshed from the provider, never the role.
        """
        if not provider_account_id:
            raise AuthenticationFailed(reason=f"{provider} returned no account id")
        if not profile.email:
            raise AuthenticationFailed(reason=f"{provider} returned no email")

        email = normalize_email(profile.email)
        identity = self.linker.find(provider, provider_account_id)

        if identity is not None:
            user = identity.user
        else:
            user = self.get_by_email(email)

        if user is None:
            user = User(
                email=email,
                name=profile.name,
                image=profile.image,
                password_hash=None,
                role=DEFAULT_ROLE,
                email_verified=True,
            )
            self.db.add(user)
            try:
                self.db.commit()
                logger.info(f"User {user.id} created from {provider} sign-in")
            except IntegrityError:
                # Concurrent first sign-in created the row first
                self.db.rollback()
                user = self.get_by_email(email)
                if user is None:
                    raise DependencyFailure(reason=f"{provider} user insert failed with no conflicting row")
                logger.info(f"Concurrent {provider} sign-in resolved to existing user {user.id}")
        else:
            if profile.name:
                user.name = profile.name
            if profile.image:
                user.image = profile.image
            try:
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                raise DependencyFailure(reason=f"could not update user from {provider} profile: {type(e).__name__}") from e

        self.linker.link(user, provider, provider_account_id, tokens)
        return user

    def set_password(self, user: User, new_password: str) -> None:
        """Replace the password hash; the caller commits"""
        user.password_hash = get_password_hash(new_password)

    def update_profile(self, user: User, changes: Dict[str, Any]) -> User:
        """Apply profile fields only; anything else is ignored"""
        for field in PROFILE_FIELDS:
            if field in changes:
                setattr(user, field, changes[field])
        self.db.commit()
        self.db.refresh(user)
        return user

    # Admin only

    def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
    ) -> Tuple[List[User], int]:
        """Newest first, filtered by a case-insensitive match on name, email or company"""
        query = self.db.query(User)

        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(or_(
                func.lower(User.name).like(pattern),
                User.email.like(pattern),
                func.lower(User.company).like(pattern),
            ))

        if role is not None:
            query = query.filter(User.role == role)

        total = query.count()
        users = (
            query.order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return users, total

    def create_user_as_admin(
        self,
        name: str,
        email: str,
        role: Optional[UserRole] = None,
        phone: Optional[str] = None,
        company: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> User:
        """Create an account without a password; the owner signs in with OAuth or sets one via reset"""
        email = normalize_email(email)
        if self.get_by_email(email) is not None:
            raise Conflict("An account with this email already exists")

        user = self._commit_new_user(User(
            name=name.strip(),
            email=email,
            role=role or DEFAULT_ROLE,
            phone=phone,
            company=company,
            bio=bio,
        ))
        logger.info(f"User {user.id} created by admin with role {user.role.value}")
        return user

    def change_role(self, admin: User, user_id: int, role: UserRole) -> User:
        """
        The only path that changes an existing user's role

        Existing sessions keep their snapshot until refreshed; admin
        checks also read the current record, so demotion is immediate.
        """
        if admin.role != UserRole.ADMIN:
            raise PermissionDenied("Admin access required")

        user = self.get_by_id(user_id)
        if user.id == admin.id and role != UserRole.ADMIN:
            raise PermissionDenied("Admins cannot remove their own admin role")

        previous = user.role
        user.role = role
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"Admin {admin.id} changed role of user {user.id}: {previous.value} -> {role.value}")
        return user

    def delete_user(self, admin: User, user_id: int) -> None:
        """Delete a user with their identities, sessions and one-time codes"""
        if admin.role != UserRole.ADMIN:
            raise PermissionDenied("Admin access required")

        user = self.get_by_id(user_id)
        if user.id == admin.id:
            raise PermissionDenied("You cannot delete your own account")

        self.db.query(OneTimeCode).filter(OneTimeCode.email == user.email).delete(synchronize_session=False)
        self.db.delete(user)
        self.db.commit()
        logger.info(f"Admin {admin.id} deleted user {user_id}")
