"""
Tests for identity resolution and account linking
"""
import pytest

from immochat.auth import verify_password
from immochat.db.models import ExternalIdentity, OneTimeCode, OTPPurpose, Session, User, UserRole
from immochat.db.base import utcnow
from immochat.exceptions import AuthenticationFailed, Conflict, NotFound, PermissionDenied
from immochat.services.identity_service import (
    AccountLinker,
    IdentityResolver,
    OAuthProfile,
    OAuthTokens,
)
from immochat.services.session_service import SessionService

from conftest import DEFAULT_PASSWORD

GOOGLE = "google"


@pytest.fixture
def resolver(db_session):
    return IdentityResolver(db_session)


class TestRegister:
    def test_register_defaults(self, resolver):
        user = resolver.register("  Mario Rossi ", "Mario@Example.com", DEFAULT_PASSWORD)

        assert user.email == "mario@example.com"
        assert user.name == "Mario Rossi"
        assert user.role == UserRole.CUSTOMER
        assert user.email_verified is False
        assert verify_password(DEFAULT_PASSWORD, user.password_hash)

    def test_duplicate_email_case_insensitive(self, resolver):
        resolver.register("Mario Rossi", "mario@example.com", DEFAULT_PASSWORD)
        with pytest.raises(Conflict):
            resolver.register("Mario Again", "MARIO@example.com", DEFAULT_PASSWORD)


class TestResolveByCredentials:
    def test_correct_password(self, resolver, test_user):
        assert resolver.resolve_by_credentials("TEST@example.com", DEFAULT_PASSWORD).id == test_user.id

    def test_failures_are_indistinguishable(self, resolver, test_user, make_user):
        make_user(email="oauth-only@example.com", password=None)

        errors = []
        for email, password in [
            ("nobody@example.com", DEFAULT_PASSWORD),
            ("test@example.com", "Wrong-pass1"),
            ("oauth-only@example.com", DEFAULT_PASSWORD),
        ]:
            with pytest.raises(AuthenticationFailed) as exc_info:
                resolver.resolve_by_credentials(email, password)
            errors.append(exc_info.value)

        assert {(e.message, e.status_code, e.code) for e in errors} == {("Invalid credentials", 401, "AUTH_ERROR")}
        # Specific reasons exist for the log only
        assert len({e.reason for e in errors}) == 3


class TestOAuthResolution:
    """resolve_or_create_by_oauth"""

    def test_first_sign_in_creates_user(self, resolver, db_session):
        user = resolver.resolve_or_create_by_oauth(
            GOOGLE, "g-1",
            OAuthProfile(email="Mario@Example.com", name="Mario Rossi", image="https://img/1"),
            OAuthTokens(access_token="at-1"),
        )

        assert user.email == "mario@example.com"
        assert user.password_hash is None
        assert user.role == UserRole.CUSTOMER
        assert user.email_verified is True
        assert user.linked_providers == [GOOGLE]

        identity = db_session.query(ExternalIdentity).one()
        assert identity.provider_account_id == "g-1"
        assert identity.access_token == "at-1"

    def test_repeated_sign_in_is_idempotent(self, resolver, db_session):
        profile = OAuthProfile(email="mario@example.com", name="Mario Rossi")
        first = resolver.resolve_or_create_by_oauth(GOOGLE, "g-1", profile, OAuthTokens(access_token="at-1"))
        second = resolver.resolve_or_create_by_oauth(GOOGLE, "g-1", profile, OAuthTokens(access_token="at-2"))

        assert first.id == second.id
        assert db_session.query(User).count() == 1
        assert db_session.query(ExternalIdentity).count() == 1
        assert db_session.query(ExternalIdentity).one().access_token == "at-2"

    def test_links_existing_credentials_account(self, resolver, db_session, test_user):
        user = resolver.resolve_or_create_by_oauth(
            GOOGLE, "g-1", OAuthProfile(email="test@example.com", name="Google Name")
        )

        assert user.id == test_user.id
        # Password and role survive, profile name is refreshed
        assert verify_password(DEFAULT_PASSWORD, user.password_hash)
        assert user.role == UserRole.CUSTOMER
        assert user.name == "Google Name"
        assert user.linked_providers == [GOOGLE]

    def test_oauth_never_changes_role(self, resolver, admin_user):
        user = resolver.resolve_or_create_by_oauth(GOOGLE, "g-admin", OAuthProfile(email=admin_user.email))
        assert user.role == UserRole.ADMIN

    def test_existing_link_wins_over_email(self, resolver, make_user):
        """Provider email changed since linking: the linked user is still resolved"""
        original = resolver.resolve_or_create_by_oauth(GOOGLE, "g-1", OAuthProfile(email="old@example.com"))
        make_user(email="new@example.com")

        user = resolver.resolve_or_create_by_oauth(GOOGLE, "g-1", OAuthProfile(email="new@example.com"))
        assert user.id == original.id

    def test_missing_email_or_account_id(self, resolver):
        with pytest.raises(AuthenticationFailed):
            resolver.resolve_or_create_by_oauth(GOOGLE, "g-1", OAuthProfile(email=None))
        with pytest.raises(AuthenticationFailed):
            resolver.resolve_or_create_by_oauth(GOOGLE, "", OAuthProfile(email="mario@example.com"))

    def test_concurrent_first_sign_in(self, resolver, db_session, make_user, monkeypatch):
        """Losing the user insert race resolves to the winner's row"""
        winner = make_user(email="mario@example.com", password=None)

        real_get_by_email = resolver.get_by_email
        calls = []

        def racing_get_by_email(email):
            calls.append(email)
            if len(calls) == 1:
                return None
            return real_get_by_email(email)

        monkeypatch.setattr(resolver, "get_by_email", racing_get_by_email)

        user = resolver.resolve_or_create_by_oauth(GOOGLE, "g-1", OAuthProfile(email="mario@example.com"))

        assert user.id == winner.id
        assert len(calls) == 2
        assert db_session.query(User).count() == 1
        assert db_session.query(ExternalIdentity).count() == 1


class TestAccountLinker:
    def test_link_is_idempotent(self, db_session, test_user):
        linker = AccountLinker(db_session)
        first = linker.link(test_user, GOOGLE, "g-1", OAuthTokens(access_token="a", refresh_token="r"))
        second = linker.link(test_user, GOOGLE, "g-1", OAuthTokens(access_token="b"))

        assert first.id == second.id
        assert second.access_token == "b"
        assert second.refresh_token == "r"
        assert db_session.query(ExternalIdentity).count() == 1

    def test_concurrent_link(self, db_session, test_user, monkeypatch):
        """A unique violation on insert re-reads and reuses the existing link"""
        linker = AccountLinker(db_session)
        existing = linker.link(test_user, GOOGLE, "g-1", OAuthTokens(access_token="first"))
        existing_id = existing.id

        real_find = linker.find
        calls = []

        def racing_find(provider, provider_account_id):
            calls.append(provider_account_id)
            if len(calls) == 1:
                return None
            return real_find(provider, provider_account_id)

        monkeypatch.setattr(linker, "find", racing_find)

        identity = linker.link(test_user, GOOGLE, "g-1", OAuthTokens(access_token="second"))

        assert identity.id == existing_id
        assert identity.access_token == "second"
        assert db_session.query(ExternalIdentity).count() == 1

    def test_account_linked_to_another_user(self, db_session, test_user, admin_user):
        linker = AccountLinker(db_session)
        linker.link(test_user, GOOGLE, "g-1")

        with pytest.raises(Conflict):
            linker.link(admin_user, GOOGLE, "g-1")


class TestProfileAndAdmin:
    def test_update_profile_ignores_non_profile_fields(self, resolver, test_user):
        user = resolver.update_profile(test_user, {"name": "New Name", "role": UserRole.ADMIN, "email": "x@example.com"})

        assert user.name == "New Name"
        assert user.role == UserRole.CUSTOMER
        assert user.email == "test@example.com"

    def test_get_by_id_not_found(self, resolver):
        with pytest.raises(NotFound):
            resolver.get_by_id(9999)

    def test_list_users_search_and_filter(self, resolver, make_user, admin_user):
        make_user(email="anna@example.com", name="Anna Bianchi", company="Casa Srl")
        make_user(email="luca@example.com", name="Luca Verdi")

        users, total = resolver.list_users(search="casa")
        assert total == 1
        assert users[0].email == "anna@example.com"

        users, total = resolver.list_users(search="VERDI")
        assert [u.email for u in users] == ["luca@example.com"]

        users, total = resolver.list_users(role=UserRole.ADMIN)
        assert [u.id for u in users] == [admin_user.id]

        users, total = resolver.list_users(page=2, limit=2)
        assert total == 3
        assert len(users) == 1

    def test_create_user_as_admin(self, resolver):
        user = resolver.create_user_as_admin("Agent Smith", "Agent@Example.com", role=UserRole.ADMIN, company="Immo")
        assert user.email == "agent@example.com"
        assert user.role == UserRole.ADMIN
        assert user.password_hash is None

        with pytest.raises(Conflict):
            resolver.create_user_as_admin("Dup", "agent@example.com")

    def test_change_role(self, resolver, admin_user, test_user):
        user = resolver.change_role(admin_user, test_user.id, UserRole.ADMIN)
        assert user.role == UserRole.ADMIN

    def test_change_role_requires_admin(self, resolver, test_user, make_user):
        other = make_user(email="other@example.com")
        with pytest.raises(PermissionDenied):
            resolver.change_role(test_user, other.id, UserRole.ADMIN)

    def test_admin_cannot_demote_self(self, resolver, admin_user):
        with pytest.raises(PermissionDenied):
            resolver.change_role(admin_user, admin_user.id, UserRole.CUSTOMER)

    def test_delete_user_cascades(self, resolver, db_session, admin_user, test_user):
        SessionService(db_session).mint(test_user)
        AccountLinker(db_session).link(test_user, GOOGLE, "g-1")
        db_session.add(OneTimeCode(
            email=test_user.email,
            code="123456",
            purpose=OTPPurpose.PASSWORD_RESET,
            expires_at=utcnow(),
        ))
        db_session.commit()
        user_id = test_user.id

        resolver.delete_user(admin_user, user_id)

        assert db_session.get(User, user_id) is None
        assert db_session.query(Session).filter(Session.user_id == user_id).count() == 0
        assert db_session.query(ExternalIdentity).count() == 0
        assert db_session.query(OneTimeCode).count() == 0

    def test_admin_cannot_delete_self(self, resolver, admin_user):
        with pytest.raises(PermissionDenied):
            resolver.delete_user(admin_user, admin_user.id)
