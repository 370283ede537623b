"""
Tests for session minting, validation and revocation
"""
from datetime import timedelta

import pytest
from jose import jwt

from immochat.auth import ALGORITHM, create_access_token, verify_token
from immochat.config import config
from immochat.db.base import utcnow
from immochat.db.models import Session, UserRole
from immochat.exceptions import AuthenticationFailed
from immochat.services.session_service import SessionService, hash_token_id, _epoch


@pytest.fixture
def service(db_session):
    return SessionService(db_session)


class TestMint:
    def test_token_carries_required_claims(self, service, test_user):
        token = service.mint(test_user)
        payload = verify_token(token)

        assert payload["sub"] == str(test_user.id)
        assert payload["role"] == "CUSTOMER"
        assert payload["exp"] - payload["iat"] == config.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        assert payload["jti"]

    def test_session_row_stores_only_hash(self, service, db_session, test_user):
        token = service.mint(test_user)
        jti = verify_token(token)["jti"]

        row = db_session.query(Session).one()
        assert row.token_hash == hash_token_id(jti)
        assert row.token_hash != jti
        assert row.role == UserRole.CUSTOMER

    def test_each_mint_is_a_new_session(self, service, db_session, test_user):
        first = service.mint(test_user)
        second = service.mint(test_user)
        assert first != second
        assert db_session.query(Session).count() == 2


class TestValidate:
    def test_valid_token(self, service, test_user):
        claims = service.validate(service.mint(test_user))

        assert claims.user_id == test_user.id
        assert claims.role == UserRole.CUSTOMER
        assert not claims.is_admin
        assert claims.expires_at > utcnow()

    def test_admin_claims(self, service, admin_user):
        claims = service.validate(service.mint(admin_user))
        assert claims.is_admin

    def test_garbage_token(self, service):
        assert service.validate("not.a.jwt") is None
        assert service.validate("") is None

    def test_tampered_token(self, service, test_user):
        token = service.mint(test_user)
        header, payload, signature = token.split(".")
        flipped = "A" if signature[0] != "A" else "B"
        assert service.validate(f"{header}.{payload}.{flipped}{signature[1:]}") is None

    def test_foreign_signing_key(self, service, test_user):
        """A token signed with another key is rejected even if the claims look right"""
        token = service.mint(test_user)
        claims = verify_token(token)
        forged = jwt.encode(claims, "another-secret-key-that-is-long-enough!", algorithm=ALGORITHM)
        assert service.validate(forged) is None

    def test_escalated_role_claim_rejected(self, service, test_user):
        """Re-signing a customer token as ADMIN fails against the session row"""
        claims = verify_token(service.mint(test_user))
        claims["role"] = "ADMIN"
        assert service.validate(create_access_token(claims)) is None

    def test_missing_claims(self, service, test_user):
        now = utcnow()
        token = create_access_token({
            "sub": str(test_user.id),
            "iat": _epoch(now),
            "exp": _epoch(now + timedelta(minutes=5)),
        })
        assert service.validate(token) is None

    def test_unknown_role(self, service, test_user):
        claims = verify_token(service.mint(test_user))
        claims["role"] = "SUPERUSER"
        assert service.validate(create_access_token(claims)) is None

    def test_expired_token(self, service, test_user):
        claims = verify_token(service.mint(test_user))
        claims["exp"] = _epoch(utcnow() - timedelta(minutes=1))
        assert service.validate(create_access_token(claims)) is None

    def test_expired_session_row(self, service, db_session, test_user):
        token = service.mint(test_user)
        row = db_session.query(Session).one()
        row.expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()

        assert service.validate(token) is None

    def test_unknown_jti(self, service, test_user):
        claims = verify_token(service.mint(test_user))
        claims["jti"] = "never-minted"
        assert service.validate(create_access_token(claims)) is None


class TestRevocation:
    def test_revoke_single_session(self, service, test_user):
        first = service.mint(test_user)
        second = service.mint(test_user)

        service.revoke(service.validate(first))

        assert service.validate(first) is None
        assert service.validate(second) is not None

    def test_revoke_all(self, service, db_session, test_user, admin_user):
        tokens = [service.mint(test_user) for _ in range(3)]
        other = service.mint(admin_user)

        assert service.revoke_all(test_user.id) == 3
        db_session.commit()

        assert all(service.validate(token) is None for token in tokens)
        assert service.validate(other) is not None

    def test_revoke_all_keeps_current(self, service, db_session, test_user):
        current = service.mint(test_user)
        stale = service.mint(test_user)
        current_claims = service.validate(current)

        assert service.revoke_all(test_user.id, except_session_id=current_claims.session_id) == 1
        db_session.commit()

        assert service.validate(current) is not None
        assert service.validate(stale) is None

    def test_revoke_all_is_not_committed(self, service, db_session, test_user):
        token = service.mint(test_user)
        service.revoke_all(test_user.id)
        db_session.rollback()

        assert service.validate(token) is not None


class TestRefresh:
    def test_refresh_picks_up_role_change(self, service, db_session, test_user):
        token = service.mint(test_user)
        claims = service.validate(token)

        test_user.role = UserRole.ADMIN
        db_session.commit()

        # The old token still carries CUSTOMER
        assert service.validate(token).role == UserRole.CUSTOMER

        new_token = service.refresh(claims)
        new_claims = service.validate(new_token)

        assert new_claims.role == UserRole.ADMIN
        assert service.validate(token) is None

    def test_refresh_after_user_deleted(self, service, db_session, test_user):
        claims = service.validate(service.mint(test_user))
        db_session.delete(test_user)
        db_session.commit()

        with pytest.raises(AuthenticationFailed):
            service.refresh(claims)


class TestCleanup:
    def test_cleanup_expired(self, service, db_session, test_user):
        service.mint(test_user)
        live = service.mint(test_user)

        expired = db_session.query(Session).order_by(Session.id).first()
        expired.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert service.cleanup_expired() == 1
        assert service.validate(live) is not None
