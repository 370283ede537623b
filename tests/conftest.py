"""
Pytest configuration and fixtures
"""
import os
import re
import sys
from pathlib import Path
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set test environment variables before importing
os.environ["ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-immochat-tests-only-min-32-chars"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"  # Fast hashing; config only warns in test mode
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests
for name in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "SMTP_HOST", "REQUIRE_OTP_FOR_PASSWORD_CHANGE"):
    os.environ.pop(name, None)

# Import after setting env vars
from immochat.api_server import app
from immochat.db import Base, get_db
from immochat.db.models import User, UserRole
from immochat.auth import get_password_hash
from immochat.services.email_provider import EmailProvider, EmailMessage, get_email_provider
from immochat.services.session_service import SessionService

DEFAULT_PASSWORD = "Passw0rd!"


class CapturingEmailProvider(EmailProvider):
    """Keeps every message in memory; set `fail` to simulate an outage"""

    def __init__(self):
        self.messages: List[EmailMessage] = []
        self.fail = False

    def send(self, message: EmailMessage) -> bool:
        if self.fail:
            return False
        self.messages.append(message)
        return True

    def is_available(self) -> bool:
        return not self.fail

    def last_code(self, to: Optional[str] = None) -> str:
        """The six-digit code in the most recent message (optionally to one address)"""
        messages = [m for m in self.messages if to is None or m.to == to]
        assert messages, f"no email sent to {to or 'anyone'}"
        match = re.search(r"\b(\d{6})\b", messages[-1].text_body)
        assert match, "no code in email body"
        return match.group(1)


@pytest.fixture(scope="function")
def test_engine():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Database session shared by the test and the app"""
    session = session_factory()

    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db

    yield session

    session.close()
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def mailbox(db_session):
    """Capture outgoing email instead of sending it"""
    provider = CapturingEmailProvider()
    app.dependency_overrides[get_email_provider] = lambda: provider
    return provider


@pytest.fixture(scope="function")
def client(db_session, mailbox):
    """Create test client"""
    return TestClient(app)


@pytest.fixture(scope="function")
def make_user(db_session):
    """Factory for users created straight in the database"""

    def _make_user(
        email: str = "test@example.com",
        password: Optional[str] = DEFAULT_PASSWORD,
        name: str = "Test User",
        role: UserRole = UserRole.CUSTOMER,
        **profile,
    ) -> User:
        user = User(
            email=email,
            name=name,
            password_hash=get_password_hash(password) if password else None,
            role=role,
            **profile,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture(scope="function")
def test_user(make_user):
    return make_user()


@pytest.fixture(scope="function")
def admin_user(make_user):
    return make_user(email="admin@example.com", name="Admin User", role=UserRole.ADMIN)


@pytest.fixture(scope="function")
def login_headers(db_session):
    """Mint a session for a user and return its Authorization header"""

    def _login_headers(user: User) -> dict:
        token = SessionService(db_session).mint(user)
        return {"Authorization": f"Bearer {token}"}

    return _login_headers


@pytest.fixture(scope="function")
def auth_headers(test_user, login_headers):
    return login_headers(test_user)


@pytest.fixture(scope="function")
def admin_headers(admin_user, login_headers):
    return login_headers(admin_user)
