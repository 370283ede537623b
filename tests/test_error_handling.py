"""
Tests for error sanitization, request IDs and the health endpoint
"""
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from immochat.api_server import app
from immochat.db import get_db
from immochat.exceptions import ErrorResponse
from immochat.services.identity_service import IdentityResolver


class TestErrorResponseFormat:
    def test_create_omits_empty_fields(self):
        assert ErrorResponse.create("Nope", "FORBIDDEN", 403) == {
            "code": "FORBIDDEN",
            "message": "Nope",
            "status_code": 403,
        }

    def test_create_with_details(self):
        errors = [{"field": "email", "message": "Invalid email"}]
        body = ErrorResponse.create("Bad", "VALIDATION_ERROR", 400, request_id="r-1", details={"errors": errors})
        assert body["request_id"] == "r-1"
        assert body["details"]["errors"] == errors

    def test_validation_errors_are_flattened(self, client):
        response = client.post("/api/auth/login", json={"email": "not-an-email"})

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["message"] == "Validation error"
        fields = {error["field"] for error in body["details"]["errors"]}
        assert fields == {"email", "password"}

    def test_unknown_route_uses_standard_format(self, client):
        response = client.get("/api/nothing-here")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestRequestID:
    def test_generated_when_missing(self, client):
        response = client.get("/health")
        assert response.headers["X-Request-ID"]

    def test_echoed_in_header_and_error_body(self, client):
        response = client.get("/api/auth/me", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["request_id"] == "req-123"


class TestDatabaseErrors:
    """Storage failures never leak SQL or driver details"""

    def test_operational_error_is_503(self, client):
        error = OperationalError("SELECT * FROM users WHERE email = ?", {}, Exception("could not connect to server"))
        with patch.object(IdentityResolver, "get_by_email", side_effect=error):
            response = client.post("/api/auth/forgot-password", json={"email": "test@example.com"})

        assert response.status_code == 503
        body = response.json()
        assert body["code"] == "DATABASE_UNAVAILABLE"
        assert "SELECT" not in response.text
        assert "could not connect" not in response.text

    def test_other_database_error_is_500(self, client):
        error = IntegrityError("INSERT INTO users", {}, Exception("constraint users_pkey"))
        with patch.object(IdentityResolver, "get_by_email", side_effect=error):
            response = client.post("/api/auth/forgot-password", json={"email": "test@example.com"})

        assert response.status_code == 500
        assert response.json()["code"] == "DATABASE_ERROR"
        assert "users_pkey" not in response.text


class TestHealth:
    def test_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "ok"

    def test_database_down(self, client):
        class BrokenSession:
            def execute(self, *args, **kwargs):
                raise SQLAlchemyError("connection refused")

        def broken_db():
            yield BrokenSession()

        app.dependency_overrides[get_db] = broken_db
        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert "refused" not in response.text
