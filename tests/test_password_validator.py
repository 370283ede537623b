"""
Tests for the password policy
"""
import pytest

from immochat.services.password_validator import (
    PasswordPolicy,
    PasswordValidator,
    PasswordValidationError,
)


class TestPasswordValidator:
    """Default policy: 8+ characters with upper, lower and digit"""

    @pytest.fixture
    def validator(self):
        return PasswordValidator()

    def test_valid_password(self, validator):
        assert validator.validate("Passw0rd") == (True, None)

    def test_empty_password(self, validator):
        is_valid, error = validator.validate("")
        assert not is_valid
        assert error == "Password is required"

    def test_too_short(self, validator):
        is_valid, error = validator.validate("Pa1")
        assert not is_valid
        assert "at least 8 characters" in error

    def test_missing_uppercase(self, validator):
        is_valid, error = validator.validate("passw0rd")
        assert not is_valid
        assert error == "Password must contain at least one uppercase letter"

    def test_missing_several_classes(self, validator):
        is_valid, error = validator.validate("password")
        assert not is_valid
        assert error == "Password must contain at least one uppercase letter and one digit"

    def test_symbols_optional_by_default(self, validator):
        assert validator.validate("Password1")[0]

    def test_common_password_blocking(self):
        validator = PasswordValidator(PasswordPolicy(block_common_passwords=True))
        assert validator.validate("Harbour7view")[0]

        is_valid, error = validator.validate("Password1")
        assert not is_valid
        assert "too common" in error

        validator = PasswordValidator(PasswordPolicy(require_uppercase=False, block_common_passwords=True))
        is_valid, error = validator.validate("password1")
        assert not is_valid
        assert "too common" in error

    def test_symbol_requirement(self):
        validator = PasswordValidator(PasswordPolicy(require_symbol=True))
        assert not validator.validate("Passw0rd")[0]
        assert validator.validate("Passw0rd!")[0]

    def test_validate_or_raise(self, validator):
        with pytest.raises(PasswordValidationError) as exc_info:
            validator.validate_or_raise("short", field="newPassword")
        assert exc_info.value.field == "newPassword"

    def test_policy_from_env(self, monkeypatch):
        monkeypatch.setenv("PASSWORD_MIN_LENGTH", "4")
        monkeypatch.setenv("PASSWORD_REQUIRE_SYMBOL", "true")
        policy = PasswordPolicy.from_env()

        assert policy.min_length == 8
        assert policy.require_symbol
        assert policy.require_uppercase
