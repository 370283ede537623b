"""
Account password policy

Applied to every password a user chooses: signup, set, change and reset.
"""
import os
import re
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

# Consulted only when block_common_passwords is on
COMMON_PASSWORDS = frozenset({
    "password", "password1", "passw0rd", "123456", "12345678", "123456789",
    "qwerty", "qwerty123", "abc123", "111111", "letmein", "welcome",
    "welcome1", "monkey", "dragon", "football", "baseball", "sunshine",
    "iloveyou", "admin", "admin123", "princess", "trustno1", "master",
    "superman", "starwars", "shadow", "michael", "secret", "freedom",
})

_LOWER = re.compile(r"[a-z]")
_UPPER = re.compile(r"[A-Z]")
_DIGIT = re.compile(r"\d")
_SYMBOL = re.compile(r"[^A-Za-z0-9\s]")


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = MIN_PASSWORD_LENGTH
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_symbol: bool = False
    block_common_passwords: bool = False

    @classmethod
    def from_env(cls) -> "PasswordPolicy":
        """PASSWORD_* overrides; the minimum length never drops below 8"""
        return cls(
            min_length=max(int(os.getenv("PASSWORD_MIN_LENGTH", str(MIN_PASSWORD_LENGTH))), MIN_PASSWORD_LENGTH),
            require_uppercase=_flag("PASSWORD_REQUIRE_UPPERCASE", "true"),
            require_lowercase=_flag("PASSWORD_REQUIRE_LOWERCASE", "true"),
            require_digit=_flag("PASSWORD_REQUIRE_DIGIT", "true"),
            require_symbol=_flag("PASSWORD_REQUIRE_SYMBOL", "false"),
            block_common_passwords=_flag("PASSWORD_BLOCK_COMMON", "false"),
        )


class PasswordValidationError(Exception):
    def __init__(self, message: str, field: str = "password"):
        self.message = message
        self.field = field
        super().__init__(message)


class PasswordValidator:
    """
    Checks a candidate password against a PasswordPolicy.

    validate() returns (ok, message) so request schemas can turn the message
    into a field error; validate_or_raise() is for scripts.
    """

    def __init__(self, policy: Optional[PasswordPolicy] = None):
        self.policy = policy or PasswordPolicy()

    def _missing_classes(self, password: str) -> list:
        checks = (
            (self.policy.require_lowercase, _LOWER, "one lowercase letter"),
            (self.policy.require_uppercase, _UPPER, "one uppercase letter"),
            (self.policy.require_digit, _DIGIT, "one digit"),
            (self.policy.require_symbol, _SYMBOL, "one special character"),
        )
        return [label for required, pattern, label in checks if required and not pattern.search(password)]

    def validate(self, password: str) -> Tuple[bool, Optional[str]]:
        if not password:
            return False, "Password is required"

        if len(password) < self.policy.min_length:
            return False, f"Password must be at least {self.policy.min_length} characters long"

        missing = self._missing_classes(password)
        if missing:
            wanted = missing[0] if len(missing) == 1 else ", ".join(missing[:-1]) + " and " + missing[-1]
            return False, f"Password must contain at least {wanted}"

        if self.policy.block_common_passwords and password.lower() in COMMON_PASSWORDS:
            return False, "This password is too common. Please choose a more unique password"

        return True, None

    def validate_or_raise(self, password: str, field: str = "password"):
        ok, message = self.validate(password)
        if not ok:
            raise PasswordValidationError(message, field=field)


_password_validator: Optional[PasswordValidator] = None


def get_password_validator() -> PasswordValidator:
    """Process-wide validator built from the environment on first use"""
    global _password_validator

    if _password_validator is None:
        policy = PasswordPolicy.from_env()
        _password_validator = PasswordValidator(policy)
        logger.info(f"Password policy: {policy}")

    return _password_validator
