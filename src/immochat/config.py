"""
Central configuration module for Immochat
Reads and validates environment variables with strict checks for production
"""
import os
import sys
from typing import Optional, List

# Load environment variables from .env file if it exists (dev only)
from dotenv import load_dotenv

if os.getenv("ENV", "dev").lower() == "dev":
    load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Required for all environments
    SECRET_KEY: str = os.getenv("SECRET_KEY", "")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./immochat.db")

    PORT: int = int(os.getenv("PORT", "8000"))

    # Frontend URLs
    FRONTEND_CALLBACK_URL: str = os.getenv(
        "FRONTEND_CALLBACK_URL",
        "http://localhost:3000/auth/callback"
    )
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:8000")

    # CORS
    CORS_ORIGINS: List[str] = []

    # OAuth (optional)
    GOOGLE_CLIENT_ID: Optional[str] = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET: Optional[str] = os.getenv("GOOGLE_CLIENT_SECRET")
    OAUTH_TIMEOUT_SECONDS: float = float(os.getenv("OAUTH_TIMEOUT_SECONDS", "10"))

    # Password hashing and sessions
    BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "120"))

    # One-time codes
    OTP_EXPIRE_MINUTES: int = int(os.getenv("OTP_EXPIRE_MINUTES", "10"))
    OTP_HANDLE_TTL_MINUTES: int = int(os.getenv("OTP_HANDLE_TTL_MINUTES", "15"))
    OTP_MAX_ATTEMPTS: int = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
    REQUIRE_OTP_FOR_PASSWORD_CHANGE: bool = _env_bool("REQUIRE_OTP_FOR_PASSWORD_CHANGE", "false")

    # Email (SMTP)
    SMTP_HOST: Optional[str] = os.getenv("SMTP_HOST")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: Optional[str] = os.getenv("SMTP_USER")
    SMTP_PASSWORD: Optional[str] = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_ADDRESS: str = os.getenv("SMTP_FROM_ADDRESS", "noreply@immochat.com")
    EMAIL_TIMEOUT_SECONDS: float = float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))

    # Background jobs
    ENABLE_SCHEDULER: bool = _env_bool("ENABLE_SCHEDULER", "true")

    # Build version (set during build/deploy)
    BUILD_VERSION: str = os.getenv("BUILD_VERSION", "dev")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __init__(self):
        self.CORS_ORIGINS = self._cors_origins()
        self._report(self._problems())

    @staticmethod
    def _cors_origins() -> List[str]:
        """Local frontend origins plus any comma-separated CORS_ORIGINS"""
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
        extra = os.getenv("CORS_ORIGINS", "")
        origins.extend(o.strip() for o in extra.split(",") if o.strip())
        return origins

    @property
    def is_deployed(self) -> bool:
        return self.ENV in ("staging", "prod")

    def _problems(self) -> List[str]:
        problems = []

        if self.ENV not in ("dev", "test", "staging", "prod"):
            problems.append(f"ENV={self.ENV!r} is not one of dev, test, staging, prod")

        # Signs every session token
        if len(self.SECRET_KEY) < 32:
            problems.append(f"SECRET_KEY needs at least 32 characters (has {len(self.SECRET_KEY)})")

        if not self.DATABASE_URL:
            problems.append("DATABASE_URL is not set")
        elif self.is_deployed and not self.DATABASE_URL.startswith("postgresql"):
            problems.append("DATABASE_URL must point at PostgreSQL outside dev/test")

        if self.BCRYPT_ROUNDS < 12:
            problems.append(f"BCRYPT_ROUNDS={self.BCRYPT_ROUNDS} is below the production cost of 12")

        if self.OTP_EXPIRE_MINUTES <= 0 or self.OTP_MAX_ATTEMPTS <= 0:
            problems.append("OTP_EXPIRE_MINUTES and OTP_MAX_ATTEMPTS must be positive")

        if bool(self.GOOGLE_CLIENT_ID) != bool(self.GOOGLE_CLIENT_SECRET):
            problems.append("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET go together")

        if self.is_deployed:
            for name in ("FRONTEND_CALLBACK_URL", "API_BASE_URL"):
                if not getattr(self, name).startswith("https://"):
                    problems.append(f"{name} must be an https:// URL outside dev/test")
            if not self.SMTP_HOST:
                problems.append("SMTP_HOST is required outside dev/test; one-time codes go out by email")

        return problems

    def _report(self, problems: List[str]):
        """Deployed environments refuse to start on a bad config; dev and test only warn"""
        if not problems:
            return

        header = "Invalid configuration" if self.is_deployed else f"Configuration warnings (ENV={self.ENV})"
        print(header + ":", file=sys.stderr)
        for problem in problems:
            print(f"  - {problem}", file=sys.stderr)

        if self.is_deployed:
            sys.exit(1)

    @property
    def google_oauth_enabled(self) -> bool:
        return bool(self.GOOGLE_CLIENT_ID and self.GOOGLE_CLIENT_SECRET)


config = Config()
