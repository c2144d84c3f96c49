import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load a local .env file if present (no-op otherwise).
load_dotenv()


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    IMPORTANT: Provide secrets via environment variables or a .env file.
    Do not hardcode secrets in source code.
    """

    # -----------------
    # Database
    # -----------------
    # Preferred: set ENROLLMENT_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: ENROLLMENT_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("ENROLLMENT_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("ENROLLMENT_DB_PATH", "./enrollment_portal.sqlite")
    )

    # Every connection and statement is bounded so a degraded store cannot hang requests.
    DB_CONNECT_TIMEOUT_SECONDS: int = int(os.environ.get("DB_CONNECT_TIMEOUT_SECONDS", "5"))
    DB_STATEMENT_TIMEOUT_MS: int = int(os.environ.get("DB_STATEMENT_TIMEOUT_MS", "15000"))

    # Postgres pool sizing (SQLite opens a connection per unit of work).
    DB_POOL_MIN: int = int(os.environ.get("DB_POOL_MIN", "1"))
    DB_POOL_MAX: int = int(os.environ.get("DB_POOL_MAX", "10"))

    # How long initialize_database() waits for the cross-instance provisioning lock.
    DB_INIT_LOCK_TIMEOUT_SECONDS: float = float(os.environ.get("DB_INIT_LOCK_TIMEOUT_SECONDS", "30"))

    # Run idempotent provisioning + admin bootstrap when the API starts.
    AUTO_INIT_DB: bool = _env_bool("AUTO_INIT_DB", True) is True

    # -----------------
    # Pagination
    # -----------------
    PAGE_DEFAULT_LIMIT: int = int(os.environ.get("PAGE_DEFAULT_LIMIT", "50"))
    PAGE_MAX_LIMIT: int = int(os.environ.get("PAGE_MAX_LIMIT", "200"))

    # -----------------
    # Auth (JWT)
    # -----------------
    # NOTE: In dev, this defaults to a fixed string so you can get started.
    # In production, you MUST set AUTH_JWT_SECRET to a strong random value.
    AUTH_JWT_SECRET: str = os.environ.get("AUTH_JWT_SECRET", "dev_change_me")
    AUTH_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("AUTH_TOKEN_EXPIRE_MINUTES", "1440"))  # 24h
    AUTH_MIN_PASSWORD_LENGTH: int = int(os.environ.get("AUTH_MIN_PASSWORD_LENGTH", "8"))

    # Bootstrap first admin user if users table is empty
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL", "admin@example.com")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "admin12345")

    # The API reads the token from either Authorization: Bearer ... OR this cookie.
    AUTH_COOKIE_NAME: str = os.environ.get("AUTH_COOKIE_NAME", "ep_token")
    AUTH_COOKIE_SAMESITE: str = os.environ.get("AUTH_COOKIE_SAMESITE", "lax")  # lax|strict|none
    AUTH_COOKIE_SECURE: bool = _env_bool("AUTH_COOKIE_SECURE", False) is True

    # Login / registration throttling (per client, per process)
    AUTH_RATE_LIMIT_MAX: int = int(os.environ.get("AUTH_RATE_LIMIT_MAX", "5"))
    AUTH_RATE_LIMIT_WINDOW_SECONDS: int = int(os.environ.get("AUTH_RATE_LIMIT_WINDOW_SECONDS", "900"))

    # Enrollment form intake throttling (per client, per process)
    SUBMISSION_RATE_LIMIT_MAX: int = int(os.environ.get("SUBMISSION_RATE_LIMIT_MAX", "50"))
    SUBMISSION_RATE_LIMIT_WINDOW_SECONDS: int = int(os.environ.get("SUBMISSION_RATE_LIMIT_WINDOW_SECONDS", "900"))

    # Only read X-Forwarded-For for throttling when a trusted reverse proxy sets it.
    TRUST_PROXY_HEADERS: bool = _env_bool("TRUST_PROXY_HEADERS", False) is True

    # -----------------
    # CORS (development)
    # -----------------
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )


def load_config() -> Config:
    return Config()
