"""Process configuration for the agreement PDF service."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_REQUIRED = ("SUPABASE_URL", "SUPABASE_ANON_KEY", "DATABASE_URL")


class ConfigurationError(Exception):
    """Raised when required configuration is absent."""


def normalize_database_url(url: str) -> str:
    # Render Postgres (and many cloud providers) require SSL
    if "render.com" in url and "sslmode" not in url:
        url = url + ("&" if "?" in url else "?") + "sslmode=require"
    # psycopg2 expects postgresql://; some providers give postgres://
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    return url


@dataclass(frozen=True)
class Settings:
    supabase_url: str
    supabase_key: str
    database_url: str
    cors_origin: str = "http://localhost:3000"
    storage_bucket: str = "agreements"
    timeout_seconds: float = 30.0
    max_retries: int = 2
    retry_base_delay: float = 1.0
    signed_url_expires_in: int = 31536000  # 1 year
    redis_url: str = "redis://localhost:6379"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[dict] = None) -> "Settings":
        """
        Build settings from the environment.

        When env is None, .env next to this file is loaded first and os.environ
        is read. Raises ConfigurationError listing every missing variable.
        """
        if env is None:
            load_dotenv(Path(__file__).resolve().parent / ".env")
            env = dict(os.environ)

        missing = [name for name in _REQUIRED if not env.get(name)]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

        try:
            settings = cls(
                supabase_url=env["SUPABASE_URL"].rstrip("/"),
                supabase_key=env["SUPABASE_ANON_KEY"],
                database_url=normalize_database_url(env["DATABASE_URL"]),
                cors_origin=env.get("CORS_ORIGIN") or cls.cors_origin,
                storage_bucket=env.get("STORAGE_BUCKET") or cls.storage_bucket,
                timeout_seconds=float(env.get("PDF_TIMEOUT_SECONDS") or cls.timeout_seconds),
                max_retries=int(env.get("PDF_MAX_RETRIES") or cls.max_retries),
                retry_base_delay=float(env.get("PDF_RETRY_BASE_DELAY") or cls.retry_base_delay),
                signed_url_expires_in=int(env.get("SIGNED_URL_EXPIRES_IN") or cls.signed_url_expires_in),
                redis_url=env.get("REDIS_URL") or cls.redis_url,
                log_level=(env.get("LOG_LEVEL") or cls.log_level).upper(),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric configuration value: {e}") from e

        if settings.max_retries < 0:
            raise ConfigurationError(f"PDF_MAX_RETRIES must not be negative, got {settings.max_retries}")
        if settings.timeout_seconds <= 0:
            raise ConfigurationError(f"PDF_TIMEOUT_SECONDS must be positive, got {settings.timeout_seconds}")
        if settings.retry_base_delay < 0:
            raise ConfigurationError(f"PDF_RETRY_BASE_DELAY must not be negative, got {settings.retry_base_delay}")
        return settings
