"""Application configuration management."""

import os
from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url


LOOPBACK_HOSTS = {"127.0.0.1", "localhost", "0.0.0.0", "::1"}
BACKEND_ROOT = Path(__file__).resolve().parents[1]
PROJECT_ROOT = BACKEND_ROOT.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: Literal["development", "production", "testing"] = "development"

    # Database
    database_url: str = "sqlite+aiosqlite:///./yolo_transcript.db"

    # Security (secret_key is the identity provider's JWT signing secret)
    secret_key: str = "dev-secret-key-change-in-production"
    algorithm: str = "HS256"
    jwt_audience: str | None = None
    access_token_expire_minutes: int = 60

    # Transcription vendor
    assemblyai_api_key: str = ""
    assemblyai_base_url: str = "https://api.assemblyai.com/v2"
    assemblyai_webhook_url: str | None = None
    vendor_timeout_seconds: float = 30.0
    max_upload_bytes: int = 2 * 1024 * 1024 * 1024

    # Credits
    url_estimated_duration_seconds: int = 300

    # Reconciliation schedule
    reconcile_check_delays: str = "2,20,60,180"
    reconcile_tail_interval_seconds: int = 900
    reconcile_max_age_seconds: int = 86400
    reconcile_poll_interval_seconds: float = 2.0

    # Google Drive integration
    google_client_id: str = ""
    google_client_secret: str = ""
    google_oauth_scopes: str = (
        "https://www.googleapis.com/auth/drive.file "
        "https://www.googleapis.com/auth/userinfo.profile "
        "https://www.googleapis.com/auth/userinfo.email"
    )
    google_default_folder: str = "/Transcriptions"

    # Payments
    paddle_webhook_secret: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 8100
    app_url: str = "http://localhost:3000"
    allow_localhost_cors: bool = False
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    cors_origin_regex: str | None = None

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=(".env.test", ".env"), case_sensitive=False)

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def check_delays_seconds(self) -> list[int]:
        """Scheduled reconciliation delays, relative to job submission."""
        return [int(part.strip()) for part in self.reconcile_check_delays.split(",") if part.strip()]

    @property
    def google_scopes_list(self) -> list[str]:
        return [scope for scope in self.google_oauth_scopes.replace(",", " ").split() if scope]

    @property
    def google_redirect_uri(self) -> str:
        return f"{self.app_url.rstrip('/')}/api/integrations/google-drive/callback"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        env_var = os.getenv("ENVIRONMENT", "").lower() == "testing"
        pytest_flag = bool(os.getenv("PYTEST_CURRENT_TEST"))
        return self.environment == "testing" or env_var or pytest_flag

    @model_validator(mode="before")
    @classmethod
    def auto_allow_localhost(cls, values: dict) -> dict:
        """Automatically enable localhost CORS when binding to loopback hosts in production."""
        env = (values.get("environment") or "development").lower()
        host = (values.get("host") or "").lower()
        allow_local = values.get("allow_localhost_cors", False)

        host_is_loopback = host in LOOPBACK_HOSTS or host.startswith("127.")
        if env == "production" and not allow_local and host_is_loopback:
            values["allow_localhost_cors"] = True
        return values

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Validate secret key is secure in production."""
        env = info.data.get("environment", "development")
        if env == "production" and v == "dev-secret-key-change-in-production":
            raise ValueError(
                "SECRET_KEY must be set to the identity provider's JWT secret in production."
            )
        if env == "production" and len(v) < 32:
            raise ValueError(
                "SECRET_KEY must be at least 32 characters in production for security. "
                f"Current length: {len(v)}"
            )
        return v

    @field_validator("reconcile_check_delays")
    @classmethod
    def validate_check_delays(cls, v: str) -> str:
        """Delays must be non-negative integers in ascending order."""
        try:
            delays = [int(part.strip()) for part in v.split(",") if part.strip()]
        except ValueError as exc:
            raise ValueError("RECONCILE_CHECK_DELAYS must be comma-separated integers") from exc
        if not delays:
            raise ValueError("RECONCILE_CHECK_DELAYS must contain at least one delay")
        if any(d < 0 for d in delays) or delays != sorted(delays):
            raise ValueError("RECONCILE_CHECK_DELAYS must be non-negative and ascending")
        return v

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: str, info) -> str:
        """Validate CORS origins are properly configured in production."""
        env = info.data.get("environment", "development")
        allow_local = info.data.get("allow_localhost_cors", False)
        host = info.data.get("host", "").lower()
        host_is_loopback = host in LOOPBACK_HOSTS or host.startswith("127.")
        if (
            env == "production"
            and not allow_local
            and not host_is_loopback
            and ("localhost" in v.lower() or "127.0.0.1" in v)
        ):
            raise ValueError(
                "CORS_ORIGINS should not include localhost in production. "
                "Configure production frontend URLs."
            )
        return v

    @model_validator(mode="after")
    def normalize_database_path(self) -> "Settings":
        """Ensure SQLite URLs point to backend/ regardless of CWD."""
        try:
            url = make_url(self.database_url)
        except Exception:
            return self

        if not url.get_backend_name().startswith("sqlite"):
            return self

        db_path = url.database
        if not db_path or db_path == ":memory:":
            return self

        path_obj = Path(db_path)
        if not path_obj.is_absolute():
            abs_path = (BACKEND_ROOT / path_obj).resolve()
            url = url.set(database=str(abs_path))
            self.database_url = url.render_as_string(hide_password=False)
        else:
            path_obj.parent.mkdir(parents=True, exist_ok=True)
        return self


# Global settings instance
settings = Settings()
if os.getenv("PYTEST_CURRENT_TEST"):
    settings.environment = "testing"
if settings.is_testing:
    settings.environment = "testing"
    if not settings.database_url.startswith("sqlite+aiosqlite"):
        settings.database_url = "sqlite+aiosqlite:///./yolo_transcript.db"
