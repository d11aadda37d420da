"""Application startup validation and health checks."""

import logging

from app.config import settings
from app.database import Base, engine

# Import models so metadata is populated for create_all safeguards
from app import models  # noqa: F401

logger = logging.getLogger("app.startup")


async def ensure_core_tables() -> None:
    """
    Guardrail: create any table missing from the database.

    A safety net for databases that were created before a table was added or
    had a table dropped while alembic already reports head. Idempotent.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)


def validate_configuration() -> list[str]:
    """Validate application configuration.

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    if settings.is_production:
        if settings.secret_key == "dev-secret-key-change-in-production":
            errors.append("SECRET_KEY is still set to its default value in production.")
        elif len(settings.secret_key) < 32:
            errors.append(
                f"SECRET_KEY is too short ({len(settings.secret_key)} chars). "
                "Use at least 32 characters in production."
            )

        origins_lower = settings.cors_origins.lower()
        if not settings.allow_localhost_cors and (
            "localhost" in origins_lower or "127.0.0.1" in origins_lower
        ):
            errors.append(
                "CORS_ORIGINS contains localhost/127.0.0.1 in production. "
                "Configure production frontend URLs."
            )

        if not settings.assemblyai_api_key:
            errors.append("ASSEMBLYAI_API_KEY is required in production")

    if not settings.database_url:
        errors.append("DATABASE_URL is not configured")

    return errors


def validate_environment() -> list[str]:
    """Report optional integrations that are not configured.

    Returns:
        List of validation warnings (not fatal)
    """
    warnings = []
    if not settings.assemblyai_api_key:
        warnings.append("ASSEMBLYAI_API_KEY is not set; transcription requests will fail")
    if not settings.google_client_id or not settings.google_client_secret:
        warnings.append("GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET are not set; Drive sync is disabled")
    if not settings.paddle_webhook_secret:
        warnings.append("PADDLE_WEBHOOK_SECRET is not set; payment webhooks will be rejected")
    return warnings


async def run_startup_checks() -> None:
    """Run all startup validation checks.

    Raises:
        RuntimeError: If critical configuration errors are found
    """
    logger.info("Running startup validation checks...")

    await ensure_core_tables()

    config_errors = validate_configuration()
    if config_errors:
        logger.error("Configuration validation failed:")
        for error in config_errors:
            logger.error(f"  - {error}")
        raise RuntimeError(
            f"Configuration validation failed with {len(config_errors)} error(s). "
            "Fix configuration and restart."
        )

    logger.info("Configuration validation passed")

    env_warnings = validate_environment()
    if env_warnings:
        logger.warning("Environment checks found issues:")
        for warning in env_warnings:
            logger.warning(f"  - {warning}")
    else:
        logger.info("Environment validation passed")

    logger.info("Startup validation completed")
