"""Alembic helpers used at application startup."""

import logging

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from app.config import PROJECT_ROOT

logger = logging.getLogger("app.migrations")

ALEMBIC_INI = PROJECT_ROOT / "alembic.ini"


def get_alembic_config() -> Config:
    """Alembic configuration for the project-level ``alembic.ini``."""
    if not ALEMBIC_INI.exists():
        raise FileNotFoundError(f"alembic.ini not found at {ALEMBIC_INI}")

    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(PROJECT_ROOT / "backend" / "alembic"))
    return config


async def check_migration_status(engine: AsyncEngine) -> tuple[str, str]:
    """Check current database migration status.

    Args:
        engine: AsyncEngine instance

    Returns:
        Tuple of (current_revision, head_revision); ``unknown`` for both when
        either cannot be determined
    """
    try:
        async with engine.begin() as conn:
            result = await conn.execute(text("SELECT version_num FROM alembic_version"))
            current = result.scalar_one_or_none()

        head = ScriptDirectory.from_config(get_alembic_config()).get_current_head()
        return (current or "none", head or "none")

    except Exception as e:
        logger.warning(f"Could not check migration status: {e}")
        return ("unknown", "unknown")
