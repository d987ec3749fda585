"""
Migration Runner - applies pending Alembic migrations at startup.

Enabled with RUN_MIGRATIONS_ON_STARTUP=true. Alembic's command API is
synchronous, so the async driver in DATABASE_URL is swapped for psycopg2.
"""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from premium_entitlements.config import settings

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


@dataclass(frozen=True)
class MigrationStatus:
    """Current and head revisions of the schema."""

    current_revision: str | None
    head_revision: str | None

    @property
    def pending(self) -> bool:
        return self.current_revision != self.head_revision


def sync_database_url(url: str) -> str:
    """Convert an asyncpg URL to its psycopg2 equivalent."""
    return url.replace("+asyncpg", "+psycopg2")


def _alembic_config(sync_url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))
    return alembic_cfg


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def check_migrations_status() -> MigrationStatus:
    """Read the schema revision without applying anything."""
    sync_url = sync_database_url(settings.database_url)
    alembic_cfg = _alembic_config(sync_url)
    engine = create_engine(sync_url)
    try:
        return MigrationStatus(
            current_revision=_get_current_revision(engine),
            head_revision=ScriptDirectory.from_config(alembic_cfg).get_current_head(),
        )
    finally:
        engine.dispose()


def run_migrations() -> None:
    """
    Run pending Alembic migrations.

    Raises:
        RuntimeError: The upgrade failed
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    try:
        migration_status = check_migrations_status()
        if not migration_status.pending:
            logger.info("database_schema_current", revision=migration_status.current_revision)
            return

        logger.info(
            "running_migrations",
            from_revision=migration_status.current_revision,
            to_revision=migration_status.head_revision,
        )
        command.upgrade(_alembic_config(sync_database_url(settings.database_url)), "head")
        logger.info("migrations_complete", revision=migration_status.head_revision)

    except Exception as e:
        logger.error("migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
