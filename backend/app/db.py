from collections.abc import AsyncGenerator

from loguru import logger
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from backend.app.config import DATA_DIR, DATABASE_URL


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _set_sqlite_pragmas(dbapi_conn, connection_record):  # noqa: ARG001
    """Apply SQLite PRAGMAs on every new connection from the pool.

    PRAGMAs like foreign_keys and busy_timeout are per-connection, so they
    must be set every time a new connection is opened.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.execute("PRAGMA synchronous = NORMAL")
    cursor.execute("PRAGMA cache_size = -64000")
    cursor.execute("PRAGMA temp_store = MEMORY")
    cursor.close()


event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Run Alembic migrations after switching the database to WAL mode."""
    import backend.app.models  # noqa: F401  (registers the models)

    DATA_DIR.mkdir(parents=True, exist_ok=True)

    async with engine.begin() as conn:
        # WAL mode persists in the database file; the per-connection PRAGMAs
        # are applied by _set_sqlite_pragmas.
        await conn.execute(text("PRAGMA journal_mode = WAL"))

    run_migrations()


def run_migrations(database_url: str = DATABASE_URL) -> None:
    """Run Alembic migrations to HEAD using a sync engine.

    Databases created by ``create_all`` (no ``alembic_version`` table) are
    stamped at HEAD instead of migrated.
    """
    from pathlib import Path

    from alembic import command
    from alembic.config import Config
    from sqlalchemy import create_engine, inspect

    project_root = Path(__file__).resolve().parent.parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "migrations"))

    sync_url = database_url.replace("+aiosqlite", "")
    alembic_cfg.set_main_option("sqlalchemy.url", sync_url)

    sync_engine = create_engine(sync_url)
    with sync_engine.begin() as connection:
        alembic_cfg.attributes["connection"] = connection
        tables = inspect(connection).get_table_names()

        if tables and "alembic_version" not in tables:
            logger.info("Existing database found without migration history, stamping HEAD.")
            command.stamp(alembic_cfg, "head")
        else:
            logger.info("Running database migrations...")
            command.upgrade(alembic_cfg, "head")
            logger.info("Database migrations complete.")

    sync_engine.dispose()
