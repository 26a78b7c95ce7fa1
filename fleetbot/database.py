"""SQLModel engine and session management

SQLite is the default store. File databases run in WAL mode so the health
sweep, command handlers and signal handlers can read while one of them writes.
"""

import os
from typing import Any, Dict, Optional
from sqlmodel import SQLModel, Session, create_engine, func, select
from sqlalchemy import text
from sqlalchemy.engine import Engine

from fleetbot.config import settings
from fleetbot.models.bot_record import BOT_STATUS_RUNNING, BotRecord
from fleetbot.models.bot_settings import BotSettings  # noqa: F401
from fleetbot.models.connection_episode import ConnectionEpisode
from fleetbot.models.user import User
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA cache_size=-64000",
    "PRAGMA temp_store=MEMORY",
)

REQUIRED_TABLES = ("users", "bots", "botsettings", "connection_episodes")


def sqlite_file_path(database_url: str) -> Optional[str]:
    """Filesystem path of a 'file:' or 'sqlite:///' url; None for anything else"""
    for prefix in ("file:", "sqlite:///"):
        if database_url.startswith(prefix):
            path = database_url[len(prefix):]
            return path[2:] if path.startswith("./") else path
    return None


def normalize_database_url(database_url: str) -> str:
    """SQLAlchemy url for the configured database, creating its directory"""
    path = sqlite_file_path(database_url)
    if path is None:
        return database_url
    if path == ":memory:":
        return "sqlite:///:memory:"

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return "sqlite:///" + path.replace("\\", "/")


class DatabaseService:
    """Holds the engine; every unit of work opens its own Session"""

    def __init__(self):
        self.engine: Optional[Engine] = None

    def initialize(self):
        url = normalize_database_url(settings.database_url)
        try:
            if url.startswith("sqlite:"):
                self.engine = create_engine(
                    url,
                    connect_args={"check_same_thread": False},
                    pool_pre_ping=True,
                    pool_recycle=3600,
                )
                if url != "sqlite:///:memory:":
                    self._apply_pragmas()
            else:
                self.engine = create_engine(
                    url,
                    pool_pre_ping=True,
                    pool_size=5,
                    max_overflow=10,
                    pool_recycle=3600,
                )

            SQLModel.metadata.create_all(self.engine)
            self._check_integrity()
            logger.debug(f"🗄️ Database ready: {url.rsplit('/', 1)[-1]}")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def _apply_pragmas(self):
        with self.engine.connect() as conn:
            for pragma in SQLITE_PRAGMAS:
                conn.exec_driver_sql(pragma)
            conn.commit()

    def _check_integrity(self):
        """Log (never raise) when SQLite reports corruption or missing tables"""
        if self.engine.dialect.name != "sqlite":
            return

        try:
            with self.engine.connect() as conn:
                status = conn.execute(text("PRAGMA integrity_check")).scalar()
                if status != "ok":
                    logger.warning(f"SQLite integrity check: {status}")

                names = conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
                present = {row[0] for row in names}
                missing = [table for table in REQUIRED_TABLES if table not in present]
                if missing:
                    logger.warning(f"Tables missing after create_all: {missing}")
        except Exception as e:
            logger.warning(f"SQLite integrity check could not run: {e}")

    def get_session(self) -> Session:
        if not self.engine:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return Session(self.engine)

    async def health_check(self) -> bool:
        try:
            with self.get_session() as session:
                session.exec(select(1)).first()
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def get_stats(self) -> Dict[str, Any]:
        """Row counts for the /stats endpoint"""

        def count(session: Session, model, *where) -> int:
            return session.exec(select(func.count()).select_from(model).where(*where)).one()

        try:
            with self.get_session() as session:
                return {
                    "database": {
                        "total_users": count(session, User),
                        "total_bots": count(session, BotRecord),
                        "running_bots": count(session, BotRecord, BotRecord.status == BOT_STATUS_RUNNING),
                        "connection_episodes": count(session, ConnectionEpisode),
                    }
                }
        except Exception as e:
            logger.error(f"Failed to collect database stats: {e}")
            return {"database": {}}

    async def vacuum_and_analyze(self):
        """Compact the SQLite file after history cleanup"""
        if not self.engine or self.engine.dialect.name != "sqlite":
            return

        try:
            # VACUUM refuses to run inside a transaction
            with self.engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
                conn.execute(text("VACUUM"))
                conn.execute(text("ANALYZE"))
        except Exception as e:
            logger.error(f"VACUUM/ANALYZE failed: {e}")

    def close(self):
        if self.engine:
            self.engine.dispose()
            self.engine = None


# Global database instance
database = DatabaseService()
