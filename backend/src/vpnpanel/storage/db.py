"""SQLAlchemy engine, declarative base and the transactional session scope."""

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from vpnpanel.logging_config import get_logger
from vpnpanel.settings import settings

logger = get_logger(__name__)

Base = declarative_base()


def engine_options(database_url: str) -> dict[str, Any]:
    """Dialect specific engine arguments."""
    if make_url(database_url).get_backend_name() == "sqlite":
        # TestClient runs sync handlers in worker threads
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


class Database:
    """Owns the engine and hands out sessions that commit or roll back as a unit."""

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or settings.database_url
        self.engine = create_engine(
            self.database_url,
            echo=settings.db_echo,
            **engine_options(self.database_url),
        )
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        logger.info("database_initialized", dialect=self.engine.dialect.name)

    def _load_models(self) -> None:
        import vpnpanel.storage.models  # noqa: F401

    def create_tables(self) -> None:
        self._load_models()
        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created", count=len(Base.metadata.tables))

    def drop_tables(self) -> None:
        self._load_models()
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("tables_dropped", count=len(Base.metadata.tables))

    def ping(self) -> bool:
        """True when the database answers a trivial query."""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("database_unreachable", error=str(e))
            return False
        return True

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session whose pending changes commit when the block exits cleanly.

        Services may commit earlier to read generated ids back; any error
        raised inside the block rolls back what is still pending.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


db = Database()
