"""Database engine and session management.

Postgres is the production backend (with the pgvector extension); any
other SQLAlchemy URL, SQLite in particular, works for local use and
tests with embeddings stored as JSON.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from docscan.utils.config import DatabaseConfig
from docscan.utils.logger import get_logger

logger = get_logger(__name__)

Base = declarative_base()


def create_db_engine(config: DatabaseConfig) -> Engine:
    """Create an engine for the configured database URL.

    In-memory SQLite shares one connection so every session sees the
    same database.
    """
    if config.url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if config.url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(config.url, echo=config.echo, **kwargs)
    return create_engine(config.url, echo=config.echo, pool_pre_ping=True)


def is_postgres(engine: Engine) -> bool:
    """Return whether the engine talks to Postgres."""
    return engine.dialect.name == "postgresql"


def init_db(engine: Engine) -> None:
    """Create the vector extension (on Postgres) and all tables."""
    from docscan.storage import models  # noqa: F401  register tables

    if is_postgres(engine):
        with engine.connect() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            conn.commit()
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized (%s)", engine.dialect.name)


class Database:
    """Session factory bound to one engine.

    Args:
        engine: SQLAlchemy engine to bind sessions to.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._factory = sessionmaker(
            bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    @property
    def supports_vector_ops(self) -> bool:
        return is_postgres(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""
        session = self._factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
