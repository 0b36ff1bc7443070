"""Database connection and session management."""

from contextlib import contextmanager
from typing import Iterator, Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Base class for all database models
Base = declarative_base()


def create_database_engine(database_url: str,
                           echo: bool = False,
                           connect_args: Optional[dict] = None,
                           pool_size: int = 5,
                           max_overflow: int = 10) -> Engine:
    """Create a database engine with settings appropriate for the backend."""
    if database_url.startswith("sqlite"):
        if connect_args is None:
            connect_args = {"check_same_thread": False}
        kwargs = {"connect_args": connect_args, "echo": echo}
        # In-memory databases live on a single connection
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args or {},
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True
    )


class Database:
    """Explicit store handle passed to every component that touches persistence.

    Each request or workflow run opens its own session from the handle; there
    is no module-level engine.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False, **kwargs) -> "Database":
        return cls(create_database_engine(database_url, echo=echo, **kwargs))

    @classmethod
    def from_config(cls, config) -> "Database":
        return cls(create_database_engine(
            config.database_url,
            echo=config.database_echo,
            connect_args=config.get_database_connect_args(),
            pool_size=config.database_pool_size,
            max_overflow=config.database_max_overflow
        ))

    def create_session(self) -> Session:
        return self._session_factory()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that is rolled back on error and always closed."""
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create_tables(self):
        """Create all database tables."""
        # Importing the models registers them on Base.metadata
        from . import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self):
        """Drop all database tables."""
        from . import models  # noqa: F401
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self):
        self.engine.dispose()
