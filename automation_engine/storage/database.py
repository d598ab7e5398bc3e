"""Database connection and session management."""

from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Global engine instance
_engine: Optional[Engine] = None

# Base class for all database models
Base = declarative_base()


def create_database_engine(database_url: str,
                           echo: bool = False,
                           connect_args: Optional[dict] = None) -> Engine:
    """Create a database engine with settings appropriate for the backend."""
    if connect_args is None:
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
        else:
            connect_args = {}

    # In-memory SQLite must share one connection across threads
    in_memory = database_url == "sqlite://" or ":memory:" in database_url
    if database_url.startswith("sqlite") and in_memory:
        return create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool,
            echo=echo
        )
    return create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args,
        pool_pre_ping=True
    )


def get_database_engine(database_url: Optional[str] = None,
                        echo: bool = False,
                        connect_args: Optional[dict] = None) -> Engine:
    """Get or create the global database engine."""
    global _engine

    if _engine is None:
        if database_url is None:
            from ..config import get_config
            config = get_config()
            database_url = config.database_url
            echo = echo or config.database_echo
        _engine = create_database_engine(database_url, echo=echo, connect_args=connect_args)

    return _engine


def reset_database_engine():
    """Reset the global database engine (mainly for testing)."""
    global _engine
    if _engine:
        _engine.dispose()
    _engine = None


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Optional[Engine] = None):
    """Create all database tables."""
    from . import models  # noqa: F401  registers the tables on Base.metadata
    Base.metadata.create_all(bind=engine or get_database_engine())


def drop_tables(engine: Optional[Engine] = None):
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=engine or get_database_engine())
