# Database connection and session management (SQLAlchemy)

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Base class for all database models
Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine for the job store.

    SQLite connections are shared between the dispatch loop and worker threads,
    so the same-thread check is disabled for that dialect.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    return create_engine(
        database_url,
        pool_pre_ping=True,  # Check connection before using
        pool_recycle=300,    # Recycle connections after 5 minutes
        echo=False,          # Set to True for SQL query logging in development
        connect_args=connect_args,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine):
    """Create all tables defined in models. Call this once during startup."""
    # Import models so they register on Base.metadata
    from vidingest import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def drop_tables(engine: Engine):
    """Drop all tables. Use with caution!"""
    Base.metadata.drop_all(bind=engine)
