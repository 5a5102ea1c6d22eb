# database.py

import logging

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for our database models
Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    """Create the pooled engine for the given database URL."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # In-memory databases only live as long as their single connection.
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
        # SQLite ignores ON DELETE clauses unless asked.
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    else:
        # At most 25 open connections, 10 of them kept idle.
        engine = create_engine(database_url, pool_size=10, max_overflow=15, pool_pre_ping=True)

    logging.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_database(engine: Engine) -> None:
    """Create every table that does not exist yet."""
    import models  # noqa: F401  registers the mappers on Base

    Base.metadata.create_all(bind=engine)


# Dependency for FastAPI to get a DB session from the app's own session factory
def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
