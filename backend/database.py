"""
Relational store handle for the Taskboard API.

The engine and session factory live on an explicitly constructed ``Database``
object that is opened at process start and closed at shutdown. The FastAPI
application keeps it on ``app.state.database``; tests attach an in-memory
instance before the client starts.
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./taskboard.db")
DATABASE_ECHO = os.environ.get("DATABASE_ECHO", "false").lower() in ("1", "true", "yes")

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless foreign keys are on for the connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the engine and session factory for one store."""

    def __init__(self, url: str = DATABASE_URL, echo: bool = DATABASE_ECHO):
        self.url = url
        self.echo = echo
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def open(self, create_schema: bool = True) -> "Database":
        if self.is_open:
            return self

        logger.info(f"Opening database connection: {self.url.split('@')[-1]}")
        if self.url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
            if ":memory:" in self.url:
                # One shared connection, otherwise every session sees an empty database
                self.engine = create_engine(
                    self.url, echo=self.echo, connect_args=connect_args, poolclass=StaticPool
                )
            else:
                self.engine = create_engine(self.url, echo=self.echo, connect_args=connect_args)
        else:
            self.engine = create_engine(self.url, echo=self.echo, pool_pre_ping=True)

        if self.url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

        if create_schema:
            # Import here so every table is registered on Base.metadata
            import models  # noqa: F401

            Base.metadata.create_all(bind=self.engine)
            logger.debug("Database schema ensured")
        return self

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database connection closed")
        self.engine = None
        self._session_factory = None

    def session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Session for work outside a request, e.g. a WebSocket message."""
        db = self.session()
        try:
            yield db
        finally:
            db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Commit everything written inside the block, or nothing.

    Any exception raised in the block (or by the commit itself) rolls the
    session back and propagates to the caller.
    """
    try:
        yield db
        db.commit()
    except Exception:
        logger.debug("Rolling back transaction")
        db.rollback()
        raise


def get_db(request: Request) -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    database: Database = request.app.state.database
    db = database.session()
    try:
        yield db
    finally:
        db.close()
