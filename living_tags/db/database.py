"""Database engine, session factory and table creation."""

import logging
from collections.abc import Generator
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from living_tags.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_url = make_url(settings.database_url)
_is_sqlite = _url.get_backend_name() == "sqlite"

if _is_sqlite and _url.database not in (None, "", ":memory:"):
    Path(_url.database).parent.mkdir(parents=True, exist_ok=True)

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    pool_pre_ping=True,
)


@event.listens_for(engine, "connect")
def _configure_connection(dbapi_connection, connection_record):
    # Assignment rows rely on ON DELETE CASCADE from texts and tags
    if not _is_sqlite:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db() -> None:
    """Create the texts, tags and text_tags tables if missing."""
    from living_tags.db import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("database_initialized", extra={"database_url": _url.render_as_string()})


def get_db() -> Generator[Session, None, None]:
    """Yield a session for one request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
