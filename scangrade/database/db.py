"""Database connection and session management."""

import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ..config import DATABASE_PATH, get_database_url
from .models import Base

logger = logging.getLogger("scangrade.database")

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_engine(url: Optional[str] = None) -> Engine:
    """Get (or create) the shared engine. Passing a URL replaces it."""
    global _engine, _SessionLocal
    if _engine is None or url is not None:
        url = url or get_database_url()
        if url.startswith("sqlite:///") and url == f"sqlite:///{DATABASE_PATH}":
            DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, connect_args=connect_args)
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def init_db(url: Optional[str] = None) -> Engine:
    """Create all tables."""
    engine = get_engine(url)
    Base.metadata.create_all(bind=engine)
    logger.debug("Database initialized at %s", engine.url)
    return engine


@contextmanager
def get_session() -> Session:
    """Yield a session; rolled back on error, always closed."""
    get_engine()
    session = _SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
