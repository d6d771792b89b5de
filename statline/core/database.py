"""
Database configuration and session management.

The engine is created lazily so importing models never opens a connection.
"""
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

_engine = None
_SessionLocal = None


def get_engine():
    """Get or create the database engine."""
    global _engine, _SessionLocal

    if _engine is None:
        from statline.core.config import settings

        engine_kwargs = {"echo": settings.SQL_ECHO}
        if settings.DATABASE_URL.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs.update(pool_size=10, max_overflow=20, pool_pre_ping=True)

        _engine = create_engine(settings.DATABASE_URL, **engine_kwargs)
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    return _engine


def SessionLocal() -> Session:
    """Create a new session bound to the configured engine."""
    get_engine()
    return _SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """
    Provide a database session that is closed afterwards.

    Usage:
    ```python
    db = next(get_db())
    ```
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database tables."""
    from statline.models.models import Base
    Base.metadata.create_all(bind=get_engine(), checkfirst=True)
