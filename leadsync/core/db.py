# leadsync/core/db.py
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool

from leadsync.core.config import DATABASE_URL


def make_engine(url: str = DATABASE_URL):
    # For SQLite we need check_same_thread False; in-memory DBs must share one connection
    kwargs = {"pool_pre_ping": True, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = make_engine()

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Generator[Session, None, None]:
    """Non-FastAPI contexts (store, services)."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_all(bind=None) -> None:
    """Create all tables if they don't exist yet."""
    # Ensure models are imported so SQLAlchemy knows about them
    from leadsync import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
