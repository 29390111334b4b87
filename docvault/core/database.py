"""
Database configuration - engines, session factories and declarative bases
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Resources (departments, folders, documents) and ACL entries are separate
# persistence units joined only by (resource_type, resource_id).
Base = declarative_base()
AclBase = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, comparable with values read back from any backend."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_db_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares a single connection across threads."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in {"sqlite://", "sqlite:///"}:
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_size=5,
        max_overflow=10,
        echo=echo,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    # Objects stay readable after commit; services hand them back to callers.
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Context manager for a unit of work: commit on success, rollback on error."""
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("Transaction rolled back", exc_info=True)
        raise
    finally:
        session.close()


def init_database(engine: Engine) -> None:
    """Create the resource tables."""
    # Register mapped classes on Base before create_all.
    from docvault.models import resource  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Resource tables ready on %s", engine.url.render_as_string(hide_password=True))


def init_acl_database(engine: Engine) -> None:
    """Create the access control tables."""
    from docvault.models import acl  # noqa: F401

    AclBase.metadata.create_all(bind=engine)
    logger.info("ACL tables ready on %s", engine.url.render_as_string(hide_password=True))
