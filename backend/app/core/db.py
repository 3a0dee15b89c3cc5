from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .logging import get_logger
from .settings import get_settings
from ..services.errors import StorageError


logger = get_logger(__name__)
settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # Enrichment workers share the file with request threads.
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True, "pool_recycle": 3600}


ENGINE = create_engine(
    settings.database.url,
    echo=settings.database.echo,
    future=True,
    **_engine_kwargs(settings.database.url),
)

SessionLocal = sessionmaker(bind=ENGINE, autocommit=False, autoflush=False, expire_on_commit=False, future=True)


@contextmanager
def get_session() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Unit of work: commit on success, roll back on any error.

    Database errors surface as StorageError so callers never mistake a lost
    write for a successful one.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Database unit of work failed: %s", exc)
        raise StorageError(str(exc)) from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    from ..models import Base

    Base.metadata.create_all(bind=ENGINE)
    logger.info("Database schema ensured on %s", ENGINE.url.render_as_string(hide_password=True))
