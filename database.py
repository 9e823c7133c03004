from __future__ import annotations

import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import TYPE_CHECKING, Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import Settings, get_settings

if TYPE_CHECKING:  # pragma: no cover
    from backends import StorageBackend


logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, **engine_kwargs) -> Engine:
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    eng = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    if database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.close()


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ensure_schema(engine: Engine) -> None:
    # Importing models registers the tables on Base.metadata.
    import models  # noqa: F401

    Base.metadata.create_all(engine)


def select_backend(settings: Settings) -> StorageBackend:
    from backends import MemoryBackend, SQLBackend

    if not settings.database_url:
        logger.warning(
            "backend_select: WALLET_DATABASE_URL not set; using in-memory store"
        )
        return MemoryBackend()

    try:
        engine = build_engine(settings.database_url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        if settings.auto_create_schema:
            ensure_schema(engine)
    except SQLAlchemyError as exc:
        logger.warning(
            f"backend_select: database unavailable ({exc.__class__.__name__}: {exc}); "
            "using in-memory store for this process"
        )
        return MemoryBackend()

    logger.info(f"backend_select: connected to {engine.url.render_as_string()}")
    return SQLBackend(engine)


@lru_cache(maxsize=1)
def get_backend() -> StorageBackend:
    return select_backend(get_settings())
