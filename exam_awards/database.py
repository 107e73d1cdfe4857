import sqlite3
from typing import Dict, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

# url -> engine
_ENGINE_CACHE: Dict[str, Engine] = {}


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores declared foreign keys unless enabled per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def get_engine(database_url: str) -> Engine:
    """
    database_url -> Engine (cached per url).
    In-memory SQLite shares one connection so every session sees the same tables.
    """
    eng = _ENGINE_CACHE.get(database_url)
    if eng is not None:
        return eng

    if not _is_sqlite(database_url):
        eng = create_engine(database_url, pool_pre_ping=True)
    elif database_url in ("sqlite://", "sqlite:///:memory:"):
        eng = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        eng = create_engine(database_url, connect_args={"check_same_thread": False})
    _ENGINE_CACHE[database_url] = eng
    return eng


def get_session_local(database_url: Optional[str] = None, engine: Optional[Engine] = None) -> sessionmaker:
    """
    Returns a sessionmaker bound to the given engine or url.
    Objects stay readable after commit; the store converts them to schemas right away.
    """
    if engine is None:
        if not database_url:
            raise ValueError("database_url or engine is required")
        engine = get_engine(database_url)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    # models must be imported so their tables are registered on Base.metadata
    from exam_awards import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
