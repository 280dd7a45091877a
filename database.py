from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from errors import PersistenceFailure

SQLITE_PRAGMAS = ("journal_mode=WAL", "foreign_keys=ON")


def _apply_sqlite_pragmas(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(f"PRAGMA {pragma};")
    cursor.close()


def build_engine(url: str) -> Engine:
    """Engine for ``url``; SQLite connections get WAL and enforced foreign keys."""
    is_sqlite = url.startswith("sqlite")
    eng = create_engine(
        url, connect_args={"check_same_thread": False} if is_sqlite else {}
    )
    if is_sqlite:
        event.listen(eng, "connect", _apply_sqlite_pragmas)
    return eng


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def commit_or_fail(session: Session) -> None:
    """Commit, or roll back and raise PersistenceFailure.

    After a rollback the session's objects are expired, so the next read
    reflects what is actually stored.
    """
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceFailure(f"Failed to persist changes: {exc}") from exc


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        commit_or_fail(session)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
