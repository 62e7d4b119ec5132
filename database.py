from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def build_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    eng = create_engine(database_url, connect_args=connect_args)
    if database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
        event.listen(eng, "begin", _begin_immediate)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    # pysqlite's own BEGIN handling is disabled so that _begin_immediate
    # controls when the write lock is taken.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _begin_immediate(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_session_factory(eng: Engine) -> sessionmaker:
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def get_session_factory() -> sessionmaker:
    global _engine, _session_factory
    if _session_factory is None:
        _engine = build_engine(get_settings().database_url)
        _session_factory = build_session_factory(_engine)
    return _session_factory


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Iterator[Session]:
    session: Session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
