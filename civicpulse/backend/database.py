from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from config import settings

IS_SQLITE = settings.database_url.startswith("sqlite:")

# Execution option marking a session transaction as a writer (see begin_write).
WRITE_OPTION = "civicpulse_write"

# WAL lets dashboards read while a submission writes; busy_timeout makes concurrent
# submissions queue on the write lock instead of failing with "database is locked".
SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=60000",
)

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False, "timeout": 60} if IS_SQLITE else {},
    pool_pre_ping=True,
)

if IS_SQLITE:

    @event.listens_for(engine, "connect")
    def _on_sqlite_connect(dbapi_connection, _record) -> None:
        # pysqlite opens transactions implicitly and breaks SAVEPOINT; emit BEGIN ourselves
        # so Session.begin_nested() works for the cluster compare-and-create.
        dbapi_connection.isolation_level = None
        cur = dbapi_connection.cursor()
        for pragma in SQLITE_PRAGMAS:
            cur.execute(pragma)
        cur.close()

    @event.listens_for(engine, "begin")
    def _on_sqlite_begin(conn) -> None:
        # Writers take the write lock up front: a deferred BEGIN that reads first would keep a
        # snapshot that fails with SQLITE_BUSY_SNAPSHOT (no busy_timeout wait) once another
        # writer commits.
        if conn.get_execution_options().get(WRITE_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def begin_write(db: Session) -> None:
    """
    Start the session's transaction as a write unit of work.

    Any transaction still open on the session (a read from an earlier step) is ended first,
    so the unit sees everything committed before it. On SQLite the transaction starts with
    BEGIN IMMEDIATE, so concurrent writers queue on busy_timeout instead of failing.
    """
    if db.in_transaction():
        db.rollback()
    db.connection(execution_options={WRITE_OPTION: True})


@contextmanager
def write_unit(db: Session) -> Iterator[Session]:
    """begin_write, plus rollback on any error so a rejected request never keeps the write lock."""
    begin_write(db)
    try:
        yield db
    except Exception:
        db.rollback()
        raise


@contextmanager
def session_scope() -> Iterator[Session]:
    """Unit of work for scripts and startup hooks: commit on success, roll back on error."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
