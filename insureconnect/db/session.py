import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from insureconnect.core.config import settings
from insureconnect.core.exceptions import TransientStorageError

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def configure_sqlite_locking(engine: Engine) -> None:
    """
    Make every SQLite transaction take the write lock at BEGIN.

    pysqlite defers BEGIN until the first DML statement, so a read followed by a
    write can interleave with another connection's write. BEGIN IMMEDIATE makes
    each unit of work serializable with respect to other writers.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    backend = url.get_backend_name()

    connect_args: dict = {}
    if backend.startswith("postgresql"):
        connect_args["options"] = "-c timezone=utc"
    elif backend == "sqlite":
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT_SECONDS

    engine = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)
    if backend == "sqlite":
        configure_sqlite_locking(engine)
    return engine


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def storage_guard(db: Session) -> Iterator[Session]:
    """
    Wrap one atomic unit of work.

    Any exception rolls the session back. Driver-level operational failures
    (lock timeouts, dropped connections) surface as TransientStorageError.
    """
    try:
        yield db
    except OperationalError as e:
        db.rollback()
        logger.warning("Storage operation failed: %s", e.__class__.__name__)
        raise TransientStorageError() from e
    except Exception:
        db.rollback()
        raise
