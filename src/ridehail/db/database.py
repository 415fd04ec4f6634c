"""Database engine initialization and connection management."""

import atexit
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker

from .schema import Base

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


def _scratch_db_path() -> str:
    """Private database file for one engine, removed at interpreter exit.

    A SQLite memory database lives on a single connection, so sessions on
    different threads would share one transaction. A throwaway file gives
    each session its own connection and lets BEGIN IMMEDIATE queue writers.
    """
    directory = tempfile.mkdtemp(prefix="ridehail-")
    atexit.register(shutil.rmtree, directory, ignore_errors=True)
    return str(Path(directory) / "ridehail.db")


def _use_immediate_transactions(engine: Engine) -> None:
    """Start every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so two sessions that both
    read a driver row before updating it can dead-end on lock upgrade.
    Taking the write lock at BEGIN makes concurrent writers queue on the
    busy timeout instead.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(db_path: str, busy_timeout_seconds: float = 30.0) -> Engine:
    if db_path == MEMORY_PATH:
        db_path = _scratch_db_path()
        logger.debug("In-memory database requested, using scratch file %s", db_path)
    else:
        # Ensure parent directory exists
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": busy_timeout_seconds},
    )
    _use_immediate_transactions(engine)
    return engine


def init_database(db_path: str, busy_timeout_seconds: float = 30.0) -> sessionmaker[Any]:
    """Initialize database and return session factory."""
    engine = create_db_engine(db_path, busy_timeout_seconds)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
