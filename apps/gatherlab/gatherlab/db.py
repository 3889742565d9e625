from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from sqlstratum.runner import Runner

from gatherlab.config import Config
from gatherlab.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def get_runner() -> Runner:
    db_path = Path(Config.DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(str(db_path))
    return Runner(conn)


@contextmanager
def write_transaction(runner: Runner):
    """Transaction that takes sqlite's write lock up front.

    Reads made inside it see no commits from other connections, so a check and
    the write it guards stay together. Nested use joins the open transaction.
    """
    if runner.connection.in_transaction:
        yield runner
        return
    with runner.transaction():
        runner.connection.execute("BEGIN IMMEDIATE")
        yield runner


def init_db() -> None:
    db_path = Path(Config.DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    fresh = not db_path.exists()
    conn = _connect(str(db_path))
    try:
        conn.executescript(SCHEMA_SQL)
        if fresh and Config.DB_SEED_PATH:
            logger.info("Seeding fresh database from %s", Config.DB_SEED_PATH)
            conn.executescript(Path(Config.DB_SEED_PATH).read_text())
        conn.commit()
    finally:
        conn.close()
