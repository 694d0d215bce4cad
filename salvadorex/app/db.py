import os
import sqlite3
from contextlib import contextmanager

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "sqlite_schema.sql")


@contextmanager
def db_connect(db_path: str):
    # One short-lived connection per operation so the UI threads and the sync
    # thread never share a sqlite3 handle.
    # - commit on success
    # - rollback on exception
    # - always close
    conn = sqlite3.connect(db_path, timeout=10)
    conn.row_factory = sqlite3.Row
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_db(db_path: str) -> None:
    if not os.path.exists(SCHEMA_PATH):
        raise RuntimeError(f"Missing schema file: {SCHEMA_PATH}")
    with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
        schema = f.read()
    parent = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(parent, exist_ok=True)
    with db_connect(db_path) as conn:
        # WAL lets the sync thread read pending rows while a shell writes.
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(schema)
