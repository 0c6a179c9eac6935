"""
SQLite database initialisation and helpers for the job store.
"""

import os
import sqlite3
from contextlib import contextmanager

from statement_extractor.config import DATABASE_PATH

_SCHEMA = """
CREATE TABLE IF NOT EXISTS processing_jobs (
    id                      TEXT PRIMARY KEY,
    user_id                 TEXT NOT NULL,
    status                  TEXT NOT NULL DEFAULT 'pending',
    file_name               TEXT,
    file_size               INTEGER,
    total_pages             INTEGER,
    chunks_total            INTEGER,
    chunks_processed        INTEGER NOT NULL DEFAULT 0,
    total_transactions      INTEGER NOT NULL DEFAULT 0,
    validated_transactions  INTEGER NOT NULL DEFAULT 0,
    final_transactions      INTEGER NOT NULL DEFAULT 0,
    progress_percentage     REAL NOT NULL DEFAULT 0,
    result_json             TEXT,
    error_message           TEXT,
    started_at              TEXT,
    completed_at            TEXT,
    created_at              TEXT NOT NULL,
    updated_at              TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_user ON processing_jobs(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON processing_jobs(status);
"""


def _ensure_dir(path: str):
    db_dir = os.path.dirname(path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)


def init_db(db_path: str | None = None):
    """Create tables if they don't exist yet."""
    path = db_path or DATABASE_PATH
    _ensure_dir(path)
    conn = sqlite3.connect(path)
    conn.executescript(_SCHEMA)
    conn.close()


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    path = db_path or DATABASE_PATH
    _ensure_dir(path)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def get_db(db_path: str | None = None):
    """Context manager that yields a connection and auto-commits/rollbacks."""
    conn = get_connection(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
