from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS collection_jobs (
    id TEXT PRIMARY KEY,
    video_id TEXT NOT NULL,
    video_url TEXT NOT NULL,
    video_title TEXT NOT NULL,
    comment_order TEXT NOT NULL,
    max_pages INTEGER NOT NULL,
    include_replies INTEGER NOT NULL,
    status TEXT NOT NULL,
    progress_pages INTEGER NOT NULL,
    progress_comments INTEGER NOT NULL,
    progress_message TEXT NOT NULL,
    error TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_collection_jobs_created_at
ON collection_jobs(created_at DESC);

CREATE INDEX IF NOT EXISTS idx_collection_jobs_status_updated
ON collection_jobs(status, updated_at);

CREATE TABLE IF NOT EXISTS collected_comments (
    job_id TEXT NOT NULL,
    comment_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    updated_at TEXT NOT NULL,
    record_json TEXT NOT NULL,
    PRIMARY KEY (job_id, comment_id),
    FOREIGN KEY(job_id) REFERENCES collection_jobs(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_collected_comments_job_position
ON collected_comments(job_id, position);
"""


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            # Lets status polls read while a collection run is writing.
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA_SQL)
