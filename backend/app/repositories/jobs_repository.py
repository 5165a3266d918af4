from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal, cast
from uuid import uuid4

from backend.app.repositories.comment_records import CommentRecord, merge_comment_records
from backend.app.repositories.common import utc_iso_before, utc_now_iso
from backend.app.repositories.database import Database

LOGGER = logging.getLogger("brand_monitor.jobs")

JobStatus = Literal["queued", "running", "done", "error"]
ACTIVE_STATUSES: frozenset[str] = frozenset({"queued", "running"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"done", "error"})

QUEUED_MESSAGE = "Queued"
STARTING_MESSAGE = "Starting collection"
COMPLETE_MESSAGE = "Collection complete"
FAILED_MESSAGE = "Collection failed"


@dataclass(frozen=True)
class JobProgress:
    pages: int = 0
    comments: int = 0
    message: str = QUEUED_MESSAGE


@dataclass(frozen=True)
class CollectionJob:
    """Read-only snapshot of one collection run."""

    job_id: str
    video_id: str
    video_url: str
    video_title: str
    order: str
    max_pages: int
    include_replies: bool
    status: JobStatus
    progress: JobProgress
    created_at: str
    updated_at: str
    comment_count: int = 0
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def generate_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{uuid4().hex[:8]}"


class JobsRepository(ABC):
    """
    Store for collection jobs and their accumulated comments.

    Status only moves forward: `queued -> running -> done | error`. Transition
    methods return False instead of raising when the job is unknown or not in a
    state that allows the transition, so a late or repeated terminal write never
    overrides the first one.
    """

    def __init__(self, *, retention_seconds: int = 0) -> None:
        self._retention_seconds = max(0, retention_seconds)

    @abstractmethod
    def create(
        self,
        *,
        video_id: str,
        video_url: str,
        video_title: str,
        order: str,
        max_pages: int,
        include_replies: bool,
        seed_comments: Iterable[CommentRecord] = (),
    ) -> CollectionJob: ...

    @abstractmethod
    def get(self, job_id: str) -> CollectionJob | None: ...

    @abstractmethod
    def list_recent(self, limit: int | None = None) -> list[CollectionJob]: ...

    @abstractmethod
    def list_comments(self, job_id: str) -> list[CommentRecord] | None: ...

    @abstractmethod
    def start(self, job_id: str) -> bool: ...

    @abstractmethod
    def record_progress(self, job_id: str, *, pages: int, comments: int, message: str) -> bool: ...

    @abstractmethod
    def complete(self, job_id: str, records: Iterable[CommentRecord]) -> bool: ...

    @abstractmethod
    def fail(self, job_id: str, message: str) -> bool: ...

    @abstractmethod
    def rename(
        self,
        job_id: str,
        title: str,
        *,
        expected_title: str | None = None,
    ) -> CollectionJob | None:
        """Set the display title; with `expected_title`, only if the title is still that value."""

    @abstractmethod
    def evict_expired(self, now: datetime | None = None) -> int: ...

    def _eviction_cutoff(self, now: datetime | None) -> str | None:
        if self._retention_seconds <= 0:
            return None
        return utc_iso_before(self._retention_seconds, now=now)


@dataclass
class _JobEntry:
    job: CollectionJob
    comments: list[CommentRecord]
    lock: threading.Lock = field(default_factory=threading.Lock)


class InMemoryJobsRepository(JobsRepository):
    def __init__(self, *, retention_seconds: int = 0) -> None:
        super().__init__(retention_seconds=retention_seconds)
        self._lock = threading.Lock()
        self._entries: dict[str, _JobEntry] = {}

    def create(
        self,
        *,
        video_id: str,
        video_url: str,
        video_title: str,
        order: str,
        max_pages: int,
        include_replies: bool,
        seed_comments: Iterable[CommentRecord] = (),
    ) -> CollectionJob:
        self.evict_expired()
        now = utc_now_iso()
        comments = merge_comment_records((), seed_comments)
        job = CollectionJob(
            job_id=generate_job_id(),
            video_id=video_id,
            video_url=video_url,
            video_title=video_title,
            order=order,
            max_pages=max_pages,
            include_replies=include_replies,
            status="queued",
            progress=JobProgress(),
            created_at=now,
            updated_at=now,
            comment_count=len(comments),
        )
        with self._lock:
            self._entries[job.job_id] = _JobEntry(job=job, comments=comments)
        return job

    def get(self, job_id: str) -> CollectionJob | None:
        entry = self._entry(job_id)
        if entry is None:
            return None
        with entry.lock:
            return entry.job

    def list_recent(self, limit: int | None = None) -> list[CollectionJob]:
        with self._lock:
            entries = list(self._entries.values())
        jobs = [entry.job for entry in reversed(entries)]
        if limit is not None:
            return jobs[: max(0, limit)]
        return jobs

    def list_comments(self, job_id: str) -> list[CommentRecord] | None:
        entry = self._entry(job_id)
        if entry is None:
            return None
        with entry.lock:
            return list(entry.comments)

    def start(self, job_id: str) -> bool:
        entry = self._entry(job_id)
        if entry is None:
            return False
        with entry.lock:
            if entry.job.status != "queued":
                return False
            entry.job = replace(
                entry.job,
                status="running",
                progress=replace(entry.job.progress, message=STARTING_MESSAGE),
                updated_at=utc_now_iso(),
            )
            return True

    def record_progress(self, job_id: str, *, pages: int, comments: int, message: str) -> bool:
        entry = self._entry(job_id)
        if entry is None:
            return False
        with entry.lock:
            current = entry.job.progress
            if entry.job.status != "running":
                return False
            if pages < current.pages or comments < current.comments:
                return False
            entry.job = replace(
                entry.job,
                progress=JobProgress(pages=pages, comments=comments, message=message),
                updated_at=utc_now_iso(),
            )
            return True

    def complete(self, job_id: str, records: Iterable[CommentRecord]) -> bool:
        entry = self._entry(job_id)
        if entry is None:
            return False
        with entry.lock:
            if entry.job.status != "running":
                return False
            merged = merge_comment_records(entry.comments, records)
            entry.comments = merged
            entry.job = replace(
                entry.job,
                status="done",
                progress=replace(
                    entry.job.progress,
                    comments=len(merged),
                    message=COMPLETE_MESSAGE,
                ),
                comment_count=len(merged),
                updated_at=utc_now_iso(),
            )
            return True

    def fail(self, job_id: str, message: str) -> bool:
        entry = self._entry(job_id)
        if entry is None:
            return False
        with entry.lock:
            if entry.job.status not in ACTIVE_STATUSES:
                return False
            entry.job = replace(
                entry.job,
                status="error",
                error=message,
                progress=replace(entry.job.progress, message=FAILED_MESSAGE),
                updated_at=utc_now_iso(),
            )
            return True

    def rename(
        self,
        job_id: str,
        title: str,
        *,
        expected_title: str | None = None,
    ) -> CollectionJob | None:
        entry = self._entry(job_id)
        if entry is None:
            return None
        normalized = title.strip()
        with entry.lock:
            if not normalized:
                return entry.job
            if expected_title is not None and entry.job.video_title != expected_title:
                return entry.job
            entry.job = replace(entry.job, video_title=normalized)
            return entry.job

    def evict_expired(self, now: datetime | None = None) -> int:
        cutoff = self._eviction_cutoff(now)
        if cutoff is None:
            return 0
        with self._lock:
            expired = [
                job_id
                for job_id, entry in self._entries.items()
                if entry.job.is_terminal and entry.job.updated_at < cutoff
            ]
            for job_id in expired:
                del self._entries[job_id]
        if expired:
            LOGGER.info("evicted expired collection jobs count=%s", len(expired))
        return len(expired)

    def _entry(self, job_id: str) -> _JobEntry | None:
        with self._lock:
            return self._entries.get(job_id)


class SqliteJobsRepository(JobsRepository):
    def __init__(self, db: Database, *, retention_seconds: int = 0) -> None:
        super().__init__(retention_seconds=retention_seconds)
        self._db = db
        # Transitions read then write; serialize them within the process.
        self._write_lock = threading.Lock()

    def create(
        self,
        *,
        video_id: str,
        video_url: str,
        video_title: str,
        order: str,
        max_pages: int,
        include_replies: bool,
        seed_comments: Iterable[CommentRecord] = (),
    ) -> CollectionJob:
        self.evict_expired()
        job_id = generate_job_id()
        now = utc_now_iso()
        comments = merge_comment_records((), seed_comments)
        with self._write_lock, self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO collection_jobs (
                    id, video_id, video_url, video_title, comment_order, max_pages,
                    include_replies, status, progress_pages, progress_comments,
                    progress_message, error, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 'queued', 0, 0, ?, NULL, ?, ?)
                """,
                (
                    job_id,
                    video_id,
                    video_url,
                    video_title,
                    order,
                    max_pages,
                    1 if include_replies else 0,
                    QUEUED_MESSAGE,
                    now,
                    now,
                ),
            )
            _replace_comments(conn, job_id, comments)

        return CollectionJob(
            job_id=job_id,
            video_id=video_id,
            video_url=video_url,
            video_title=video_title,
            order=order,
            max_pages=max_pages,
            include_replies=include_replies,
            status="queued",
            progress=JobProgress(),
            created_at=now,
            updated_at=now,
            comment_count=len(comments),
        )

    def get(self, job_id: str) -> CollectionJob | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"{_JOB_SELECT_SQL} WHERE j.id = ?",
                (job_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_job(row)

    def list_recent(self, limit: int | None = None) -> list[CollectionJob]:
        query = f"{_JOB_SELECT_SQL} ORDER BY j.created_at DESC, j.rowid DESC"
        params: tuple[Any, ...] = ()
        if limit is not None:
            query = f"{query} LIMIT ?"
            params = (max(0, limit),)
        with self._db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_job(row) for row in rows]

    def list_comments(self, job_id: str) -> list[CommentRecord] | None:
        with self._db.connection() as conn:
            exists = conn.execute(
                "SELECT 1 FROM collection_jobs WHERE id = ?",
                (job_id,),
            ).fetchone()
            if exists is None:
                return None
            return _load_comments(conn, job_id)

    def start(self, job_id: str) -> bool:
        with self._write_lock, self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE collection_jobs
                SET status = 'running', progress_message = ?, updated_at = ?
                WHERE id = ? AND status = 'queued'
                """,
                (STARTING_MESSAGE, utc_now_iso(), job_id),
            )
            return cursor.rowcount == 1

    def record_progress(self, job_id: str, *, pages: int, comments: int, message: str) -> bool:
        with self._write_lock, self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE collection_jobs
                SET progress_pages = ?, progress_comments = ?, progress_message = ?,
                    updated_at = ?
                WHERE id = ? AND status = 'running'
                  AND progress_pages <= ? AND progress_comments <= ?
                """,
                (pages, comments, message, utc_now_iso(), job_id, pages, comments),
            )
            return cursor.rowcount == 1

    def complete(self, job_id: str, records: Iterable[CommentRecord]) -> bool:
        with self._write_lock, self._db.connection() as conn:
            row = conn.execute(
                "SELECT status FROM collection_jobs WHERE id = ?",
                (job_id,),
            ).fetchone()
            if row is None or str(row["status"]) != "running":
                return False

            merged = merge_comment_records(_load_comments(conn, job_id), records)
            _replace_comments(conn, job_id, merged)
            conn.execute(
                """
                UPDATE collection_jobs
                SET status = 'done', progress_comments = ?, progress_message = ?,
                    updated_at = ?
                WHERE id = ? AND status = 'running'
                """,
                (len(merged), COMPLETE_MESSAGE, utc_now_iso(), job_id),
            )
            return True

    def fail(self, job_id: str, message: str) -> bool:
        with self._write_lock, self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE collection_jobs
                SET status = 'error', error = ?, progress_message = ?, updated_at = ?
                WHERE id = ? AND status IN ('queued', 'running')
                """,
                (message, FAILED_MESSAGE, utc_now_iso(), job_id),
            )
            return cursor.rowcount == 1

    def rename(
        self,
        job_id: str,
        title: str,
        *,
        expected_title: str | None = None,
    ) -> CollectionJob | None:
        normalized = title.strip()
        if normalized:
            query = "UPDATE collection_jobs SET video_title = ? WHERE id = ?"
            params: tuple[Any, ...] = (normalized, job_id)
            if expected_title is not None:
                query = f"{query} AND video_title = ?"
                params = (*params, expected_title)
            with self._write_lock, self._db.connection() as conn:
                conn.execute(query, params)
        return self.get(job_id)

    def evict_expired(self, now: datetime | None = None) -> int:
        cutoff = self._eviction_cutoff(now)
        if cutoff is None:
            return 0
        with self._write_lock, self._db.connection() as conn:
            cursor = conn.execute(
                """
                DELETE FROM collection_jobs
                WHERE status IN ('done', 'error') AND updated_at < ?
                """,
                (cutoff,),
            )
            evicted = cursor.rowcount
        if evicted:
            LOGGER.info("evicted expired collection jobs count=%s", evicted)
        return evicted


_JOB_SELECT_SQL = """
SELECT j.*, (
    SELECT COUNT(*) FROM collected_comments c WHERE c.job_id = j.id
) AS comment_count
FROM collection_jobs j
"""


def _row_to_job(row: Any) -> CollectionJob:
    error = row["error"]
    return CollectionJob(
        job_id=str(row["id"]),
        video_id=str(row["video_id"]),
        video_url=str(row["video_url"]),
        video_title=str(row["video_title"]),
        order=str(row["comment_order"]),
        max_pages=int(row["max_pages"]),
        include_replies=bool(row["include_replies"]),
        status=cast(JobStatus, str(row["status"])),
        progress=JobProgress(
            pages=int(row["progress_pages"]),
            comments=int(row["progress_comments"]),
            message=str(row["progress_message"]),
        ),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
        comment_count=int(row["comment_count"]),
        error=str(error) if error is not None else None,
    )


def _load_comments(conn: Any, job_id: str) -> list[CommentRecord]:
    rows = conn.execute(
        """
        SELECT record_json
        FROM collected_comments
        WHERE job_id = ?
        ORDER BY position ASC
        """,
        (job_id,),
    ).fetchall()
    records: list[CommentRecord] = []
    for row in rows:
        try:
            payload = json.loads(str(row["record_json"]))
        except json.JSONDecodeError:
            LOGGER.warning("skipping unreadable stored comment job_id=%s", job_id)
            continue
        if isinstance(payload, dict):
            records.append(CommentRecord.from_dict(cast(dict[str, Any], payload)))
    return records


def _replace_comments(conn: Any, job_id: str, records: list[CommentRecord]) -> None:
    conn.execute("DELETE FROM collected_comments WHERE job_id = ?", (job_id,))
    conn.executemany(
        """
        INSERT INTO collected_comments (job_id, comment_id, position, updated_at, record_json)
        VALUES (?, ?, ?, ?, ?)
        """,
        [
            (
                job_id,
                record.comment_id,
                position,
                record.updated_at,
                json.dumps(record.to_dict(), sort_keys=True, ensure_ascii=False),
            )
            for position, record in enumerate(records)
        ],
    )
