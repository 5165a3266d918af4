from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from dataclasses import dataclass
from functools import partial
from typing import Protocol, cast

from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.repositories.comment_records import CommentRecord
from backend.app.repositories.jobs_repository import CollectionJob, JobsRepository
from backend.app.services.comment_collector import (
    COMMENT_ORDERS,
    DEFAULT_PAGE_SIZE,
    DEFAULT_REPLY_EXPANSION_GAP_THRESHOLD,
    CollectionCancelledError,
    CollectionTimeoutError,
    CommentOrder,
    CommentPageSource,
    collect_comments,
)
from backend.app.services.video_reference import resolve_video_id
from backend.app.services.youtube_client import (
    YouTubeApiError,
    YouTubeApiErrorKind,
    YouTubeServiceError,
)
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("brand_monitor.collection")


class CollectionClient(CommentPageSource, Protocol):
    def fetch_video_title(self, video_id: str) -> str | None:
        ...


class InvalidCollectionRequestError(ValueError):
    pass


class InvalidVideoReferenceError(InvalidCollectionRequestError):
    pass


@dataclass
class _ActiveRun:
    future: Future[None]
    cancel_event: threading.Event


def placeholder_title(video_id: str) -> str:
    return f"Video {video_id}"


def progress_message(pages: int, comments: int) -> str:
    return f"Processing page {pages} ({comments} comments collected)"


class CommentCollectionService:
    """
    Runs comment collection jobs on a bounded worker pool.

    `submit` validates the request, creates the job and returns immediately. Each
    job is walked by exactly one worker, which is the only writer of that job's
    progress and outcome. Every failure ends up on the job record as a readable
    message; nothing escapes into the pool.
    """

    def __init__(
        self,
        jobs_repository: JobsRepository,
        client: CollectionClient,
        *,
        max_workers: int = 4,
        timeout_seconds: float = 0,
        reply_gap_threshold: int = DEFAULT_REPLY_EXPANSION_GAP_THRESHOLD,
        page_size: int = DEFAULT_PAGE_SIZE,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._jobs = jobs_repository
        self._client = client
        self._timeout_seconds = max(0.0, timeout_seconds)
        self._reply_gap_threshold = max(0, reply_gap_threshold)
        self._page_size = page_size
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="brand-monitor-collector",
        )
        # Re-entrant: a done callback can fire inline while `submit` holds it.
        self._runs_lock = threading.RLock()
        self._runs: dict[str, _ActiveRun] = {}

    @property
    def jobs(self) -> JobsRepository:
        return self._jobs

    def submit(
        self,
        video_reference: str,
        order: str = "time",
        max_pages: int = 5,
        include_replies: bool = False,
        *,
        base_job_id: str | None = None,
    ) -> str:
        video_id = resolve_video_id(video_reference)
        if video_id is None:
            raise InvalidVideoReferenceError(
                "Not a valid YouTube URL or video ID (watch, share, shorts and embed links are supported)."
            )
        if order not in COMMENT_ORDERS:
            raise InvalidCollectionRequestError(
                f"Unsupported comment order: {order}. Use one of: relevance, time."
            )
        if max_pages < 0:
            raise InvalidCollectionRequestError("max_pages must be zero (unbounded) or positive.")

        seed_comments: Iterable[CommentRecord] = ()
        if base_job_id is not None:
            seed_comments = self._load_base_comments(base_job_id, video_id=video_id)

        job = self._jobs.create(
            video_id=video_id,
            video_url=video_reference.strip(),
            video_title=placeholder_title(video_id),
            order=order,
            max_pages=max_pages,
            include_replies=include_replies,
            seed_comments=seed_comments,
        )
        LOGGER.info(
            "collection job queued job_id=%s video_id=%s order=%s max_pages=%s include_replies=%s",
            job.job_id,
            video_id,
            order,
            max_pages,
            include_replies,
        )

        cancel_event = threading.Event()
        with self._runs_lock:
            future = self._executor.submit(self._run_job, job, cancel_event)
            self._runs[job.job_id] = _ActiveRun(future=future, cancel_event=cancel_event)
            future.add_done_callback(partial(self._on_run_finished, job.job_id))
        return job.job_id

    def get(self, job_id: str) -> CollectionJob | None:
        return self._jobs.get(job_id)

    def list_recent(self, limit: int | None = None) -> list[CollectionJob]:
        return self._jobs.list_recent(limit)

    def list_comments(self, job_id: str) -> list[CommentRecord] | None:
        return self._jobs.list_comments(job_id)

    def rename(self, job_id: str, title: str) -> CollectionJob | None:
        return self._jobs.rename(job_id, title)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation. Returns False when the job is unknown or already finished."""
        job = self._jobs.get(job_id)
        if job is None or job.is_terminal:
            return False
        with self._runs_lock:
            run = self._runs.get(job_id)
        if run is None:
            return False

        run.cancel_event.set()
        if run.future.cancel():
            # Never started, so no worker will record the outcome.
            self._jobs.fail(job_id, describe_collection_error(CollectionCancelledError()))
        LOGGER.info("collection job cancellation requested job_id=%s", job_id)
        return True

    def wait(self, job_id: str, timeout: float | None = None) -> CollectionJob | None:
        with self._runs_lock:
            run = self._runs.get(job_id)
        if run is not None:
            wait_for_futures([run.future], timeout=timeout)
        return self._jobs.get(job_id)

    def shutdown(self, *, wait: bool = True) -> None:
        with self._runs_lock:
            runs = list(self._runs.items())
        for job_id, run in runs:
            run.cancel_event.set()
            if run.future.cancel():
                self._jobs.fail(job_id, describe_collection_error(CollectionCancelledError()))
        self._executor.shutdown(wait=wait)

    def _load_base_comments(self, base_job_id: str, *, video_id: str) -> list[CommentRecord]:
        base_job = self._jobs.get(base_job_id)
        if base_job is None:
            raise InvalidCollectionRequestError(f"Base job not found: {base_job_id}")
        if base_job.video_id != video_id:
            raise InvalidCollectionRequestError(
                f"Base job {base_job_id} collected a different video ({base_job.video_id})."
            )
        return self._jobs.list_comments(base_job_id) or []

    def _run_job(self, job: CollectionJob, cancel_event: threading.Event) -> None:
        context_tokens = bind_contextvars(
            collection_job_id=job.job_id,
            collection_video_id=job.video_id,
        )
        try:
            self._execute(job, cancel_event)
        finally:
            reset_contextvars(**context_tokens)

    def _execute(self, job: CollectionJob, cancel_event: threading.Event) -> None:
        job_id = job.job_id
        if cancel_event.is_set():
            self._jobs.fail(job_id, describe_collection_error(CollectionCancelledError()))
            return
        if not self._jobs.start(job_id):
            LOGGER.info("collection job no longer queued; skipping job_id=%s", job_id)
            return

        deadline = (
            time.monotonic() + self._timeout_seconds if self._timeout_seconds > 0 else None
        )

        try:
            with self._telemetry.track(
                "collection.job",
                job_id=job_id,
                video_id=job.video_id,
                order=job.order,
                max_pages=job.max_pages,
                include_replies=job.include_replies,
            ) as outcome:
                self._refresh_title(job, cancel_event)
                records = collect_comments(
                    self._client,
                    video_id=job.video_id,
                    video_url=job.video_url,
                    order=cast(CommentOrder, job.order),
                    max_pages=job.max_pages,
                    include_replies=job.include_replies,
                    on_progress=partial(self._record_progress, job_id),
                    cancel_event=cancel_event,
                    deadline=deadline,
                    reply_gap_threshold=self._reply_gap_threshold,
                    page_size=self._page_size,
                )
                self._jobs.complete(job_id, records)
                finished = self._jobs.get(job_id)
                comment_count = finished.comment_count if finished is not None else len(records)
                outcome.update(collected_count=len(records), comment_count=comment_count)
        except Exception as exc:
            if isinstance(exc, YouTubeServiceError):
                LOGGER.warning("collection job failed job_id=%s error=%s", job_id, exc)
            else:
                LOGGER.exception("collection job crashed job_id=%s", job_id)
            self._jobs.fail(job_id, describe_collection_error(exc))
            return

        LOGGER.info(
            "collection job finished job_id=%s collected=%s stored=%s",
            job_id,
            len(records),
            comment_count,
        )

    def _refresh_title(self, job: CollectionJob, cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            raise CollectionCancelledError()
        # The placeholder title stays when the lookup fails.
        try:
            title = self._client.fetch_video_title(job.video_id)
        except Exception:
            LOGGER.warning("video title lookup failed job_id=%s", job.job_id, exc_info=True)
            return
        if title is None:
            return
        self._jobs.rename(job.job_id, title, expected_title=placeholder_title(job.video_id))

    def _record_progress(self, job_id: str, pages: int, comments: int) -> None:
        self._jobs.record_progress(
            job_id,
            pages=pages,
            comments=comments,
            message=progress_message(pages, comments),
        )

    def _on_run_finished(self, job_id: str, future: Future[None]) -> None:
        with self._runs_lock:
            self._runs.pop(job_id, None)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            LOGGER.error(
                "collection worker raised outside the job boundary job_id=%s",
                job_id,
                exc_info=error,
            )


def describe_collection_error(exc: BaseException) -> str:
    if isinstance(exc, CollectionCancelledError):
        return "Collection was cancelled."
    if isinstance(exc, CollectionTimeoutError):
        return "Collection timed out before all pages were fetched."
    if isinstance(exc, YouTubeApiError):
        if exc.kind is YouTubeApiErrorKind.COMMENTS_DISABLED:
            return "Comments are disabled for this video."
        if exc.kind is YouTubeApiErrorKind.QUOTA_EXCEEDED:
            return "The YouTube API daily quota has been exceeded. Try again tomorrow."
        if exc.kind is YouTubeApiErrorKind.VIDEO_NOT_FOUND:
            return "Video not found. It may be private or deleted."
        if exc.kind is YouTubeApiErrorKind.API_FORBIDDEN:
            return f"YouTube API access was denied: {exc.code}"
        if exc.kind is YouTubeApiErrorKind.API_ERROR:
            return f"YouTube API error: {exc.code}"
    return f"Collection failed: {exc}"
