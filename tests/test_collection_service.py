from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from typing import Any

import pytest
from youtube_fakes import FakeYouTubeApi, error_body, make_comment, make_thread, make_video

from backend.app.repositories.jobs_repository import InMemoryJobsRepository
from backend.app.services.collection_service import (
    CommentCollectionService,
    InvalidCollectionRequestError,
    InvalidVideoReferenceError,
    describe_collection_error,
    placeholder_title,
)
from backend.app.services.comment_collector import CollectionCancelledError, CollectionTimeoutError
from backend.app.services.youtube_client import (
    YouTubeApiError,
    YouTubeApiErrorKind,
    YouTubeDataClient,
)
from backend.app.telemetry import TelemetryClient

VIDEO_ID = "dQw4w9WgXcQ"


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


class _BlockingClient:
    """Delegates to a real client but parks on page or title requests until released."""

    def __init__(
        self,
        inner: YouTubeDataClient,
        *,
        block_title: bool = False,
        hold_seconds: float = 5.0,
    ) -> None:
        self._inner = inner
        self._block_title = block_title
        self._hold_seconds = hold_seconds
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch_page(self, endpoint: str, params: dict[str, str], page_token: str | None = None) -> Any:
        if not self._block_title:
            self._hold()
        return self._inner.fetch_page(endpoint, params, page_token)

    def fetch_video_title(self, video_id: str) -> str | None:
        if self._block_title:
            self._hold()
        return self._inner.fetch_video_title(video_id)

    def _hold(self) -> None:
        self.entered.set()
        self.release.wait(timeout=self._hold_seconds)


@pytest.fixture
def sink() -> _CaptureSink:
    return _CaptureSink()


@pytest.fixture
def service(fake_youtube: FakeYouTubeApi, sink: _CaptureSink) -> Iterator[CommentCollectionService]:
    _ = fake_youtube
    collection_service = CommentCollectionService(
        InMemoryJobsRepository(),
        YouTubeDataClient("test-api-key", retry_base_delay_seconds=0.0),
        max_workers=2,
        telemetry=TelemetryClient(enabled=True, sink=sink),
    )
    yield collection_service
    collection_service.shutdown()


def test_submit_collects_and_completes(service: CommentCollectionService, fake_youtube: FakeYouTubeApi, sink: _CaptureSink) -> None:
    fake_youtube.videos[VIDEO_ID] = make_video(VIDEO_ID, title="Spring launch")
    fake_youtube.thread_pages[VIDEO_ID] = [
        [make_thread("t1", replies=[make_comment("t1.r1")]), make_thread("t2")],
        [make_thread("t3")],
    ]

    job_id = service.submit(f"https://youtu.be/{VIDEO_ID}", "time", 0, True)
    job = service.wait(job_id, timeout=5)

    assert job is not None
    assert job.status == "done"
    assert job.video_id == VIDEO_ID
    assert job.video_url == f"https://youtu.be/{VIDEO_ID}"
    assert job.video_title == "Spring launch"
    assert job.progress.pages == 2
    assert job.progress.comments == 4
    assert job.progress.message == "Collection complete"
    assert sorted(record.comment_id for record in service.list_comments(job_id) or []) == [
        "t1",
        "t1.r1",
        "t2",
        "t3",
    ]
    event_names = [name for name, _ in sink.events]
    assert event_names[0] == "collection.job.start"
    assert event_names[-1] == "collection.job.finish"


@pytest.mark.parametrize("reference", ["", "not a url", "https://vimeo.com/123"])
def test_unresolvable_reference_creates_no_job(service: CommentCollectionService, reference: str) -> None:
    with pytest.raises(InvalidVideoReferenceError):
        service.submit(reference)

    assert service.list_recent() == []


@pytest.mark.parametrize(("order", "max_pages"), [("newest", 5), ("time", -1)])
def test_invalid_options_create_no_job(service: CommentCollectionService, order: str, max_pages: int) -> None:
    with pytest.raises(InvalidCollectionRequestError):
        service.submit(VIDEO_ID, order, max_pages)

    assert service.list_recent() == []


def test_upstream_error_is_translated_onto_the_job(
    service: CommentCollectionService,
    fake_youtube: FakeYouTubeApi,
    sink: _CaptureSink,
) -> None:
    fake_youtube.scripted = [
        (200, "OK", '{"items": []}'),
        (403, "Forbidden", error_body("commentsDisabled")),
    ]

    job_id = service.submit(VIDEO_ID)
    job = service.wait(job_id, timeout=5)

    assert job is not None
    assert job.status == "error"
    assert job.error == "Comments are disabled for this video."
    assert job.video_title == placeholder_title(VIDEO_ID)
    assert service.list_comments(job_id) == []
    error_events = [attributes for name, attributes in sink.events if name == "collection.job.error"]
    assert error_events[0]["error_code"] == "COMMENTS_DISABLED"


def test_unexpected_exception_fails_the_job(service: CommentCollectionService, fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.scripted = [(200, "OK", '{"items": []}'), RuntimeError("parser exploded")]

    job_id = service.submit(VIDEO_ID)
    job = service.wait(job_id, timeout=5)

    assert job is not None
    assert job.status == "error"
    assert job.error == "Collection failed: parser exploded"


def test_unreadable_page_body_fails_instead_of_truncating(
    service: CommentCollectionService,
    fake_youtube: FakeYouTubeApi,
) -> None:
    fake_youtube.scripted = [
        (200, "OK", "{}"),
        (200, "OK", '{"items": [], "nextPageToken": "page-1"}'),
        (200, "OK", '{"items": [{"id": "t2"'),
    ]

    job_id = service.submit(VIDEO_ID, "time", 0, False)
    job = service.wait(job_id, timeout=5)

    assert job is not None
    assert job.status == "error"
    assert job.error == 'YouTube API error: API_ERROR: 200 {"items": [{"id": "t2"'
    assert service.list_comments(job_id) == []


class _TitleFailingClient:
    def __init__(self, inner: YouTubeDataClient) -> None:
        self._inner = inner
        self.title_calls = 0

    def fetch_page(self, endpoint: str, params: dict[str, str], page_token: str | None = None) -> Any:
        return self._inner.fetch_page(endpoint, params, page_token)

    def fetch_video_title(self, video_id: str) -> str | None:
        self.title_calls += 1
        raise RuntimeError(f"title lookup broke for {video_id}")


def test_title_lookup_failure_keeps_placeholder(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.thread_pages[VIDEO_ID] = [[make_thread("t1")]]
    client = _TitleFailingClient(YouTubeDataClient("test-api-key"))
    service = CommentCollectionService(InMemoryJobsRepository(), client, max_workers=1)
    try:
        job = service.wait(service.submit(VIDEO_ID), timeout=5)
    finally:
        service.shutdown()

    assert client.title_calls == 1
    assert job is not None
    assert job.status == "done"
    assert job.video_title == placeholder_title(VIDEO_ID)
    assert job.comment_count == 1


def test_cancel_before_title_lookup_skips_upstream(
    fake_youtube: FakeYouTubeApi,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    fake_youtube.thread_pages[VIDEO_ID] = [[make_thread("t1")]]
    client = _TitleFailingClient(YouTubeDataClient("test-api-key"))
    service = CommentCollectionService(InMemoryJobsRepository(), client, max_workers=1)
    job = service.jobs.create(
        video_id=VIDEO_ID,
        video_url=VIDEO_ID,
        video_title=placeholder_title(VIDEO_ID),
        order="time",
        max_pages=1,
        include_replies=False,
    )
    cancel_event = threading.Event()
    started = service.jobs.start

    # Cancellation lands between the job starting and the title lookup.
    def _start_then_cancel(job_id: str) -> bool:
        accepted = started(job_id)
        cancel_event.set()
        return accepted

    monkeypatch.setattr(service.jobs, "start", _start_then_cancel)
    try:
        service._execute(job, cancel_event)  # pyright: ignore[reportPrivateUsage]
    finally:
        service.shutdown()

    finished = service.get(job.job_id)
    assert finished is not None
    assert finished.status == "error"
    assert finished.error == "Collection was cancelled."
    assert client.title_calls == 0
    assert fake_youtube.requests == []


def test_user_rename_wins_over_fetched_title(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.videos[VIDEO_ID] = make_video(VIDEO_ID, title="Fetched title")
    fake_youtube.thread_pages[VIDEO_ID] = [[make_thread("t1")]]
    repository = InMemoryJobsRepository()
    client = _BlockingClient(YouTubeDataClient("test-api-key"), block_title=True)
    service = CommentCollectionService(repository, client, max_workers=1)
    try:
        job_id = service.submit(VIDEO_ID)
        assert client.entered.wait(timeout=5)
        service.rename(job_id, "My campaign")
        client.release.set()
        job = service.wait(job_id, timeout=5)
    finally:
        client.release.set()
        service.shutdown()

    assert job is not None
    assert job.status == "done"
    assert job.video_title == "My campaign"


def test_cancel_running_job(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.thread_pages[VIDEO_ID] = [[make_thread("t1")], [make_thread("t2")]]
    client = _BlockingClient(YouTubeDataClient("test-api-key"))
    service = CommentCollectionService(InMemoryJobsRepository(), client, max_workers=1)
    try:
        job_id = service.submit(VIDEO_ID, max_pages=0)
        assert client.entered.wait(timeout=5)
        assert service.cancel(job_id) is True
        client.release.set()
        job = service.wait(job_id, timeout=5)
    finally:
        client.release.set()
        service.shutdown()

    assert job is not None
    assert job.status == "error"
    assert job.error == "Collection was cancelled."
    assert service.list_comments(job_id) == []
    assert service.cancel(job_id) is False


def test_cancel_queued_job_never_starts(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.thread_pages[VIDEO_ID] = [[make_thread("t1")]]
    client = _BlockingClient(YouTubeDataClient("test-api-key"))
    service = CommentCollectionService(InMemoryJobsRepository(), client, max_workers=1)
    try:
        blocking_job = service.submit(VIDEO_ID)
        assert client.entered.wait(timeout=5)
        queued_job = service.submit(VIDEO_ID)
        assert service.cancel(queued_job) is True
        client.release.set()
        service.wait(blocking_job, timeout=5)
        job = service.wait(queued_job, timeout=5)
    finally:
        client.release.set()
        service.shutdown()

    assert job is not None
    assert job.status == "error"
    assert job.error == "Collection was cancelled."
    assert job.progress.pages == 0


def test_base_job_seeds_and_merges(service: CommentCollectionService, fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.thread_pages[VIDEO_ID] = [[make_thread("t1", updated_at="2026-01-01T00:00:00Z")]]
    first = service.submit(VIDEO_ID)
    service.wait(first, timeout=5)

    fake_youtube.thread_pages[VIDEO_ID] = [
        [make_thread("t1", text="edited", updated_at="2026-01-02T00:00:00Z"), make_thread("t2")]
    ]
    second = service.submit(VIDEO_ID, base_job_id=first)
    job = service.wait(second, timeout=5)

    assert job is not None
    assert job.status == "done"
    assert job.progress.comments == 2
    comments = {record.comment_id: record for record in service.list_comments(second) or []}
    assert comments["t1"].text_plain == "edited"
    assert [record.comment_id for record in service.list_comments(first) or []] == ["t1"]


def test_base_job_must_exist_and_match_video(service: CommentCollectionService, fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.thread_pages[VIDEO_ID] = [[make_thread("t1")]]
    first = service.submit(VIDEO_ID)
    service.wait(first, timeout=5)

    with pytest.raises(InvalidCollectionRequestError, match="not found"):
        service.submit(VIDEO_ID, base_job_id="job_missing")
    with pytest.raises(InvalidCollectionRequestError, match="different video"):
        service.submit("aaaaaaaaaaa", base_job_id=first)


def test_timeout_fails_the_job(fake_youtube: FakeYouTubeApi) -> None:
    fake_youtube.thread_pages[VIDEO_ID] = [[make_thread("t1")], [make_thread("t2")]]
    slow_client = _BlockingClient(YouTubeDataClient("test-api-key"), hold_seconds=0.2)
    service = CommentCollectionService(
        InMemoryJobsRepository(),
        slow_client,
        max_workers=1,
        timeout_seconds=0.05,
    )
    try:
        job = service.wait(service.submit(VIDEO_ID), timeout=5)
    finally:
        service.shutdown()

    assert job is not None
    assert job.status == "error"
    assert job.error == "Collection timed out before all pages were fetched."


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (YouTubeApiError(YouTubeApiErrorKind.COMMENTS_DISABLED), "Comments are disabled for this video."),
        (
            YouTubeApiError(YouTubeApiErrorKind.QUOTA_EXCEEDED),
            "The YouTube API daily quota has been exceeded. Try again tomorrow.",
        ),
        (YouTubeApiError(YouTubeApiErrorKind.VIDEO_NOT_FOUND), "Video not found. It may be private or deleted."),
        (
            YouTubeApiError(YouTubeApiErrorKind.API_FORBIDDEN, reason="forbidden"),
            "YouTube API access was denied: API_FORBIDDEN: forbidden",
        ),
        (
            YouTubeApiError(YouTubeApiErrorKind.API_ERROR, status_code=500, body="oops"),
            "YouTube API error: API_ERROR: 500 oops",
        ),
        (YouTubeApiError(YouTubeApiErrorKind.MAX_RETRIES_EXCEEDED), "Collection failed: MAX_RETRIES_EXCEEDED"),
        (CollectionCancelledError(), "Collection was cancelled."),
        (CollectionTimeoutError(), "Collection timed out before all pages were fetched."),
        (RuntimeError("boom"), "Collection failed: boom"),
    ],
)
def test_describe_collection_error(error: Exception, expected: str) -> None:
    assert describe_collection_error(error) == expected
