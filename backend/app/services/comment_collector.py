from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Literal, Protocol, cast

from backend.app.repositories.comment_records import CommentRecord, strip_html
from backend.app.repositories.common import utc_now_iso
from backend.app.services.youtube_client import (
    COMMENT_THREADS_ENDPOINT,
    COMMENTS_ENDPOINT,
    CommentPage,
    YouTubeServiceError,
)

LOGGER = logging.getLogger("brand_monitor.collector")

CommentOrder = Literal["time", "relevance"]
COMMENT_ORDERS: frozenset[str] = frozenset({"time", "relevance"})
DEFAULT_PAGE_SIZE = 100
# Inline replies within this many of the declared total are treated as complete.
DEFAULT_REPLY_EXPANSION_GAP_THRESHOLD = 5

ProgressCallback = Callable[[int, int], None]


class CommentPageSource(Protocol):
    def fetch_page(
        self,
        endpoint: str,
        params: dict[str, str],
        page_token: str | None = None,
    ) -> CommentPage:
        ...


class CommentCollectionError(YouTubeServiceError):
    pass


class CollectionCancelledError(CommentCollectionError):
    pass


class CollectionTimeoutError(CommentCollectionError):
    pass


def collect_comments(
    client: CommentPageSource,
    *,
    video_id: str,
    video_url: str,
    order: CommentOrder = "time",
    max_pages: int = 0,
    include_replies: bool = False,
    on_progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
    deadline: float | None = None,
    reply_gap_threshold: int = DEFAULT_REPLY_EXPANSION_GAP_THRESHOLD,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> list[CommentRecord]:
    """
    Walk every comment thread of a video and return deduplicated comment records.

    Pages are fetched strictly in sequence by following the upstream continuation
    cursor. `max_pages=0` means no page cap. `on_progress(pages, comments)` runs after
    each thread page, including its reply expansion, and before the next request.
    `deadline` is a `time.monotonic()` value; it and `cancel_event` are checked
    before every upstream request. Any failure aborts the whole run.
    """
    if order not in COMMENT_ORDERS:
        raise ValueError(f"Unsupported comment order: {order}")
    if max_pages < 0:
        raise ValueError("max_pages must be zero (unbounded) or positive.")

    accumulator: dict[str, CommentRecord] = {}
    page_token: str | None = None
    pages_processed = 0
    reply_expansions = 0

    while True:
        _checkpoint(cancel_event, deadline)
        page = client.fetch_page(
            COMMENT_THREADS_ENDPOINT,
            {
                "part": "snippet,replies",
                "videoId": video_id,
                "maxResults": str(page_size),
                "order": order,
                "textFormat": "plainText",
            },
            page_token,
        )
        fetched_at = utc_now_iso()

        for thread in page.items:
            thread_snippet = _as_dict(thread.get("snippet"))
            top_level = _as_dict(thread_snippet.get("topLevelComment"))
            top_level_id = _coerce_id(top_level.get("id"))
            if top_level_id is None:
                continue
            thread_id = _coerce_id(thread.get("id")) or top_level_id

            _record(
                accumulator,
                _map_comment(
                    top_level,
                    video_id=video_id,
                    video_url=video_url,
                    thread_id=thread_id,
                    parent_id=None,
                    fetched_at=fetched_at,
                ),
            )
            if not include_replies:
                continue

            inline_replies = _as_list(_as_dict(thread.get("replies")).get("comments"))
            for raw_reply in inline_replies:
                _record(
                    accumulator,
                    _map_comment(
                        _as_dict(raw_reply),
                        video_id=video_id,
                        video_url=video_url,
                        thread_id=thread_id,
                        parent_id=top_level_id,
                        fetched_at=fetched_at,
                    ),
                )

            total_reply_count = _coerce_int(thread_snippet.get("totalReplyCount"))
            if total_reply_count - len(inline_replies) > reply_gap_threshold:
                reply_expansions += 1
                _expand_replies(
                    client,
                    accumulator,
                    video_id=video_id,
                    video_url=video_url,
                    thread_id=thread_id,
                    parent_id=top_level_id,
                    cancel_event=cancel_event,
                    deadline=deadline,
                    page_size=page_size,
                )

        pages_processed += 1
        if on_progress is not None:
            on_progress(pages_processed, len(accumulator))

        if page.next_page_token is None:
            break
        if max_pages > 0 and pages_processed >= max_pages:
            break
        page_token = page.next_page_token

    LOGGER.info(
        "comment collection finished video_id=%s pages=%s comments=%s reply_expansions=%s",
        video_id,
        pages_processed,
        len(accumulator),
        reply_expansions,
    )
    return list(accumulator.values())


def _expand_replies(
    client: CommentPageSource,
    accumulator: dict[str, CommentRecord],
    *,
    video_id: str,
    video_url: str,
    thread_id: str,
    parent_id: str,
    cancel_event: threading.Event | None,
    deadline: float | None,
    page_size: int,
) -> None:
    page_token: str | None = None
    while True:
        _checkpoint(cancel_event, deadline)
        page = client.fetch_page(
            COMMENTS_ENDPOINT,
            {
                "part": "snippet",
                "parentId": parent_id,
                "maxResults": str(page_size),
                "textFormat": "plainText",
            },
            page_token,
        )
        fetched_at = utc_now_iso()
        for raw_reply in page.items:
            _record(
                accumulator,
                _map_comment(
                    raw_reply,
                    video_id=video_id,
                    video_url=video_url,
                    thread_id=thread_id,
                    parent_id=parent_id,
                    fetched_at=fetched_at,
                ),
            )
        if page.next_page_token is None:
            return
        page_token = page.next_page_token


def _checkpoint(cancel_event: threading.Event | None, deadline: float | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CollectionCancelledError("Collection was cancelled.")
    if deadline is not None and time.monotonic() >= deadline:
        raise CollectionTimeoutError("Collection exceeded its time limit.")


def _record(accumulator: dict[str, CommentRecord], record: CommentRecord | None) -> None:
    if record is not None:
        accumulator[record.comment_id] = record


def _map_comment(
    raw: dict[str, Any],
    *,
    video_id: str,
    video_url: str,
    thread_id: str,
    parent_id: str | None,
    fetched_at: str,
) -> CommentRecord | None:
    comment_id = _coerce_id(raw.get("id"))
    if comment_id is None:
        return None

    snippet = _as_dict(raw.get("snippet"))
    author_channel = _as_dict(snippet.get("authorChannelId"))
    text_display = _coerce_text(snippet.get("textDisplay"))
    return CommentRecord(
        video_id=video_id,
        video_url=video_url,
        comment_id=comment_id,
        thread_id=thread_id,
        parent_id=parent_id,
        author_display_name=_coerce_text(snippet.get("authorDisplayName")),
        author_channel_id=_coerce_text(author_channel.get("value")),
        author_profile_url=_coerce_text(snippet.get("authorChannelUrl")),
        text_original=_coerce_text(snippet.get("textOriginal")),
        text_plain=strip_html(text_display),
        like_count=_coerce_int(snippet.get("likeCount")),
        published_at=_coerce_text(snippet.get("publishedAt")),
        updated_at=_coerce_text(snippet.get("updatedAt")),
        fetched_at=fetched_at,
    )


def _coerce_id(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value.strip()
    return None


def _coerce_text(raw_value: object) -> str:
    if isinstance(raw_value, str):
        return raw_value
    return ""


def _coerce_int(raw_value: object) -> int:
    if isinstance(raw_value, bool):
        return int(raw_value)
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, str):
        try:
            return int(raw_value)
        except ValueError:
            return 0
    return 0


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        return {key: item for key, item in raw_dict.items() if isinstance(key, str)}
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return list(cast(list[Any], value))
    return []
