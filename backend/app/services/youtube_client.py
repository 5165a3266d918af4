from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from http.client import HTTPException
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("brand_monitor.youtube")

DEFAULT_YOUTUBE_API_BASE_URL = "https://www.googleapis.com/youtube/v3"
COMMENT_THREADS_ENDPOINT = "commentThreads"
COMMENTS_ENDPOINT = "comments"
VIDEOS_ENDPOINT = "videos"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY_SECONDS = 1.0
_MAX_ERROR_BODY_LENGTH = 500
_QUOTA_REASONS: frozenset[str] = frozenset({"quotaExceeded", "dailyLimitExceeded"})


class YouTubeServiceError(Exception):
    pass


class YouTubeTransportError(YouTubeServiceError):
    pass


class YouTubeApiErrorKind(StrEnum):
    COMMENTS_DISABLED = "COMMENTS_DISABLED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    API_FORBIDDEN = "API_FORBIDDEN"
    VIDEO_NOT_FOUND = "VIDEO_NOT_FOUND"
    API_ERROR = "API_ERROR"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"


class YouTubeApiError(YouTubeServiceError):
    """
    Classified failure of a YouTube Data API call.

    `kind` is what callers branch on. `code` renders the legacy string form
    (`API_FORBIDDEN: <reason>`, `API_ERROR: <status> <body>`) for logs and exports.
    """

    def __init__(
        self,
        kind: YouTubeApiErrorKind,
        *,
        status_code: int | None = None,
        reason: str | None = None,
        body: str | None = None,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(self.code)

    @property
    def code(self) -> str:
        if self.kind is YouTubeApiErrorKind.API_FORBIDDEN:
            return f"API_FORBIDDEN: {self.reason or ''}".rstrip()
        if self.kind is YouTubeApiErrorKind.API_ERROR:
            return f"API_ERROR: {self.status_code} {self.body or ''}".rstrip()
        return self.kind.value


@dataclass(frozen=True)
class CommentPage:
    items: list[dict[str, Any]]
    next_page_token: str | None


@dataclass(frozen=True)
class VideoDetails:
    video_id: str
    title: str
    description: str
    channel: str
    channel_id: str
    view_count: int
    like_count: int
    comment_count: int
    tags: tuple[str, ...]
    published_at: str
    thumbnail: str


class YouTubeDataClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_YOUTUBE_API_BASE_URL,
        timeout_seconds: float = 30.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        normalized_key = api_key.strip()
        if not normalized_key:
            raise YouTubeServiceError(
                "YouTube API key is missing. Set BRAND_MONITOR_YOUTUBE_API_KEY."
            )
        self._api_key = normalized_key
        self._base_url = base_url.strip().rstrip("/") or DEFAULT_YOUTUBE_API_BASE_URL
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._max_retries = max(0, max_retries)
        self._retry_base_delay_seconds = max(0.0, retry_base_delay_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def build_url(self, endpoint: str, params: dict[str, str]) -> str:
        query = urlencode({**params, "key": self._api_key})
        return f"{self._base_url}/{endpoint}?{query}"

    def fetch_page(
        self,
        endpoint: str,
        params: dict[str, str],
        page_token: str | None = None,
    ) -> CommentPage:
        request_params = dict(params)
        if page_token:
            request_params["pageToken"] = page_token

        payload = self.fetch_with_retry(self.build_url(endpoint, request_params))
        items = [_as_dict(item) for item in _as_list(payload.get("items"))]
        next_page_token = payload.get("nextPageToken")
        if not isinstance(next_page_token, str) or not next_page_token:
            next_page_token = None
        return CommentPage(items=items, next_page_token=next_page_token)

    def fetch_with_retry(self, url: str) -> dict[str, Any]:
        last_transport_error: YouTubeTransportError | None = None
        for attempt in range(self._max_retries + 1):
            has_retry_budget = attempt < self._max_retries
            try:
                status_code, status_text, raw_body = _fetch_youtube_json(
                    url=url,
                    timeout_seconds=self._timeout_seconds,
                )
            except YouTubeTransportError as exc:
                last_transport_error = exc
                if has_retry_budget:
                    self._sleep_before_retry(attempt, status_code=None, error=str(exc))
                    continue
                break

            if 200 <= status_code < 300:
                return _parse_success_payload(status_code, raw_body)

            if status_code == 403:
                raise _classify_forbidden(raw_body, status_text)

            if status_code == 404:
                raise YouTubeApiError(
                    YouTubeApiErrorKind.VIDEO_NOT_FOUND,
                    status_code=status_code,
                )

            if (status_code == 429 or status_code >= 500) and has_retry_budget:
                self._sleep_before_retry(attempt, status_code=status_code, error=None)
                continue

            raise YouTubeApiError(
                YouTubeApiErrorKind.API_ERROR,
                status_code=status_code,
                body=_truncate_body(raw_body),
            )

        raise YouTubeApiError(YouTubeApiErrorKind.MAX_RETRIES_EXCEEDED) from last_transport_error

    def fetch_video_details(self, video_id: str) -> VideoDetails | None:
        try:
            payload = self.fetch_with_retry(
                self.build_url(
                    VIDEOS_ENDPOINT,
                    {"part": "snippet,statistics", "id": video_id},
                )
            )
        except YouTubeServiceError as exc:
            LOGGER.warning(
                "youtube video details lookup failed video_id=%s error=%s",
                video_id,
                exc,
            )
            return None

        items = _as_list(payload.get("items"))
        if not items:
            return None

        item = _as_dict(items[0])
        snippet = _as_dict(item.get("snippet"))
        statistics = _as_dict(item.get("statistics"))
        return VideoDetails(
            video_id=video_id,
            title=_coerce_text(snippet.get("title")),
            description=_coerce_text(snippet.get("description")),
            channel=_coerce_text(snippet.get("channelTitle")),
            channel_id=_coerce_text(snippet.get("channelId")),
            view_count=_coerce_int(statistics.get("viewCount")),
            like_count=_coerce_int(statistics.get("likeCount")),
            comment_count=_coerce_int(statistics.get("commentCount")),
            tags=_extract_string_list(snippet.get("tags")),
            published_at=_coerce_text(snippet.get("publishedAt")),
            thumbnail=_best_thumbnail_url(snippet),
        )

    def fetch_video_title(self, video_id: str) -> str | None:
        details = self.fetch_video_details(video_id)
        if details is None or not details.title.strip():
            return None
        return details.title.strip()

    def _sleep_before_retry(self, attempt: int, *, status_code: int | None, error: str | None) -> None:
        delay_seconds = self._retry_base_delay_seconds * (2**attempt)
        LOGGER.info(
            "youtube request retry attempt=%s max_retries=%s status_code=%s delay_seconds=%s error=%s",
            attempt + 1,
            self._max_retries,
            status_code,
            delay_seconds,
            error,
        )
        self._telemetry.emit(
            "youtube.request.retry",
            attempt=attempt + 1,
            status_code=status_code,
            delay_seconds=delay_seconds,
        )
        time.sleep(delay_seconds)


def _fetch_youtube_json(*, url: str, timeout_seconds: float) -> tuple[int, str, str]:
    request = Request(
        url,
        headers={
            "accept": "application/json",
            "user-agent": "brand-monitor/1.0",
        },
        method="GET",
    )

    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status_code = int(response.getcode() or 0)
            status_text = str(getattr(response, "reason", "") or "")
            raw_body = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        status_code = int(exc.code)
        status_text = str(exc.reason or "")
        raw_body = exc.read().decode("utf-8", errors="replace")
    except (URLError, TimeoutError, OSError, HTTPException) as exc:
        raise YouTubeTransportError(f"YouTube request failed: {exc}") from exc
    return status_code, status_text, raw_body


def _classify_forbidden(raw_body: str, status_text: str) -> YouTubeApiError:
    reason = _extract_error_reason(_parse_json_dict(raw_body))
    if reason == "commentsDisabled":
        return YouTubeApiError(
            YouTubeApiErrorKind.COMMENTS_DISABLED,
            status_code=403,
            reason=reason,
        )
    if reason in _QUOTA_REASONS:
        return YouTubeApiError(
            YouTubeApiErrorKind.QUOTA_EXCEEDED,
            status_code=403,
            reason=reason,
        )
    return YouTubeApiError(
        YouTubeApiErrorKind.API_FORBIDDEN,
        status_code=403,
        reason=reason or status_text or "Forbidden",
    )


def _extract_error_reason(payload: dict[str, Any]) -> str | None:
    error = _as_dict(payload.get("error"))
    errors = _as_list(error.get("errors"))
    if not errors:
        return None
    reason = _as_dict(errors[0]).get("reason")
    if isinstance(reason, str) and reason.strip():
        return reason.strip()
    return None


def _truncate_body(raw_body: str) -> str:
    compact = raw_body.strip()
    if len(compact) <= _MAX_ERROR_BODY_LENGTH:
        return compact
    return f"{compact[: _MAX_ERROR_BODY_LENGTH - 3]}..."


def _best_thumbnail_url(snippet: dict[str, Any]) -> str:
    thumbnails = _as_dict(snippet.get("thumbnails"))
    for quality in ("maxres", "high", "medium"):
        url_value = _as_dict(thumbnails.get(quality)).get("url")
        if isinstance(url_value, str) and url_value.strip():
            return url_value
    return ""


def _parse_success_payload(status_code: int, raw_body: str) -> dict[str, Any]:
    # A 2xx body that is not a JSON object would otherwise read as an empty last page.
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        parsed = None
    if not isinstance(parsed, dict):
        raise YouTubeApiError(
            YouTubeApiErrorKind.API_ERROR,
            status_code=status_code,
            body=_truncate_body(raw_body),
        )
    return _as_dict(parsed)


def _parse_json_dict(raw_body: str) -> dict[str, Any]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    return _as_dict(parsed)


def _extract_string_list(raw_value: object) -> tuple[str, ...]:
    if not isinstance(raw_value, list):
        return ()
    values: list[str] = []
    for raw_item in cast(list[Any], raw_value):
        if isinstance(raw_item, str) and raw_item.strip():
            values.append(raw_item)
    return tuple(values)


def _coerce_text(raw_value: object) -> str:
    if isinstance(raw_value, str):
        return raw_value
    return ""


def _coerce_int(raw_value: object) -> int:
    if isinstance(raw_value, bool):
        return int(raw_value)
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, float):
        return int(raw_value)
    if isinstance(raw_value, str):
        try:
            return int(raw_value)
        except ValueError:
            return 0
    return 0


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        raw_list = cast(list[Any], value)
        return list(raw_list)
    return []
