from __future__ import annotations

import html
import re
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from backend.app.repositories.common import parse_iso_timestamp

COMMENT_SOURCE = "youtube_api"

# Column order for exports and persistence.
COMMENT_FIELDS: tuple[str, ...] = (
    "video_id",
    "video_url",
    "comment_id",
    "thread_id",
    "parent_id",
    "is_reply",
    "author_display_name",
    "author_channel_id",
    "author_profile_url",
    "text_original",
    "text_plain",
    "like_count",
    "published_at",
    "updated_at",
    "fetched_at",
    "source",
)

_LINE_BREAK_PATTERN = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_PATTERN = re.compile(r"<[^>]*>")


@dataclass(frozen=True)
class CommentRecord:
    video_id: str
    video_url: str
    comment_id: str
    thread_id: str
    parent_id: str | None
    author_display_name: str
    author_channel_id: str
    author_profile_url: str
    text_original: str
    text_plain: str
    like_count: int
    published_at: str
    updated_at: str
    fetched_at: str
    source: str = COMMENT_SOURCE
    is_reply: bool = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "is_reply", self.parent_id is not None)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {name: data[name] for name in COMMENT_FIELDS}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CommentRecord:
        parent_id = data.get("parent_id")
        return cls(
            video_id=str(data["video_id"]),
            video_url=str(data.get("video_url") or ""),
            comment_id=str(data["comment_id"]),
            thread_id=str(data.get("thread_id") or data["comment_id"]),
            parent_id=str(parent_id) if parent_id else None,
            author_display_name=str(data.get("author_display_name") or ""),
            author_channel_id=str(data.get("author_channel_id") or ""),
            author_profile_url=str(data.get("author_profile_url") or ""),
            text_original=str(data.get("text_original") or ""),
            text_plain=str(data.get("text_plain") or ""),
            like_count=int(data.get("like_count") or 0),
            published_at=str(data.get("published_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
            fetched_at=str(data.get("fetched_at") or ""),
            source=str(data.get("source") or COMMENT_SOURCE),
        )


def strip_html(markup: str) -> str:
    text = _LINE_BREAK_PATTERN.sub("\n", markup)
    return html.unescape(_TAG_PATTERN.sub("", text))


def merge_comment_records(
    existing: Iterable[CommentRecord],
    collected: Iterable[CommentRecord],
) -> list[CommentRecord]:
    """
    Layer freshly collected comments onto an existing set.

    A collected record is added when its `comment_id` is new, and replaces the
    existing record only when its `updated_at` is strictly later. Ties keep the
    existing record, which makes merging the same set twice a no-op.
    """
    merged: dict[str, CommentRecord] = {record.comment_id: record for record in existing}
    for record in collected:
        previous = merged.get(record.comment_id)
        if previous is None or _is_strictly_newer(record.updated_at, previous.updated_at):
            merged[record.comment_id] = record
    return list(merged.values())


def _is_strictly_newer(candidate: str, reference: str) -> bool:
    candidate_at = parse_iso_timestamp(candidate)
    reference_at = parse_iso_timestamp(reference)
    if candidate_at is not None and reference_at is not None:
        return candidate_at > reference_at
    return candidate > reference
