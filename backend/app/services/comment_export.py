from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime
from typing import Literal

from backend.app.repositories.comment_records import COMMENT_FIELDS, CommentRecord

ExportFormat = Literal["csv", "jsonl"]
EXPORT_FORMATS: frozenset[str] = frozenset({"csv", "jsonl"})
EXPORT_MEDIA_TYPES: dict[str, str] = {
    "csv": "text/csv; charset=utf-8",
    "jsonl": "application/x-ndjson",
}
DEFAULT_RESULTS_PAGE_SIZE = 50

# Spreadsheet apps need the BOM to pick UTF-8 for non-ASCII author names and text.
_UTF8_BOM = "\ufeff"
_CSV_SPECIAL_CHARACTERS: tuple[str, ...] = (",", '"', "\n")


def filter_comments(
    records: Sequence[CommentRecord],
    *,
    search: str | None = None,
    author: str | None = None,
    replies_only: bool = False,
) -> list[CommentRecord]:
    """Case-insensitive substring filters; an empty filter matches everything."""
    filtered = list(records)

    needle = (search or "").lower()
    if needle:
        filtered = [
            record
            for record in filtered
            if needle in record.text_plain.lower() or needle in record.text_original.lower()
        ]

    author_needle = (author or "").lower()
    if author_needle:
        filtered = [
            record for record in filtered if author_needle in record.author_display_name.lower()
        ]

    if replies_only:
        filtered = [record for record in filtered if record.is_reply]

    return filtered


def paginate_comments(
    records: Sequence[CommentRecord],
    *,
    cursor: int = 0,
    page_size: int = DEFAULT_RESULTS_PAGE_SIZE,
) -> tuple[list[CommentRecord], int, int | None]:
    """Return `(page, total, next_cursor)`; `next_cursor` is None on the last page."""
    start = max(0, cursor)
    size = max(1, page_size)
    total = len(records)
    page = list(records[start : start + size])
    next_cursor = start + size if start + size < total else None
    return page, total, next_cursor


def to_csv(records: Sequence[CommentRecord]) -> str:
    lines = [",".join(COMMENT_FIELDS)]
    for record in records:
        lines.append(",".join(_csv_cell(name, value) for name, value in record.to_dict().items()))
    return _UTF8_BOM + "\n".join(lines)


def to_jsonl(records: Sequence[CommentRecord]) -> str:
    return "\n".join(json.dumps(record.to_dict(), ensure_ascii=False) for record in records)


def render_export(records: Sequence[CommentRecord], fmt: ExportFormat) -> str:
    if fmt == "jsonl":
        return to_jsonl(records)
    return to_csv(records)


def export_filename(video_id: str, fmt: ExportFormat, now: datetime | None = None) -> str:
    stamp = (now if now is not None else datetime.now()).strftime("%Y%m%d%H%M")
    return f"{video_id}_{stamp}_comments.{fmt}"


def _csv_cell(name: str, value: object) -> str:
    if name == "is_reply":
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, int):
        return str(value)
    text = str(value)
    if any(character in text for character in _CSV_SPECIAL_CHARACTERS):
        return '"' + text.replace('"', '""') + '"'
    return text
