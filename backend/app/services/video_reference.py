from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
_VIDEO_PATH_PATTERN = re.compile(r"^/(?:shorts|embed|v)/([A-Za-z0-9_-]{11})(?:[/?#]|$)")
_WATCH_HOSTS: frozenset[str] = frozenset({"youtube.com", "m.youtube.com"})
_SHORT_LINK_HOST = "youtu.be"


def resolve_video_id(reference: str | None) -> str | None:
    """
    Normalize a user-supplied video reference into a canonical video ID.

    Accepts a bare 11-character ID, a watch URL (`/watch?v=`), a shorts, embed or
    `/v/` URL on the main or mobile host, or a `youtu.be` short link. Anything else
    returns None; an unresolvable reference is an expected input-validation outcome.
    """
    if not reference:
        return None

    candidate = reference.strip()
    if VIDEO_ID_PATTERN.match(candidate):
        return candidate

    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None

    hostname = (parsed.hostname or "").lower()
    if hostname.startswith("www."):
        hostname = hostname[len("www.") :]

    if hostname in _WATCH_HOSTS:
        if parsed.path == "/watch":
            values = parse_qs(parsed.query).get("v")
            if values and values[0].strip():
                return values[0].strip()
            return None
        matched = _VIDEO_PATH_PATTERN.match(parsed.path)
        if matched is not None:
            return matched.group(1)
        return None

    if hostname == _SHORT_LINK_HOST:
        video_id = parsed.path[1:]
        if VIDEO_ID_PATTERN.match(video_id):
            return video_id

    return None


def canonical_watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"
