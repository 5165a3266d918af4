from __future__ import annotations

import pytest

from backend.app.services.video_reference import canonical_watch_url, resolve_video_id

VIDEO_ID = "dQw4w9WgXcQ"


@pytest.mark.parametrize(
    "reference",
    [
        VIDEO_ID,
        f"  {VIDEO_ID}\n",
        f"https://www.youtube.com/watch?v={VIDEO_ID}",
        f"https://youtube.com/watch?v={VIDEO_ID}&t=42s",
        f"https://m.youtube.com/watch?feature=share&v={VIDEO_ID}",
        f"http://www.youtube.com/shorts/{VIDEO_ID}",
        f"https://www.youtube.com/embed/{VIDEO_ID}?autoplay=1",
        f"https://www.youtube.com/v/{VIDEO_ID}",
        f"https://youtu.be/{VIDEO_ID}",
        f"https://youtu.be/{VIDEO_ID}?si=tracking",
        f"https://WWW.YouTube.com/watch?v={VIDEO_ID}",
    ],
)
def test_resolve_video_id_accepts_supported_forms(reference: str) -> None:
    assert resolve_video_id(reference) == VIDEO_ID


@pytest.mark.parametrize(
    "reference",
    [
        None,
        "",
        "   ",
        "dQw4w9WgXc",
        "dQw4w9WgXcQQ",
        "dQw4w9WgX!Q",
        f"youtube.com/watch?v={VIDEO_ID}",
        f"ftp://www.youtube.com/watch?v={VIDEO_ID}",
        "https://www.youtube.com/watch",
        "https://www.youtube.com/watch?v=",
        "https://www.youtube.com/channel/UC1234567890",
        "https://www.youtube.com/shorts/short",
        "https://youtu.be/",
        f"https://vimeo.com/{VIDEO_ID}",
        f"https://example.com/watch?v={VIDEO_ID}",
    ],
)
def test_resolve_video_id_rejects_everything_else(reference: str | None) -> None:
    assert resolve_video_id(reference) is None


def test_canonical_watch_url_round_trips_through_resolver() -> None:
    url = canonical_watch_url(VIDEO_ID)

    assert url == f"https://www.youtube.com/watch?v={VIDEO_ID}"
    assert resolve_video_id(url) == VIDEO_ID
