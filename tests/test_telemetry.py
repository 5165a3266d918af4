from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from backend.app.telemetry import TelemetryClient, build_telemetry_client


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_telemetry_client_redacts_sensitive_fields() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "youtube.request.retry",
        request_id="req_123",
        comment_text="I hate this product",
        page_token="CAUQAA",
        api_key="secret",
        response_body='{"error": "quota"}',
        video_id="dQw4w9WgXcQ",
        attempt=2,
    )

    assert len(sink.events) == 1
    event_name, attributes = sink.events[0]
    assert event_name == "youtube.request.retry"
    assert attributes["request_id"] == "req_123"
    assert attributes["video_id"] == "dQw4w9WgXcQ"
    assert attributes["attempt"] == 2
    assert attributes["comment_text"] == "[redacted]"
    assert attributes["page_token"] == "[redacted]"
    assert attributes["api_key"] == "[redacted]"
    assert attributes["response_body"] == "[redacted]"


def test_telemetry_client_compacts_values() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "collection.job.error",
        error_type="  Runtime\n  Error ",
        detail="x" * 400,
        extra={"nested": True},
        error_code=None,
    )

    _, attributes = sink.events[0]
    assert attributes["error_type"] == "Runtime Error"
    assert attributes["detail"] == "x" * 160 + "..."
    assert attributes["extra"] == "dict"
    assert attributes["error_code"] is None


def test_disabled_telemetry_client_does_not_emit() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=False, sink=sink)

    client.emit("collection.job.start", job_id="job_1")
    assert sink.events == []


def test_build_telemetry_client_none_sink_is_disabled() -> None:
    client = build_telemetry_client(enabled=True, sink="none")
    assert client.enabled is False


def test_build_telemetry_client_respects_disabled_flag() -> None:
    assert build_telemetry_client(enabled=False, sink="log").enabled is False
    assert build_telemetry_client(enabled=True, sink="log").enabled is True


def test_track_emits_start_and_finish_with_outcome() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    with client.track("collection.job", job_id="job_1") as outcome:
        outcome["comment_count"] = 12

    assert [name for name, _ in sink.events] == ["collection.job.start", "collection.job.finish"]
    _, finish = sink.events[1]
    assert finish["job_id"] == "job_1"
    assert finish["comment_count"] == 12
    assert isinstance(finish["duration_ms"], int)


def test_track_reports_errors_and_reraises() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    class _CodedError(Exception):
        code = "QUOTA_EXCEEDED"

    with pytest.raises(_CodedError):
        with client.track("collection.job", job_id="job_1"):
            raise _CodedError("quota")

    event_name, attributes = sink.events[-1]
    assert event_name == "collection.job.error"
    assert attributes["error_type"] == "_CodedError"
    assert attributes["error_code"] == "QUOTA_EXCEEDED"
