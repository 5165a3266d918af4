from __future__ import annotations

import logging
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import structlog

TelemetrySinkName = Literal["none", "log"]
TelemetryValue = bool | int | float | str | None

# Attribute names containing any of these never leave the process as values.
_REDACTED_NAME_PARTS: tuple[str, ...] = (
    "api_key",
    "authorization",
    "body",
    "cookie",
    "key",
    "secret",
    "text",
    "token",
)
_REDACTED = "[redacted]"
_MAX_VALUE_LENGTH = 160


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    """Writes each event as one structlog record on the `brand_monitor.telemetry` logger."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger("brand_monitor.telemetry")

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=scrub_attributes(attributes))

    @contextmanager
    def track(self, operation: str, **attributes: Any) -> Iterator[dict[str, Any]]:
        """
        Emit `<operation>.start`, then `.finish` or `.error` with the elapsed time.

        The yielded dict collects outcome attributes that are added to the closing
        event. Exceptions are reported and re-raised unchanged.
        """
        started_at = time.perf_counter()
        outcome: dict[str, Any] = {}
        self.emit(f"{operation}.start", **attributes)
        try:
            yield outcome
        except Exception as exc:
            self.emit(
                f"{operation}.error",
                **attributes,
                **outcome,
                duration_ms=elapsed_ms(started_at),
                error_type=type(exc).__name__,
                error_code=getattr(exc, "code", None),
            )
            raise
        self.emit(
            f"{operation}.finish",
            **attributes,
            **outcome,
            duration_ms=elapsed_ms(started_at),
        )


def build_telemetry_client(*, enabled: bool, sink: TelemetrySinkName) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger("brand_monitor.telemetry").warning(
        "unknown telemetry sink; telemetry disabled sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def elapsed_ms(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1000)


def scrub_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    scrubbed: dict[str, TelemetryValue] = {}
    for raw_name, raw_value in attributes.items():
        name = str(raw_name).strip().lower()
        if not name:
            continue
        if any(part in name for part in _REDACTED_NAME_PARTS):
            scrubbed[name] = _REDACTED
        else:
            scrubbed[name] = _scrub_value(raw_value)
    return scrubbed


def _scrub_value(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if not isinstance(value, str):
        return type(value).__name__
    compact = " ".join(value.split())
    if len(compact) > _MAX_VALUE_LENGTH:
        return f"{compact[:_MAX_VALUE_LENGTH]}..."
    return compact
