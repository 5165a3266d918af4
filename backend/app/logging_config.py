from __future__ import annotations

import logging
import logging.config
import re
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.typing import EventDict, Processor

from backend.app.config import AppSettings

LOG_FILE_NAME = "brand-monitor.log"
TELEMETRY_LOG_FILE_NAME = "brand-monitor-telemetry.log"
ROOT_LOGGER_NAME = "brand_monitor"
TELEMETRY_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.telemetry"

_API_KEY_QUERY_PATTERN = re.compile(r"([?&]key=)[^&\s\"']+")


def configure_application_logging(settings: AppSettings) -> Path:
    """
    Route `brand_monitor.*` loggers to stdout and a JSON-lines file under `log_dir`.

    Telemetry events go to their own file only. Upstream API keys are masked in
    every rendered event. Returns the main log file path.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME
    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME
    console_level = _resolve_log_level(settings.log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.config.dictConfig(
        _logging_dict_config(
            log_file=log_file,
            telemetry_log_file=telemetry_log_file,
            console_level=console_level,
        )
    )

    logging.getLogger(ROOT_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        logging.getLevelName(console_level),
        log_file,
        telemetry_log_file,
    )
    return log_file


def redact_api_keys(text: str) -> str:
    return _API_KEY_QUERY_PATTERN.sub(r"\1[redacted]", text)


def _logging_dict_config(
    *,
    log_file: Path,
    telemetry_log_file: Path,
    console_level: int,
) -> dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": _shared_pre_chain(),
                "processors": [
                    _redact_event_api_keys,
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.dev.ConsoleRenderer(colors=_stream_supports_color(sys.stdout)),
                ],
            },
            "json": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": _shared_pre_chain(),
                "processors": [
                    _add_record_metadata,
                    _redact_event_api_keys,
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.StackInfoRenderer(),
                    structlog.processors.format_exc_info,
                    structlog.processors.JSONRenderer(sort_keys=True),
                ],
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "level": console_level,
                "formatter": "console",
            },
            "file": {
                "class": "logging.FileHandler",
                "filename": str(log_file),
                "encoding": "utf-8",
                "level": logging.DEBUG,
                "formatter": "json",
            },
            "telemetry_file": {
                "class": "logging.FileHandler",
                "filename": str(telemetry_log_file),
                "encoding": "utf-8",
                "level": logging.INFO,
                "formatter": "json",
            },
        },
        "loggers": {
            ROOT_LOGGER_NAME: {
                "handlers": ["console", "file"],
                "level": logging.DEBUG,
                "propagate": False,
            },
            TELEMETRY_LOGGER_NAME: {
                "handlers": ["telemetry_file"],
                "level": logging.INFO,
                "propagate": False,
            },
        },
    }


def _resolve_log_level(raw_level: str) -> int:
    resolved = logging.getLevelName(raw_level.strip().upper())
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def _shared_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _redact_event_api_keys(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    # Request URLs carry the API key as a query parameter.
    for name, value in event_dict.items():
        if isinstance(value, str) and "key=" in value:
            event_dict[name] = redact_api_keys(value)
    return event_dict


def _add_record_metadata(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["pathname"] = record.pathname
        event_dict["lineno"] = record.lineno
        event_dict["func_name"] = record.funcName
        event_dict["thread_name"] = record.threadName
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except Exception:
        return False
