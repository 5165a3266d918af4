from __future__ import annotations

from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.repositories.database import Database
from backend.app.repositories.jobs_repository import (
    InMemoryJobsRepository,
    JobsRepository,
    SqliteJobsRepository,
)
from backend.app.services.collection_service import CommentCollectionService
from backend.app.services.youtube_client import YouTubeDataClient
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_jobs_repository() -> JobsRepository:
    settings = get_settings()
    if settings.job_store == "sqlite":
        database = Database(settings.db_path)
        database.initialize()
        return SqliteJobsRepository(database, retention_seconds=settings.job_retention_seconds)
    return InMemoryJobsRepository(retention_seconds=settings.job_retention_seconds)


@lru_cache(maxsize=1)
def get_youtube_client() -> YouTubeDataClient:
    settings = get_settings()
    return YouTubeDataClient(
        settings.youtube_api_key or "",
        base_url=settings.youtube_api_base_url,
        timeout_seconds=settings.youtube_http_timeout_seconds,
        max_retries=settings.youtube_max_retries,
        retry_base_delay_seconds=settings.youtube_retry_base_delay_seconds,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_collection_service() -> CommentCollectionService:
    settings = get_settings()
    return CommentCollectionService(
        get_jobs_repository(),
        get_youtube_client(),
        max_workers=settings.collection_max_workers,
        timeout_seconds=settings.collection_timeout_seconds,
        reply_gap_threshold=settings.reply_expansion_gap_threshold,
        page_size=settings.comment_page_size,
        telemetry=get_telemetry(),
    )


def shutdown_collection_service() -> None:
    if get_collection_service.cache_info().currsize:
        get_collection_service().shutdown()


def reset_cached_dependencies() -> None:
    shutdown_collection_service()
    get_collection_service.cache_clear()
    get_youtube_client.cache_clear()
    get_jobs_repository.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
