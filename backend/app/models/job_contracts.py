from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from backend.app.repositories.comment_records import CommentRecord
from backend.app.repositories.jobs_repository import CollectionJob
from backend.app.services.youtube_client import VideoDetails

CommentOrderName = Literal["time", "relevance"]
JobStatusName = Literal["queued", "running", "done", "error"]


class CreateJobRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = Field(default="", description="YouTube watch/share/shorts URL or bare video ID.")
    order: str = "time"
    max_pages: int = Field(default=5, description="0 walks every page.")
    include_replies: bool = False
    base_job_id: str | None = Field(
        default=None,
        description="Seed the new job with the comments of a previous job for the same video.",
    )


class CreateJobResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str


class JobProgressPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pages: int
    comments: int
    message: str


class JobSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    video_id: str
    video_url: str
    video_title: str
    status: JobStatusName
    progress: JobProgressPayload
    error: str | None = None
    created_at: str
    updated_at: str
    comment_count: int

    @classmethod
    def from_job(cls, job: CollectionJob) -> JobSummary:
        return cls(
            id=job.job_id,
            video_id=job.video_id,
            video_url=job.video_url,
            video_title=job.video_title,
            status=job.status,
            progress=JobProgressPayload(
                pages=job.progress.pages,
                comments=job.progress.comments,
                message=job.progress.message,
            ),
            error=job.error,
            created_at=job.created_at,
            updated_at=job.updated_at,
            comment_count=job.comment_count,
        )


class JobDetail(JobSummary):
    order: CommentOrderName
    max_pages: int
    include_replies: bool

    @classmethod
    def from_job(cls, job: CollectionJob) -> JobDetail:
        summary = JobSummary.from_job(job)
        return cls(
            **summary.model_dump(),
            order="relevance" if job.order == "relevance" else "time",
            max_pages=job.max_pages,
            include_replies=job.include_replies,
        )


class RenameJobRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_title: str


class RenameJobResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    video_title: str


class CancelJobResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    accepted: bool
    status: JobStatusName


class CommentPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    video_url: str
    comment_id: str
    thread_id: str
    parent_id: str | None
    is_reply: bool
    author_display_name: str
    author_channel_id: str
    author_profile_url: str
    text_original: str
    text_plain: str
    like_count: int
    published_at: str
    updated_at: str
    fetched_at: str
    source: str

    @classmethod
    def from_record(cls, record: CommentRecord) -> CommentPayload:
        return cls(**record.to_dict())


class CommentResultsPage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data: list[CommentPayload]
    total: int
    cursor: int | None


class VideoDetailsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    title: str
    description: str
    channel: str
    channel_id: str
    view_count: int
    like_count: int
    comment_count: int
    tags: list[str]
    published_at: str
    thumbnail: str

    @classmethod
    def from_details(cls, details: VideoDetails) -> VideoDetailsResponse:
        return cls(
            video_id=details.video_id,
            title=details.title,
            description=details.description,
            channel=details.channel,
            channel_id=details.channel_id,
            view_count=details.view_count,
            like_count=details.like_count,
            comment_count=details.comment_count,
            tags=list(details.tags),
            published_at=details.published_at,
            thumbnail=details.thumbnail,
        )
