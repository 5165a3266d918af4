from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from backend.app.config import AppSettings
from backend.app.dependencies import get_collection_service, get_settings, get_youtube_client
from backend.app.models.job_contracts import (
    CancelJobResponse,
    CommentPayload,
    CommentResultsPage,
    CreateJobRequest,
    CreateJobResponse,
    JobDetail,
    JobSummary,
    RenameJobRequest,
    RenameJobResponse,
    VideoDetailsResponse,
)
from backend.app.repositories.jobs_repository import CollectionJob
from backend.app.services.collection_service import (
    CommentCollectionService,
    InvalidCollectionRequestError,
)
from backend.app.services.comment_export import (
    EXPORT_MEDIA_TYPES,
    ExportFormat,
    export_filename,
    filter_comments,
    paginate_comments,
    render_export,
)
from backend.app.services.video_reference import resolve_video_id
from backend.app.services.youtube_client import YouTubeDataClient

router = APIRouter()

JOB_NOT_FOUND_DETAIL = "Job not found."


def _require_job(service: CommentCollectionService, job_id: str) -> CollectionJob:
    job = service.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_DETAIL)
    return job


@router.post(
    "/jobs",
    response_model=CreateJobResponse,
    tags=["jobs"],
    operation_id="create_collection_job",
)
def create_job(
    request: CreateJobRequest,
    service: Annotated[CommentCollectionService, Depends(get_collection_service)],
) -> CreateJobResponse:
    if not request.url.strip():
        raise HTTPException(status_code=400, detail="Enter a YouTube video URL.")
    try:
        job_id = service.submit(
            request.url,
            request.order,
            request.max_pages,
            request.include_replies,
            base_job_id=request.base_job_id,
        )
    except InvalidCollectionRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return CreateJobResponse(job_id=job_id)


@router.get(
    "/jobs",
    response_model=list[JobSummary],
    tags=["jobs"],
    operation_id="list_collection_jobs",
)
def list_jobs(
    service: Annotated[CommentCollectionService, Depends(get_collection_service)],
) -> list[JobSummary]:
    return [JobSummary.from_job(job) for job in service.list_recent()]


@router.get(
    "/jobs/{job_id}",
    response_model=JobDetail,
    tags=["jobs"],
    operation_id="get_collection_job",
)
def get_job(
    job_id: str,
    service: Annotated[CommentCollectionService, Depends(get_collection_service)],
) -> JobDetail:
    return JobDetail.from_job(_require_job(service, job_id))


@router.patch(
    "/jobs/{job_id}",
    response_model=RenameJobResponse,
    tags=["jobs"],
    operation_id="rename_collection_job",
)
def rename_job(
    job_id: str,
    request: RenameJobRequest,
    service: Annotated[CommentCollectionService, Depends(get_collection_service)],
) -> RenameJobResponse:
    job = service.rename(job_id, request.video_title)
    if job is None:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_DETAIL)
    return RenameJobResponse(success=True, video_title=job.video_title)


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=CancelJobResponse,
    tags=["jobs"],
    operation_id="cancel_collection_job",
)
def cancel_job(
    job_id: str,
    service: Annotated[CommentCollectionService, Depends(get_collection_service)],
) -> CancelJobResponse:
    _require_job(service, job_id)
    accepted = service.cancel(job_id)
    job = _require_job(service, job_id)
    return CancelJobResponse(accepted=accepted, status=job.status)


@router.get(
    "/jobs/{job_id}/results",
    response_model=CommentResultsPage,
    tags=["jobs"],
    operation_id="list_collection_job_results",
)
def list_job_results(
    job_id: str,
    service: Annotated[CommentCollectionService, Depends(get_collection_service)],
    settings: Annotated[AppSettings, Depends(get_settings)],
    cursor: Annotated[int, Query(ge=0)] = 0,
    search: str = "",
    author: str = "",
    replies_only: bool = False,
) -> CommentResultsPage:
    comments = service.list_comments(job_id)
    if comments is None:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_DETAIL)

    filtered = filter_comments(
        comments,
        search=search,
        author=author,
        replies_only=replies_only,
    )
    page, total, next_cursor = paginate_comments(
        filtered,
        cursor=cursor,
        page_size=settings.results_page_size,
    )
    return CommentResultsPage(
        data=[CommentPayload.from_record(record) for record in page],
        total=total,
        cursor=next_cursor,
    )


@router.get(
    "/jobs/{job_id}/download",
    tags=["jobs"],
    operation_id="download_collection_job_results",
)
def download_job_results(
    job_id: str,
    service: Annotated[CommentCollectionService, Depends(get_collection_service)],
    format: str = "csv",
) -> Response:
    job = _require_job(service, job_id)
    comments = service.list_comments(job_id) or []
    if not comments:
        raise HTTPException(status_code=400, detail="There are no comments to download.")

    export_format: ExportFormat = "jsonl" if format == "jsonl" else "csv"
    filename = export_filename(job.video_id, export_format)
    return Response(
        content=render_export(comments, export_format),
        media_type=EXPORT_MEDIA_TYPES[export_format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/youtube/video",
    response_model=VideoDetailsResponse,
    tags=["youtube"],
    operation_id="get_youtube_video",
)
def get_youtube_video(
    client: Annotated[YouTubeDataClient, Depends(get_youtube_client)],
    url: str = "",
    id: str = "",
) -> VideoDetailsResponse:
    video_id = resolve_video_id(id or url)
    if video_id is None:
        raise HTTPException(status_code=400, detail="Provide a YouTube video URL or ID.")

    details = client.fetch_video_details(video_id)
    if details is None:
        raise HTTPException(status_code=404, detail="Video not found.")
    return VideoDetailsResponse.from_details(details)
