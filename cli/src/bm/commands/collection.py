"""Comment collection commands for the Brand Monitor CLI."""

from datetime import datetime
from pathlib import Path

import click
from rich.console import Console

from backend.app.repositories.jobs_repository import InMemoryJobsRepository
from backend.app.services.collection_service import (
    CommentCollectionService,
    InvalidCollectionRequestError,
)
from backend.app.services.comment_export import export_filename, render_export
from backend.app.services.video_reference import canonical_watch_url, resolve_video_id
from backend.app.services.youtube_client import YouTubeDataClient, YouTubeServiceError

from ..config import API_KEY_ENV_VAR, Config

console = Console()

POLL_INTERVAL_SECONDS = 0.5


@click.command()
@click.argument("reference")
@click.option("--order", type=click.Choice(["time", "relevance"]), default=None, help="Comment order")
@click.option("--max-pages", type=click.IntRange(min=0), default=None, help="Thread pages to walk (0 = all)")
@click.option("--replies/--no-replies", default=False, help="Also collect replies")
@click.option("--format", "fmt", type=click.Choice(["csv", "jsonl"]), default="csv", help="Export format")
@click.option("--output", "-o", type=click.Path(path_type=Path), default=None, help="Export file path")
def collect(reference: str, order: str | None, max_pages: int | None, replies: bool, fmt: str, output: Path | None):
    """Collect the comments of one video and write them to a file."""
    config = Config.load()
    if not config.youtube_api_key:
        console.print(f"[red]No API key.[/red] Set {API_KEY_ENV_VAR} or add youtube_api_key to the config file.")
        raise SystemExit(1)

    try:
        client = YouTubeDataClient(config.youtube_api_key)
    except YouTubeServiceError as exc:
        console.print(f"[red]{exc}[/red]")
        raise SystemExit(1)

    service = CommentCollectionService(InMemoryJobsRepository(), client, max_workers=1)
    try:
        try:
            job_id = service.submit(
                reference,
                order or config.order,
                config.max_pages if max_pages is None else max_pages,
                replies,
            )
        except InvalidCollectionRequestError as exc:
            console.print(f"[red]{exc}[/red]")
            raise SystemExit(1)

        with console.status("Queued") as status:
            job = service.wait(job_id, timeout=POLL_INTERVAL_SECONDS)
            while job is not None and not job.is_terminal:
                status.update(job.progress.message)
                job = service.wait(job_id, timeout=POLL_INTERVAL_SECONDS)

        if job is None or job.status == "error":
            console.print(f"[red]{job.error if job else 'Job disappeared.'}[/red]")
            raise SystemExit(1)

        comments = service.list_comments(job_id) or []
        if not comments:
            console.print("[yellow]No comments collected.[/yellow]")
            return

        path = output or config.output_dir / export_filename(job.video_id, fmt, datetime.now())
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_export(comments, fmt), encoding="utf-8")
        console.print(f"[green]Saved {len(comments)} comments:[/green] {path}")
    finally:
        service.shutdown()


@click.command()
@click.argument("reference")
def resolve(reference: str):
    """Print the video ID behind a YouTube URL."""
    video_id = resolve_video_id(reference)
    if video_id is None:
        console.print(f"[red]Not a YouTube video reference:[/red] {reference}")
        raise SystemExit(1)

    console.print(video_id)
    console.print(f"[dim]{canonical_watch_url(video_id)}[/dim]")


@click.command()
@click.option("--api-key", default=None, help="YouTube Data API key")
@click.option("--output-dir", type=click.Path(path_type=Path), default=None, help="Default export directory")
@click.option("--order", type=click.Choice(["time", "relevance"]), default=None, help="Default comment order")
@click.option("--max-pages", type=click.IntRange(min=0), default=None, help="Default page cap")
def configure(api_key: str | None, output_dir: Path | None, order: str | None, max_pages: int | None):
    """Update ~/.config/brand-monitor/config.yaml."""
    config = Config.load(use_environment=False)
    if api_key is not None:
        config.youtube_api_key = api_key.strip() or None
    if output_dir is not None:
        config.output_dir = output_dir
    if order is not None:
        config.order = order
    if max_pages is not None:
        config.max_pages = max_pages

    config.save()
    console.print("[green]Configuration saved.[/green]")
