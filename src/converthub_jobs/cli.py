"""``converthub`` command line interface.

Every command resolves its API key from ``--api-key`` or
``CONVERTHUB_API_KEY`` and exits with status 1 on any failure, including a
failed or cancelled job and a polling timeout.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional
from urllib.parse import unquote, urlparse

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from .chunked import MAX_UPLOAD_BYTES, ChunkedUploader
from .client import HttpJobClient
from .config import RunOptions, Settings, get_settings
from .dispatcher import NotificationDispatcher
from .errors import ApiError, ConvertHubError, JobTimeoutError, NotFoundError
from .formatting import format_duration, format_file_size, status_icon
from .models import Job, JobState, SubmissionResult
from .poller import JobPoller

logger = logging.getLogger(__name__)

SIMPLE_UPLOAD_LIMIT_BYTES = 50 * 1024 * 1024
API_KEY_HINT = "Set CONVERTHUB_API_KEY in .env or use --api-key."

console = Console(soft_wrap=True)
app = typer.Typer(help="Convert files with the ConvertHub API and manage conversion jobs.")

ApiKeyOption = typer.Option(None, "--api-key", help="ConvertHub API key (defaults to CONVERTHUB_API_KEY).")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log HTTP and polling details"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _build_client(settings: Settings) -> HttpJobClient:
    return HttpJobClient(settings.api_base, timeout=settings.timeout_seconds)


def _build_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()


def _resolve_options(
    settings: Settings,
    api_key: Optional[str],
    max_attempts: int,
    *,
    auto_download: bool = False,
    output_path: Optional[Path] = None,
    force: bool = False,
) -> RunOptions:
    key = api_key or settings.api_key
    if not key:
        console.print(f"[red]Error: API key required.[/] {API_KEY_HINT}")
        raise typer.Exit(code=1)
    return RunOptions(
        api_key=key,
        poll_interval_seconds=settings.poll_interval_seconds,
        max_attempts=max_attempts,
        auto_download=auto_download,
        output_path=output_path,
        force=force,
    )


def _parse_metadata(raw: Optional[str]) -> Optional[dict[str, Any]]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        console.print(f"[red]Error: --metadata is not valid JSON:[/] {exc}")
        raise typer.Exit(code=1)
    if not isinstance(value, dict):
        console.print("[red]Error: --metadata must be a JSON object.[/]")
        raise typer.Exit(code=1)
    return value


@contextmanager
def _exit_on_error() -> Iterator[None]:
    """Render library errors and turn them into exit code 1."""
    try:
        yield
    except JobTimeoutError as exc:
        console.print(f"\n[yellow]⏱️  Timeout:[/] {exc.message}")
        if exc.last_error is not None:
            console.print(f"  Last error: {exc.last_error}")
        console.print(f"Check status with: converthub status {exc.job_id} --watch")
        raise typer.Exit(code=1)
    except NotFoundError as exc:
        _print_api_error(exc)
        console.print("  The job ID may be incorrect or the job has expired.")
        raise typer.Exit(code=1)
    except ApiError as exc:
        _print_api_error(exc)
        raise typer.Exit(code=1)
    except ConvertHubError as exc:
        console.print(f"[red]✗ Error:[/] {exc.message}")
        raise typer.Exit(code=1)
    except ValueError as exc:
        console.print(f"[red]✗ Error:[/] {exc}")
        raise typer.Exit(code=1)


def _print_api_error(exc: ApiError) -> None:
    console.print(f"[red]✗ Error:[/] {exc.message}")
    console.print(f"  Code: {exc.code}")
    for key, value in (exc.details or {}).items():
        rendered = json.dumps(value) if isinstance(value, (dict, list)) else value
        console.print(f"  {key}: {rendered}")


def _print_progress(job: Job) -> None:
    timestamp = datetime.now().strftime("%H:%M:%S")
    label = job.raw_status if job.state is JobState.UNKNOWN and job.raw_status else job.state.value
    console.print(f"[{timestamp}] Status: {status_icon(job.state)} {label.capitalize()}")


def _print_result(job: Job) -> None:
    result = job.require_result()
    console.print(f"Download URL: {result.download_url}")
    console.print(f"Format: {result.format}")
    console.print(f"Size: {format_file_size(result.file_size_bytes)}")
    if job.processing_time:
        console.print(f"Processing time: {job.processing_time}")
    console.print(f"Expires: {result.expires_at}")


def _finish(job: Job, options: RunOptions, default_name: Optional[str] = None) -> None:
    """Report a terminal job; download it when asked. Non-success exits 1."""
    if job.state is JobState.COMPLETED:
        console.print("\n[green]✓ Conversion complete![/]")
        _print_result(job)
        if options.auto_download:
            name = default_name or f"{job.id}.{job.require_result().format}"
            _download(job, options.output_path or Path(name), force=options.force, quiet=False)
        return

    if job.state is JobState.FAILED:
        error = job.require_error()
        console.print("\n[red]✗ Conversion failed[/]")
        console.print(f"Error: {error.message}")
        if error.code:
            console.print(f"Code: {error.code}")
    else:
        console.print("\n[yellow]⚠️  Job was cancelled[/]")
    raise typer.Exit(code=1)


def _wait(client: HttpJobClient, submission: SubmissionResult, options: RunOptions) -> Job:
    if submission.cached:
        console.print("[green]✓ Conversion complete (cached result)[/]")
        return submission.job
    console.print(f"[green]✓ Job created:[/] {submission.job.id}\n")
    return JobPoller(client).await_submission(
        submission,
        options.api_key,
        options.poll_interval_seconds,
        options.max_attempts,
        on_progress=_print_progress,
    )


def _download(job: Job, destination: Path, *, force: bool, quiet: bool) -> Path:
    result = job.require_result()
    if destination.exists() and not force:
        if not typer.confirm(f"File already exists: {destination}. Overwrite?", default=False):
            console.print("Download cancelled.")
            raise typer.Exit(code=0)

    if not quiet:
        console.print(f"\n→ Downloading to {destination}")

    def on_progress(received: int, total: Optional[int]) -> None:
        if quiet:
            return
        if total:
            console.print(
                f"\r  Progress: {received * 100 // total}% "
                f"[{format_file_size(received)} / {format_file_size(total)}]",
                end="",
            )

    saved = _build_dispatcher().download_result(result.download_url, destination, on_progress)
    size = saved.stat().st_size
    if not quiet:
        console.print(f"\n[green]✓ File saved:[/] {saved} ({format_file_size(size)})")
        if size != result.file_size_bytes:
            console.print(
                f"[yellow]⚠️  Downloaded size differs from expected size[/] "
                f"(expected {format_file_size(result.file_size_bytes)})"
            )
    else:
        console.print(str(saved))
    return saved


# Conversion


@app.command()
def convert(
    file: Path = typer.Argument(..., help="File to convert (up to 50 MB)"),
    target_format: str = typer.Argument(..., help="Target format, e.g. docx"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output filename on the server"),
    webhook: Optional[str] = typer.Option(None, "--webhook", help="Webhook URL to notify on completion"),
    metadata: Optional[str] = typer.Option(None, "--metadata", help="JSON object echoed back with the job"),
    download: bool = typer.Option(False, "--download/--no-download", help="Download the result when done"),
    api_key: Optional[str] = ApiKeyOption,
) -> None:
    """Upload a file and wait for its conversion."""
    settings = get_settings()
    options = _resolve_options(settings, api_key, settings.max_poll_attempts, auto_download=download)
    target_format = target_format.lower()

    if not file.is_file():
        console.print(f"[red]Error: File '{file}' not found.[/]")
        raise typer.Exit(code=1)
    size = file.stat().st_size
    if size > SIMPLE_UPLOAD_LIMIT_BYTES:
        console.print(f"[red]Error: File size ({format_file_size(size)}) exceeds 50MB limit.[/]")
        console.print(f"Use: converthub upload {file} {target_format}")
        raise typer.Exit(code=1)

    console.print(f"Converting: {file.name} ({format_file_size(size)}) to {target_format}")
    with _exit_on_error(), _build_client(settings) as client:
        submission = client.convert_file(
            file,
            target_format,
            options.api_key,
            output_filename=output,
            webhook_url=webhook,
            metadata=_parse_metadata(metadata),
        )
        job = _wait(client, submission, options)
        _finish(job, options, default_name=f"{file.stem}.{target_format}")


@app.command("convert-url")
def convert_url(
    url: str = typer.Argument(..., help="http(s) URL of the file to convert"),
    target_format: str = typer.Argument(..., help="Target format, e.g. pdf"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output filename on the server"),
    webhook: Optional[str] = typer.Option(None, "--webhook", help="Webhook URL to notify on completion"),
    metadata: Optional[str] = typer.Option(None, "--metadata", help="JSON object echoed back with the job"),
    download: bool = typer.Option(False, "--download/--no-download", help="Download the result when done"),
    api_key: Optional[str] = ApiKeyOption,
) -> None:
    """Convert a file the server fetches from a URL."""
    settings = get_settings()
    options = _resolve_options(settings, api_key, settings.url_max_poll_attempts, auto_download=download)
    target_format = target_format.lower()

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        console.print(f"[red]Error: Invalid URL '{url}'. Only http and https URLs are supported.[/]")
        raise typer.Exit(code=1)

    stem = Path(unquote(parsed.path)).stem or "converted"
    output_filename = output or f"{stem}.{target_format}"

    console.print(f"Converting from URL: {url} to {target_format}")
    with _exit_on_error(), _build_client(settings) as client:
        submission = client.convert_url(
            url,
            target_format,
            options.api_key,
            output_filename=output_filename,
            webhook_url=webhook,
            metadata=_parse_metadata(metadata),
        )
        job = _wait(client, submission, options)
        _finish(job, options, default_name=output_filename)


@app.command()
def upload(
    file: Path = typer.Argument(..., help="File to upload in chunks (up to 2 GB)"),
    target_format: str = typer.Argument(..., help="Target format"),
    chunk_size: Optional[int] = typer.Option(None, "--chunk-size", min=1, max=100, help="Chunk size in MB"),
    webhook: Optional[str] = typer.Option(None, "--webhook", help="Webhook URL to notify on completion"),
    metadata: Optional[str] = typer.Option(None, "--metadata", help="JSON object echoed back with the job"),
    download: bool = typer.Option(False, "--download/--no-download", help="Download the result when done"),
    api_key: Optional[str] = ApiKeyOption,
) -> None:
    """Upload a large file in chunks and wait for its conversion."""
    settings = get_settings()
    options = _resolve_options(settings, api_key, settings.upload_max_poll_attempts, auto_download=download)
    target_format = target_format.lower()
    chunk_bytes = chunk_size * 1024 * 1024 if chunk_size else settings.chunk_size_bytes

    if not file.is_file():
        console.print(f"[red]Error: File '{file}' not found.[/]")
        raise typer.Exit(code=1)
    size = file.stat().st_size
    if size > MAX_UPLOAD_BYTES:
        console.print(f"[red]Error: File size ({format_file_size(size)}) exceeds 2GB limit.[/]")
        raise typer.Exit(code=1)

    console.print(f"Uploading: {file.name} ({format_file_size(size)}) to {target_format}")

    def on_chunk(index: int, total: int) -> None:
        console.print(f"  Chunk {index + 1}/{total} uploaded ({(index + 1) * 100 // total}%)")

    started = time.monotonic()
    with _exit_on_error(), _build_client(settings) as client:
        submission = ChunkedUploader(client).upload(
            file,
            target_format,
            options.api_key,
            chunk_size=chunk_bytes,
            webhook_url=webhook,
            metadata=_parse_metadata(metadata),
            on_session=lambda session: console.print(f"✓ Upload session: {session.session_id}"),
            on_chunk=on_chunk,
        )
        console.print(f"✓ All chunks uploaded in {format_duration(time.monotonic() - started)}")
        job = _wait(client, submission, options)
        _finish(job, options, default_name=f"{file.stem}.{target_format}")


# Job management


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job identifier"),
    watch: bool = typer.Option(False, "--watch", help="Poll until the job finishes"),
    download: bool = typer.Option(False, "--download", help="Download the result if complete"),
    cancel: bool = typer.Option(False, "--cancel", help="Cancel the job instead"),
    delete: bool = typer.Option(False, "--delete", help="Delete the stored result instead"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmations"),
    output: Optional[Path] = typer.Option(None, "--output", help="Download destination"),
    api_key: Optional[str] = ApiKeyOption,
) -> None:
    """Show a job's status, optionally watching, downloading, cancelling or deleting it."""
    if cancel:
        cancel_job(job_id, force=force, api_key=api_key)
        return
    if delete:
        delete_job(job_id, force=force, api_key=api_key)
        return

    settings = get_settings()
    options = _resolve_options(
        settings,
        api_key,
        settings.watch_max_poll_attempts,
        auto_download=download,
        output_path=output,
        force=force,
    )

    with _exit_on_error(), _build_client(settings) as client:
        if watch:
            console.print(f"Monitoring job: {job_id} (Ctrl+C to stop)\n")
            job = JobPoller(client).await_completion(
                job_id,
                options.api_key,
                options.poll_interval_seconds,
                options.max_attempts,
                on_progress=_print_progress,
            )
            _finish(job, options)
            return

        job = client.fetch_status(job_id, options.api_key)
        _print_job(job)
        if job.state is JobState.COMPLETED:
            _finish(job, options)
            if not download:
                console.print(f"\nTo download: converthub download {job_id}")
        elif job.state in (JobState.FAILED, JobState.CANCELLED):
            _finish(job, options)
        else:
            console.print("\n⏳ Conversion in progress...")
            console.print(f"To monitor: converthub status {job_id} --watch")
            console.print(f"To cancel: converthub cancel {job_id}")


def _print_job(job: Job) -> None:
    label = job.raw_status or job.state.value
    console.print(f"Job ID: {job.id}")
    console.print(f"Status: {status_icon(job.state)} {label.capitalize()}")
    if job.source_format and job.target_format:
        console.print(f"Conversion: {job.source_format.upper()} → {job.target_format.upper()}")
    if job.created_at:
        console.print(f"Created: {job.created_at}")
    if job.metadata:
        console.print("\nMetadata:")
        for key, value in job.metadata.items():
            rendered = json.dumps(value) if isinstance(value, (dict, list)) else value
            console.print(f"  {key}: {rendered}")


@app.command("download")
def download_cmd(
    job_id: str = typer.Argument(..., help="Job identifier"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save with a custom filename"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print the saved path"),
    api_key: Optional[str] = ApiKeyOption,
) -> None:
    """Download the result of a completed job."""
    settings = get_settings()
    options = _resolve_options(settings, api_key, 1, output_path=output, force=force)

    with _exit_on_error(), _build_client(settings) as client:
        job = client.fetch_status(job_id, options.api_key)
        if job.state is not JobState.COMPLETED:
            console.print("[red]✗ Cannot download: Job is not completed.[/]")
            console.print(f"  Current status: {(job.raw_status or job.state.value).capitalize()}")
            if job.state is JobState.FAILED:
                console.print("\nThe conversion failed and there is no file to download.")
                console.print(f"  Error: {job.require_error().message}")
            elif job.state is JobState.CANCELLED:
                console.print("\nThe job was cancelled and there is no file to download.")
            else:
                console.print("\nThe conversion is still in progress.")
                console.print(f"  Watch progress: converthub status {job_id} --watch")
            raise typer.Exit(code=1)

        result = job.require_result()
        if not quiet:
            _print_job(job)
        destination = options.output_path or Path(f"{job.id}.{result.format}")
        _download(job, destination, force=options.force, quiet=quiet)


@app.command("cancel")
def cancel_job(
    job_id: str = typer.Argument(..., help="Job identifier"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt"),
    api_key: Optional[str] = ApiKeyOption,
) -> None:
    """Cancel a queued or processing job."""
    settings = get_settings()
    options = _resolve_options(settings, api_key, 1)

    with _exit_on_error(), _build_client(settings) as client:
        job = client.fetch_status(job_id, options.api_key)
        console.print(f"Current status: {status_icon(job.state)} {job.state.value.capitalize()}")
        if job.state is JobState.COMPLETED:
            console.print("\n[red]✗ Cannot cancel: Job has already completed.[/]")
            console.print(f"  Download URL: {job.require_result().download_url}")
            console.print(f"To delete the file: converthub delete {job_id}")
            raise typer.Exit(code=1)
        if job.state is JobState.FAILED:
            console.print("\n[red]✗ Cannot cancel: Job has already failed.[/]")
            console.print(f"  Error: {job.require_error().message}")
            raise typer.Exit(code=1)
        if job.state is JobState.CANCELLED:
            console.print("\n[yellow]Job has already been cancelled.[/]")
            raise typer.Exit(code=1)

        if not force and not typer.confirm("This will cancel the conversion job. Continue?", default=False):
            console.print("Cancelled by user.")
            return

        try:
            client.cancel(job_id, options.api_key)
        except ApiError as exc:
            console.print("\n[red]✗ Failed to cancel job[/]")
            _print_api_error(exc)
            if exc.code == "JOB_NOT_FOUND":
                console.print("The job could not be found. It may have expired or the ID is incorrect.")
            elif exc.code == "JOB_ALREADY_COMPLETED":
                console.print("The job has already completed and cannot be cancelled.")
            elif exc.code == "JOB_ALREADY_CANCELLED":
                console.print("The job has already been cancelled.")
            raise typer.Exit(code=1)

    console.print("\n[green]✓ Job cancelled successfully![/]")


@app.command("delete")
def delete_job(
    job_id: str = typer.Argument(..., help="Job identifier"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt"),
    api_key: Optional[str] = ApiKeyOption,
) -> None:
    """Permanently delete a completed job's stored result."""
    settings = get_settings()
    options = _resolve_options(settings, api_key, 1)

    console.print(f"Deleting file for job: {job_id}")
    if not force:
        console.print("[yellow]Warning: This action is irreversible![/]")
        if not typer.confirm("Continue?", default=False):
            console.print("Cancelled.")
            return

    with _exit_on_error(), _build_client(settings) as client:
        try:
            deleted_at = client.delete_result(job_id, options.api_key)
        except ApiError as exc:
            console.print("[red]✗ Failed to delete file[/]")
            _print_api_error(exc)
            if exc.code == "JOB_NOT_COMPLETED":
                console.print("Only completed conversions can be deleted.")
            elif exc.code == "FILE_ALREADY_DELETED":
                console.print("The file has already been deleted.")
            elif exc.code == "FILE_NOT_FOUND":
                console.print("No stored file was found for this job.")
            raise typer.Exit(code=1)

    console.print("[green]✓ File deleted successfully[/]")
    if deleted_at:
        console.print(f"Deleted at: {deleted_at}")


# Format discovery


@app.command()
def formats(
    source: Optional[str] = typer.Option(None, "--from", help="List conversions from this format"),
    check: Optional[str] = typer.Option(None, "--check", help="Check a conversion, e.g. pdf:docx"),
    api_key: Optional[str] = ApiKeyOption,
) -> None:
    """List supported formats and conversions."""
    settings = get_settings()
    options = _resolve_options(settings, api_key, 1)

    with _exit_on_error(), _build_client(settings) as client:
        if check:
            src, sep, dst = check.partition(":")
            if not sep or not src or not dst:
                console.print("[red]Error: Invalid format. Use --check SOURCE:TARGET (e.g. pdf:docx)[/]")
                raise typer.Exit(code=1)
            _check_conversion(client, src, dst, options.api_key)
        elif source:
            _show_conversions(client, source, options.api_key)
        else:
            _show_catalog(client, options.api_key)


def _show_catalog(client: HttpJobClient, api_key: str) -> None:
    catalog = client.list_formats(api_key)
    table = Table(title=f"Supported formats ({catalog.total_formats})")
    table.add_column("Category")
    table.add_column("Count", justify="right")
    table.add_column("Extensions")
    for category, entries in sorted(catalog.formats.items()):
        table.add_row(category.capitalize(), str(len(entries)), " ".join(e.extension for e in entries))
    console.print(table)
    console.print("\nConversions from a format: converthub formats --from pdf")
    console.print("Check a conversion:        converthub formats --check pdf:docx")


def _show_conversions(client: HttpJobClient, source: str, api_key: str) -> None:
    conversions = client.list_conversions_from(source, api_key)
    console.print(f"Conversions from {source.upper()} ({len(conversions)})")
    grouped: dict[str, list[str]] = {}
    for option in conversions:
        grouped.setdefault(str(option.extra.get("type", "other")), []).append(option.target_format)
    for group, targets in sorted(grouped.items()):
        console.print(f"  {group.capitalize()}: {' '.join(targets)}")
    if conversions:
        console.print(f"\nExample: converthub convert file.{source.lower()} {conversions[0].target_format}")


def _check_conversion(client: HttpJobClient, src: str, dst: str, api_key: str) -> None:
    console.print(f"Checking conversion: {src.upper()} → {dst.upper()}")
    decision = client.check_conversion(src, dst, api_key)
    if decision.supported:
        console.print("[green]✓ Conversion is SUPPORTED[/]")
        if decision.message:
            console.print(decision.message)
        return

    console.print("[red]✗ Conversion is NOT supported[/]")
    if decision.message:
        console.print(f"  {decision.message}")
    try:
        alternatives = client.list_conversions_from(src, api_key)
    except NotFoundError:
        alternatives = []
    if alternatives:
        console.print(f"\nAvailable conversions from {src.upper()}:")
        console.print("  " + " ".join(option.target_format for option in alternatives))
    raise typer.Exit(code=1)


# Webhook receiver


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (defaults to APP_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (defaults to APP_PORT)"),
) -> None:
    """Run the webhook receiver."""
    settings = get_settings()
    logging.getLogger().setLevel(logging.DEBUG if settings.debug else logging.INFO)
    logger.info("Starting ConvertHub webhook receiver on %s:%s", host or settings.app_host, port or settings.app_port)
    uvicorn.run(
        "converthub_jobs.api.app:app",
        host=host or settings.app_host,
        port=port or settings.app_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    app()
