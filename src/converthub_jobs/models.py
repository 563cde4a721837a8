"""Typed job, webhook and catalog models.

API payloads are decoded exactly once, here, into frozen dataclasses. The
job invariants (``result`` only on completed jobs, ``error`` only on failed
ones) are enforced at decode time so nothing downstream has to re-check
optional fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Union

from .errors import InvalidWebhookPayload, MalformedResponseError

CACHED_JOB_HANDLE = "cached"


class JobState(str, Enum):
    """Lifecycle state of a remote conversion job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> JobState:
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


class WebhookEventType(str, Enum):
    COMPLETED = "conversion.completed"
    FAILED = "conversion.failed"


@dataclass(frozen=True)
class JobResult:
    """Location and shape of a finished conversion output."""

    download_url: str
    format: str
    file_size_bytes: int
    expires_at: str

    @classmethod
    def from_api(cls, data: Any, fallback_format: str | None = None) -> JobResult:
        if not isinstance(data, dict):
            raise MalformedResponseError("Result is missing or not an object")

        fmt = data.get("format") or fallback_format
        missing = [
            name
            for name, value in (
                ("download_url", data.get("download_url")),
                ("format", fmt),
                ("file_size", data.get("file_size")),
                ("expires_at", data.get("expires_at")),
            )
            if value in (None, "")
        ]
        if missing:
            raise MalformedResponseError(
                f"Result is missing required fields: {', '.join(missing)}"
            )

        try:
            size = int(data["file_size"])
        except (TypeError, ValueError) as exc:
            raise MalformedResponseError(
                f"Result file_size is not an integer: {data['file_size']!r}"
            ) from exc

        return cls(
            download_url=str(data["download_url"]),
            format=str(fmt),
            file_size_bytes=size,
            expires_at=str(data["expires_at"]),
        )


@dataclass(frozen=True)
class JobFailure:
    """Server-reported reason a job failed."""

    message: str
    code: str | None = None

    @classmethod
    def from_api(cls, data: Any) -> JobFailure:
        if not isinstance(data, dict):
            return cls(message="Unknown error")
        code = data.get("code")
        return cls(
            message=str(data.get("message") or "Unknown error"),
            code=str(code) if code else None,
        )


@dataclass(frozen=True)
class Job:
    """Immutable snapshot of a remote job as last reported by the server."""

    id: str
    state: JobState
    raw_status: str | None = None
    source_format: str | None = None
    target_format: str | None = None
    result: JobResult | None = None
    error: JobFailure | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    processing_time: str | None = None

    def __post_init__(self) -> None:
        if (self.result is not None) != (self.state is JobState.COMPLETED):
            raise MalformedResponseError(
                f"Job {self.id}: result must be present iff state is completed "
                f"(state={self.state.value})"
            )
        if (self.error is not None) != (self.state is JobState.FAILED):
            raise MalformedResponseError(
                f"Job {self.id}: error must be present iff state is failed "
                f"(state={self.state.value})"
            )

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def require_result(self) -> JobResult:
        if self.result is None:
            raise MalformedResponseError(f"Job {self.id} has no result (state={self.state.value})")
        return self.result

    def require_error(self) -> JobFailure:
        if self.error is None:
            raise MalformedResponseError(f"Job {self.id} has no error (state={self.state.value})")
        return self.error

    @classmethod
    def queued(cls, job_id: str, metadata: dict[str, Any] | None = None) -> Job:
        return cls(id=job_id, state=JobState.QUEUED, raw_status="queued", metadata=metadata or {})

    @classmethod
    def from_api(cls, data: Any, job_id: str | None = None) -> Job:
        """Decode a ``GET /jobs/{id}`` body.

        ``job_id`` is the id the caller asked for; it is used when the body
        does not echo one back.
        """
        if not isinstance(data, dict):
            raise MalformedResponseError("Job status response is not a JSON object")

        resolved_id = data.get("job_id") or data.get("id") or job_id
        if not resolved_id:
            raise MalformedResponseError("Job status response has no job id")

        raw_status = data.get("status")
        state = JobState.parse(raw_status)
        target_format = data.get("target_format")

        result = None
        error = None
        if state is JobState.COMPLETED:
            result = JobResult.from_api(data.get("result"), fallback_format=target_format)
        elif state is JobState.FAILED:
            error = JobFailure.from_api(data.get("error"))

        metadata = data.get("metadata")
        return cls(
            id=str(resolved_id),
            state=state,
            raw_status=raw_status if isinstance(raw_status, str) else None,
            source_format=data.get("source_format"),
            target_format=target_format,
            result=result,
            error=error,
            metadata=metadata if isinstance(metadata, dict) else {},
            created_at=data.get("created_at"),
            processing_time=_as_optional_str(data.get("processing_time")),
        )


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a submit call: a queued job, or an immediate cached result."""

    job: Job
    cached: bool = False

    @classmethod
    def from_api(
        cls,
        status_code: int,
        data: Any,
        target_format: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SubmissionResult:
        if not isinstance(data, dict):
            raise MalformedResponseError("Submission response is not a JSON object")

        immediate = data.get("result")
        if status_code == 200 and isinstance(immediate, dict) and immediate.get("download_url"):
            result = JobResult.from_api(immediate, fallback_format=target_format)
            job = Job(
                id=str(data.get("job_id") or CACHED_JOB_HANDLE),
                state=JobState.COMPLETED,
                raw_status="completed",
                target_format=target_format,
                result=result,
                metadata=metadata or {},
            )
            return cls(job=job, cached=True)
        if status_code == 200 and isinstance(immediate, dict) and immediate:
            raise MalformedResponseError(
                "Submission returned a partially populated immediate result"
            )

        job_id = data.get("job_id")
        if not job_id:
            raise MalformedResponseError("Submission response has no job_id")
        return cls(job=Job.queued(str(job_id), metadata=metadata))


@dataclass(frozen=True)
class FileSubmission:
    """Upload a local file to ``POST /convert``."""

    path: Path
    target_format: str
    output_filename: str | None = None
    webhook_url: str | None = None
    metadata: dict[str, Any] | None = None
    options: dict[str, Any] | None = None


@dataclass(frozen=True)
class UrlSubmission:
    """Ask the server to fetch and convert a remote file (``POST /convert-url``)."""

    file_url: str
    target_format: str
    output_filename: str | None = None
    webhook_url: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class ChunkSessionCompletion:
    """Finalize a chunked upload session and start its conversion."""

    session_id: str
    target_format: str | None = None
    metadata: dict[str, Any] | None = None


SubmissionPayload = Union[FileSubmission, UrlSubmission, ChunkSessionCompletion]


@dataclass(frozen=True)
class UploadSession:
    session_id: str
    expires_at: str | None
    total_chunks: int
    chunk_size: int


@dataclass(frozen=True)
class WebhookEvent:
    """One inbound push notification, validated."""

    event_type: str
    job_id: str | None
    result: JobResult | None = None
    error: JobFailure | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def recognized(self) -> bool:
        return self.event_type in (WebhookEventType.COMPLETED.value, WebhookEventType.FAILED.value)

    @classmethod
    def from_payload(cls, payload: Any) -> WebhookEvent:
        if not isinstance(payload, dict) or not payload:
            raise InvalidWebhookPayload("Invalid webhook payload")
        event_type = payload.get("event")
        if not isinstance(event_type, str) or not event_type.strip():
            raise InvalidWebhookPayload("Invalid webhook payload")

        metadata = payload.get("metadata")
        metadata = metadata if isinstance(metadata, dict) else {}
        job_id = payload.get("job_id")
        job_id = str(job_id) if job_id else None

        result = None
        error = None
        if event_type == WebhookEventType.COMPLETED.value:
            try:
                result = JobResult.from_api(payload.get("result"))
            except MalformedResponseError as exc:
                raise InvalidWebhookPayload(f"Invalid completion payload: {exc}") from exc
        elif event_type == WebhookEventType.FAILED.value:
            error = JobFailure.from_api(payload.get("error"))

        if event_type in (WebhookEventType.COMPLETED.value, WebhookEventType.FAILED.value) and not job_id:
            raise InvalidWebhookPayload("Invalid webhook payload: job_id is required")

        return cls(
            event_type=event_type,
            job_id=job_id,
            result=result,
            error=error,
            metadata=metadata,
            raw=payload,
        )


@dataclass(frozen=True)
class FormatInfo:
    extension: str
    category: str
    mime_type: str | None = None


@dataclass(frozen=True)
class FormatCatalog:
    total_formats: int
    formats: dict[str, list[FormatInfo]]

    @classmethod
    def from_api(cls, data: Any) -> FormatCatalog:
        if not isinstance(data, dict) or not isinstance(data.get("formats"), dict):
            raise MalformedResponseError("Format catalog response has no formats object")
        formats: dict[str, list[FormatInfo]] = {}
        for category, entries in data["formats"].items():
            formats[category] = [
                FormatInfo(
                    extension=str(entry.get("extension", "")),
                    category=category,
                    mime_type=entry.get("mime_type"),
                )
                for entry in entries or []
                if isinstance(entry, dict)
            ]
        total = data.get("total_formats")
        if not isinstance(total, int):
            total = sum(len(entries) for entries in formats.values())
        return cls(total_formats=total, formats=formats)


@dataclass(frozen=True)
class ConversionOption:
    target_format: str
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> ConversionOption:
        extra = {k: v for k, v in data.items() if k != "target_format"}
        return cls(target_format=str(data.get("target_format", "")), extra=extra)


@dataclass(frozen=True)
class SupportedDecision:
    source_format: str
    target_format: str
    supported: bool
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def _as_optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
