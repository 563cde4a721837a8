"""HTTP client for the ConvertHub v2 job API.

API Reference: https://converthub.com/api

Every call takes the bearer token as an argument; the client itself holds
only the connection pool and base URL, so one instance can serve callers
that use different keys.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from .config import DEFAULT_API_BASE
from .errors import (
    GENERIC_ERROR_CODE,
    ApiError,
    ChunkUploadError,
    MalformedResponseError,
    NotFoundError,
    TransportError,
)
from .models import (
    ChunkSessionCompletion,
    ConversionOption,
    FileSubmission,
    FormatCatalog,
    Job,
    SubmissionPayload,
    SubmissionResult,
    SupportedDecision,
    UploadSession,
    UrlSubmission,
)

logger = logging.getLogger(__name__)

# Upload of the whole file can take much longer than a status call
UPLOAD_TIMEOUT_SECONDS = 300.0

SUBMIT_ACCEPTED = (200, 201, 202)
# Responses from the support check that mean "no" rather than "broken"
_UNSUPPORTED_STATUSES = (400, 404, 422)


def decode_api_error(response: httpx.Response, fallback_message: str) -> ApiError:
    """Build an ``ApiError`` (or ``NotFoundError``) from an error response."""
    code = GENERIC_ERROR_CODE
    message = fallback_message
    details: dict[str, Any] = {}

    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            code = str(error.get("code") or code)
            message = str(error.get("message") or message)
            if isinstance(error.get("details"), dict):
                details = error["details"]
        elif isinstance(error, str) and error:
            message = error
        elif body.get("message"):
            message = str(body["message"])

    error_cls = NotFoundError if response.status_code == 404 else ApiError
    return error_cls(response.status_code, code, message, details)


class HttpJobClient:
    """Synchronous wrapper around the ConvertHub REST endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        *,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpJobClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Low-level helpers

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        if not api_key:
            raise ValueError("ConvertHub API key is required")
        return {"Authorization": f"Bearer {api_key}"}

    def _request(
        self,
        method: str,
        path: str,
        api_key: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return self._client.request(method, path, headers=self._headers(api_key), **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request to {path} timed out", cause=exc) from exc
        except httpx.TransportError as exc:
            raise TransportError(f"Failed to connect to API ({exc.__class__.__name__})", cause=exc) from exc

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"Expected JSON from API (HTTP {response.status_code})"
            ) from exc

    @staticmethod
    def _ensure_ok(
        response: httpx.Response,
        fallback_message: str,
        accepted: tuple[int, ...] | None = None,
    ) -> None:
        if response.status_code >= 400:
            raise decode_api_error(response, fallback_message)
        if accepted is not None and response.status_code not in accepted:
            raise MalformedResponseError(
                f"Unexpected HTTP {response.status_code}: {fallback_message}"
            )

    # Job submission

    def submit(self, payload: SubmissionPayload, api_key: str) -> SubmissionResult:
        """Submit a conversion request.

        Returns a queued job, or a completed one when the server answers
        from its cache. Raises ``ApiError`` for any HTTP status >= 400.
        """
        if isinstance(payload, FileSubmission):
            response = self._submit_file(payload, api_key)
            target_format, metadata = payload.target_format, payload.metadata
        elif isinstance(payload, UrlSubmission):
            response = self._submit_url(payload, api_key)
            target_format, metadata = payload.target_format, payload.metadata
        elif isinstance(payload, ChunkSessionCompletion):
            response = self._request(
                "POST",
                f"/upload/{quote(payload.session_id, safe='')}/complete",
                api_key,
            )
            target_format, metadata = payload.target_format, payload.metadata
        else:
            raise TypeError(f"Unsupported submission payload: {type(payload).__name__}")

        self._ensure_ok(response, "Conversion request failed", accepted=SUBMIT_ACCEPTED)
        submission = SubmissionResult.from_api(
            response.status_code,
            self._json(response),
            target_format=target_format,
            metadata=metadata,
        )
        if submission.cached:
            logger.info("Conversion answered from cache (target=%s)", target_format)
        else:
            logger.info("Created ConvertHub job %s (target=%s)", submission.job.id, target_format)
        return submission

    def _submit_file(self, payload: FileSubmission, api_key: str) -> httpx.Response:
        path = Path(payload.path)
        data: dict[str, str] = {"target_format": payload.target_format.lower()}
        if payload.output_filename:
            data["output_filename"] = payload.output_filename
        if payload.webhook_url:
            data["webhook_url"] = payload.webhook_url
        if payload.metadata:
            data["metadata"] = json.dumps(payload.metadata)
        if payload.options:
            data["options"] = json.dumps(payload.options)

        with open(path, "rb") as fh:
            return self._request(
                "POST",
                "/convert",
                api_key,
                files={"file": (path.name, fh)},
                data=data,
                timeout=UPLOAD_TIMEOUT_SECONDS,
            )

    def _submit_url(self, payload: UrlSubmission, api_key: str) -> httpx.Response:
        body: dict[str, Any] = {
            "file_url": payload.file_url,
            "target_format": payload.target_format.lower(),
        }
        if payload.output_filename:
            body["output_filename"] = payload.output_filename
        if payload.webhook_url:
            body["webhook_url"] = payload.webhook_url
        if payload.metadata:
            body["metadata"] = payload.metadata
        return self._request("POST", "/convert-url", api_key, json=body)

    def convert_file(self, path: Path, target_format: str, api_key: str, **kwargs: Any) -> SubmissionResult:
        return self.submit(FileSubmission(path=Path(path), target_format=target_format, **kwargs), api_key)

    def convert_url(self, file_url: str, target_format: str, api_key: str, **kwargs: Any) -> SubmissionResult:
        return self.submit(UrlSubmission(file_url=file_url, target_format=target_format, **kwargs), api_key)

    # Job management

    def fetch_status(self, job_id: str, api_key: str) -> Job:
        """Fetch a fresh snapshot of a job.

        Raises ``NotFoundError`` on 404 (unknown or expired job),
        ``ApiError`` on other errors and ``TransportError`` when the server
        could not be reached.
        """
        response = self._request("GET", f"/jobs/{quote(job_id, safe='')}", api_key)
        self._ensure_ok(response, "Failed to get job status")
        return Job.from_api(self._json(response), job_id=job_id)

    def cancel(self, job_id: str, api_key: str) -> None:
        """Cancel a queued or running job.

        Error codes worth branching on: ``JOB_ALREADY_COMPLETED``,
        ``JOB_ALREADY_CANCELLED``, ``JOB_NOT_FOUND``.
        """
        response = self._request("DELETE", f"/jobs/{quote(job_id, safe='')}", api_key)
        self._ensure_ok(response, "Failed to cancel job")
        logger.info("Cancelled ConvertHub job %s", job_id)

    def delete_result(self, job_id: str, api_key: str) -> str | None:
        """Permanently delete a completed job's stored output.

        Returns the server's ``deleted_at`` timestamp when it reports one.
        Error codes: ``JOB_NOT_COMPLETED``, ``FILE_ALREADY_DELETED``,
        ``FILE_NOT_FOUND``.
        """
        response = self._request("DELETE", f"/jobs/{quote(job_id, safe='')}/destroy", api_key)
        self._ensure_ok(response, "Failed to delete file")
        logger.info("Deleted stored output of ConvertHub job %s", job_id)
        try:
            body = response.json()
        except ValueError:
            return None
        return body.get("deleted_at") if isinstance(body, dict) else None

    # Chunked upload sessions

    def init_upload(
        self,
        filename: str,
        file_size: int,
        total_chunks: int,
        target_format: str,
        api_key: str,
        *,
        chunk_size: int,
        webhook_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> UploadSession:
        body: dict[str, Any] = {
            "filename": filename,
            "file_size": file_size,
            "total_chunks": total_chunks,
            "target_format": target_format.lower(),
        }
        if webhook_url:
            body["webhook_url"] = webhook_url
        if metadata:
            body["metadata"] = metadata

        response = self._request("POST", "/upload/init", api_key, json=body)
        self._ensure_ok(response, "Failed to initialize upload", accepted=(200, 201))
        data = self._json(response)
        session_id = data.get("session_id") if isinstance(data, dict) else None
        if not session_id:
            raise MalformedResponseError("Upload init response has no session_id")
        return UploadSession(
            session_id=str(session_id),
            expires_at=data.get("expires_at"),
            total_chunks=total_chunks,
            chunk_size=chunk_size,
        )

    def upload_chunk(self, session_id: str, index: int, chunk: bytes, api_key: str) -> None:
        response = self._request(
            "POST",
            f"/upload/{quote(session_id, safe='')}/chunks/{index}",
            api_key,
            files={"chunk": (f"chunk_{index}", chunk, "application/octet-stream")},
            timeout=UPLOAD_TIMEOUT_SECONDS,
        )
        if response.status_code in (200, 201):
            return
        error = decode_api_error(response, f"Failed to upload chunk {index + 1}")
        raise ChunkUploadError(index, error.status_code, error.code, error.message, error.details)

    # Format catalog

    def list_formats(self, api_key: str) -> FormatCatalog:
        response = self._request("GET", "/formats", api_key)
        self._ensure_ok(response, "Failed to retrieve formats")
        return FormatCatalog.from_api(self._json(response))

    def list_conversions_from(self, source_format: str, api_key: str) -> list[ConversionOption]:
        fmt = source_format.lower()
        response = self._request("GET", f"/formats/{quote(fmt, safe='')}/conversions", api_key)
        self._ensure_ok(response, f"Failed to retrieve conversions from {fmt}")
        data = self._json(response)
        entries = data.get("available_conversions", []) if isinstance(data, dict) else []
        return [ConversionOption.from_api(entry) for entry in entries if isinstance(entry, dict)]

    def check_conversion(self, source_format: str, target_format: str, api_key: str) -> SupportedDecision:
        src, dst = source_format.lower(), target_format.lower()
        response = self._request(
            "GET",
            f"/formats/{quote(src, safe='')}/to/{quote(dst, safe='')}",
            api_key,
        )
        if response.status_code in _UNSUPPORTED_STATUSES:
            error = decode_api_error(response, f"Conversion from {src} to {dst} is not supported")
            return SupportedDecision(src, dst, supported=False, message=error.message, details=error.details)

        self._ensure_ok(response, "Failed to check conversion")
        data = self._json(response)
        if not isinstance(data, dict):
            raise MalformedResponseError("Conversion check response is not a JSON object")
        return SupportedDecision(
            source_format=src,
            target_format=dst,
            supported=bool(data.get("supported")),
            message=data.get("message"),
            details={k: v for k, v in data.items() if k not in ("supported", "message")},
        )
