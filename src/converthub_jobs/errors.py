"""Error taxonomy for the ConvertHub job client.

Every error raised by this package derives from ``ConvertHubError`` and
carries a ``retryable`` flag so callers can decide between resuming and
giving up without inspecting the concrete type.
"""

from __future__ import annotations

from typing import Any

GENERIC_ERROR_CODE = "UNKNOWN_ERROR"


class ConvertHubError(Exception):
    """Base class for all client-side errors."""

    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TransportError(ConvertHubError):
    """The request never reached the server or the response never came back."""

    retryable = True

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ChunkTransportError(TransportError):
    """A chunk could not be delivered; later chunks were not sent."""

    def __init__(self, chunk_index: int, message: str, cause: Exception | None = None) -> None:
        super().__init__(message, cause)
        self.chunk_index = chunk_index


class ApiError(ConvertHubError):
    """The server answered with an ``{error: {code, message, details}}`` envelope."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class NotFoundError(ApiError):
    """The job or resource is unknown to the server, or has expired."""


class ChunkUploadError(ApiError):
    """A chunk of an upload session was rejected; later chunks were not sent."""

    retryable = True

    def __init__(
        self,
        chunk_index: int,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(status_code, code, message, details)
        self.chunk_index = chunk_index


class MalformedResponseError(ConvertHubError):
    """A 2xx response did not have the shape the job contract requires."""


class JobTimeoutError(ConvertHubError):
    """Local polling budget exhausted while the job was still running.

    This is not a job failure: the server-side job may still finish, and
    polling can be resumed with the same job id.
    """

    retryable = True

    def __init__(
        self,
        job_id: str,
        attempts_made: int,
        last_state: str | None = None,
        last_error: Exception | None = None,
    ) -> None:
        super().__init__(
            f"Job {job_id} did not reach a terminal state after {attempts_made} polls"
        )
        self.job_id = job_id
        self.attempts_made = attempts_made
        self.last_state = last_state
        self.last_error = last_error


class DownloadError(ConvertHubError):
    """Fetching a finished result failed; the partial file was removed."""

    retryable = True

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class InvalidWebhookPayload(ConvertHubError):
    """Inbound webhook body is not JSON or lacks the ``event`` field."""
