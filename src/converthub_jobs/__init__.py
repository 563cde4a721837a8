"""ConvertHub job lifecycle: submit, poll, download, and receive webhooks."""

from .chunked import ChunkedUploader
from .client import HttpJobClient
from .dispatcher import NotificationDispatcher
from .errors import (
    ApiError,
    ChunkTransportError,
    ChunkUploadError,
    ConvertHubError,
    DownloadError,
    InvalidWebhookPayload,
    JobTimeoutError,
    MalformedResponseError,
    NotFoundError,
    TransportError,
)
from .models import (
    ChunkSessionCompletion,
    FileSubmission,
    Job,
    JobFailure,
    JobResult,
    JobState,
    SubmissionResult,
    UrlSubmission,
    WebhookEvent,
)
from .poller import JobPoller
from .webhook import WebhookReceiver

__all__ = [
    "ApiError",
    "ChunkSessionCompletion",
    "ChunkTransportError",
    "ChunkUploadError",
    "ChunkedUploader",
    "ConvertHubError",
    "DownloadError",
    "FileSubmission",
    "HttpJobClient",
    "InvalidWebhookPayload",
    "Job",
    "JobFailure",
    "JobPoller",
    "JobResult",
    "JobState",
    "JobTimeoutError",
    "MalformedResponseError",
    "NotFoundError",
    "NotificationDispatcher",
    "SubmissionResult",
    "TransportError",
    "UrlSubmission",
    "WebhookEvent",
    "WebhookReceiver",
]
