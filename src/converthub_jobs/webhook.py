"""Webhook receiver for ConvertHub job notifications.

Point the ``webhook_url`` of a conversion at the FastAPI route that wraps
this receiver; the API POSTs there when the conversion completes or fails.

Every delivery is appended to the audit log before it is validated, so
malformed deliveries still leave a forensic trail. Side effects (download,
mail, persistence hook) are best-effort and never change the response.
Re-deliveries are processed again in full.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .audit import AuditLog
from .config import Settings
from .dispatcher import NotificationDispatcher, run_isolated
from .errors import InvalidWebhookPayload
from .formatting import format_file_size
from .hooks import HttpPersistenceHook
from .mailer import SmtpMailer
from .models import WebhookEvent, WebhookEventType

logger = logging.getLogger(__name__)

SYSTEM_ERROR_CODE = "SYSTEM_ERROR"

# Metadata keys callers attach at submission time and get echoed back
RECIPIENT_METADATA_KEY = "user_email"
CORRELATION_METADATA_KEY = "request_id"
USER_METADATA_KEY = "user_id"
ORDER_METADATA_KEY = "order_id"

# Result formats are used as file extensions for auto-downloads
_SAFE_FORMAT = re.compile(r"^[A-Za-z0-9]+$")


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int
    body: dict[str, Any]


@dataclass(frozen=True)
class ReceiverOptions:
    """What the receiver does beyond logging."""

    auto_download: bool = False
    download_dir: Path = Path("downloads")
    notification_email: str | None = None
    admin_email: str | None = None


@dataclass
class HandledEvent:
    """Record of which side effects ran for one delivery (for logs and tests)."""

    event_type: str | None
    job_id: str | None
    actions: list[str] = field(default_factory=list)


class WebhookReceiver:
    """Stateless handler for one inbound webhook POST."""

    def __init__(
        self,
        audit_log: AuditLog,
        dispatcher: NotificationDispatcher,
        options: ReceiverOptions | None = None,
    ) -> None:
        self._audit = audit_log
        self._dispatcher = dispatcher
        self._options = options or ReceiverOptions()

    def handle(self, raw_body: bytes | str) -> WebhookResponse:
        response, _ = self.process(raw_body)
        return response

    def process(self, raw_body: bytes | str) -> tuple[WebhookResponse, HandledEvent]:
        text = raw_body.decode("utf-8", errors="replace") if isinstance(raw_body, bytes) else raw_body
        try:
            payload: Any = json.loads(text) if text.strip() else None
        except json.JSONDecodeError:
            payload = None

        self._audit.append(payload if payload is not None else {"raw": text})

        try:
            event = WebhookEvent.from_payload(payload)
            handled = HandledEvent(event.event_type, event.job_id)
            if event.event_type == WebhookEventType.COMPLETED.value:
                self._handle_completed(event, handled)
            elif event.event_type == WebhookEventType.FAILED.value:
                self._handle_failed(event, handled)
            else:
                logger.warning("[WEBHOOK] Unknown event type: %s", event.event_type)
        except InvalidWebhookPayload as exc:
            logger.warning("[WEBHOOK] Rejected delivery: %s", exc)
            return WebhookResponse(400, {"error": exc.message}), HandledEvent(None, None)

        return WebhookResponse(200, {"status": "received"}), handled

    # conversion.completed

    def _handle_completed(self, event: WebhookEvent, handled: HandledEvent) -> None:
        job_id, result = event.job_id, event.result
        if job_id is None or result is None:
            raise InvalidWebhookPayload("Invalid completion payload")

        logger.info(
            "[WEBHOOK] conversion.completed job_id=%s format=%s size=%s expires=%s",
            job_id, result.format, format_file_size(result.file_size_bytes), result.expires_at,
        )

        if event.metadata:
            self._process_metadata(event.metadata, job_id, handled)

        if self._options.auto_download:
            destination = self._download_destination(job_id, result.format)
            if destination is not None and run_isolated(
                "download", self._dispatcher.download_result, result.download_url, destination
            ):
                handled.actions.append("file_downloaded")

        if self._options.notification_email:
            sent = self._dispatcher.notify(
                self._options.notification_email,
                f"ConvertHub: Conversion Complete - Job {job_id}",
                "Your file conversion has completed successfully.\n\n"
                f"Job ID: {job_id}\n"
                f"Format: {result.format}\n"
                f"Download URL: {result.download_url}\n\n"
                f"Note: The download link expires at {result.expires_at}.\n",
            )
            if sent:
                handled.actions.append("notification_sent")

        if self._dispatcher.invoke_persistence_hook(job_id, "completed", result.download_url):
            handled.actions.append("persistence_hook")

    def _download_destination(self, job_id: str, fmt: str) -> Path | None:
        """Path for an auto-download, or None when the name would leave ``download_dir``."""
        root = self._options.download_dir.resolve()
        if Path(job_id).name != job_id or job_id in (".", "..") or not _SAFE_FORMAT.match(fmt):
            logger.warning("[WEBHOOK] Skipping download: unsafe file name job_id=%r format=%r", job_id, fmt)
            return None
        destination = (root / f"{job_id}.{fmt}").resolve()
        if not destination.is_relative_to(root):
            logger.warning("[WEBHOOK] Skipping download: %s is outside %s", destination, root)
            return None
        return destination

    def _process_metadata(self, metadata: dict[str, Any], job_id: str, handled: HandledEvent) -> None:
        if USER_METADATA_KEY in metadata:
            logger.info(
                "[WEBHOOK] action=update_user_history user_id=%s job_id=%s",
                metadata[USER_METADATA_KEY], job_id,
            )
            handled.actions.append("update_user_history")
        if ORDER_METADATA_KEY in metadata:
            logger.info(
                "[WEBHOOK] action=update_order order_id=%s job_id=%s",
                metadata[ORDER_METADATA_KEY], job_id,
            )
            handled.actions.append("update_order")

    # conversion.failed

    def _handle_failed(self, event: WebhookEvent, handled: HandledEvent) -> None:
        job_id, error = event.job_id, event.error
        if job_id is None or error is None:
            raise InvalidWebhookPayload("Invalid failure payload")

        logger.warning(
            "[WEBHOOK] conversion.failed job_id=%s code=%s error=%s",
            job_id, error.code or "UNKNOWN", error.message,
        )

        recipient = event.metadata.get(RECIPIENT_METADATA_KEY)
        if recipient:
            sent = self._dispatcher.notify(
                str(recipient),
                f"ConvertHub: Conversion Failed - Job {job_id}",
                "Your file conversion has failed.\n\n"
                f"Job ID: {job_id}\n"
                f"Error: {error.message}\n\n"
                "Please try again or contact support if the problem persists.\n",
            )
            if sent:
                handled.actions.append("failure_notification_sent")

        correlation_id = event.metadata.get(CORRELATION_METADATA_KEY)
        if correlation_id and self._dispatcher.invoke_persistence_hook(
            str(correlation_id), "failed", None, error.message
        ):
            handled.actions.append("persistence_hook")

        if error.code == SYSTEM_ERROR_CODE and self._options.admin_email:
            sent = self._dispatcher.notify(
                self._options.admin_email,
                f"ALERT: ConvertHub System Error - Job {job_id}",
                "A critical error occurred during conversion.\n\n"
                f"Job ID: {job_id}\n"
                f"Error Code: {error.code}\n"
                f"Error Message: {error.message}\n"
                f"Timestamp: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')}\n\n"
                "Please investigate this issue.\n",
                high_priority=True,
            )
            if sent:
                handled.actions.append("admin_alert_sent")


def build_receiver(settings: Settings) -> WebhookReceiver:
    """Wire a receiver from environment settings."""
    hook = HttpPersistenceHook(settings.persistence_hook_url) if settings.persistence_hook_url else None
    dispatcher = NotificationDispatcher(
        mailer=SmtpMailer.from_settings(settings),
        persistence_hook=hook,
    )
    options = ReceiverOptions(
        auto_download=settings.auto_download,
        download_dir=settings.download_dir,
        notification_email=settings.notification_email,
        admin_email=settings.admin_email,
    )
    return WebhookReceiver(AuditLog(settings.webhook_log_file), dispatcher, options)
