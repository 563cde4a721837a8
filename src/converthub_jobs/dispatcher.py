"""Side effects triggered by a job's terminal state.

Used by both the polling path (CLI) and the webhook path. Each effect is
independent: a failing download never prevents the email, and so on.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from .errors import DownloadError
from .hooks import PersistenceHook
from .mailer import Mailer

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = httpx.Timeout(connect=10.0, read=300.0, write=30.0, pool=10.0)
_STREAM_CHUNK_BYTES = 64 * 1024

DownloadProgress = Callable[[int, Optional[int]], None]


class NotificationDispatcher:
    """Downloads results, sends notifications and calls the persistence hook."""

    def __init__(
        self,
        *,
        mailer: Mailer | None = None,
        persistence_hook: PersistenceHook | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._mailer = mailer
        self._hook = persistence_hook
        self._transport = transport

    @property
    def has_persistence_hook(self) -> bool:
        return self._hook is not None

    def download_result(
        self,
        url: str,
        destination: Path,
        on_progress: DownloadProgress | None = None,
    ) -> Path:
        """Stream ``url`` into ``destination``.

        Data is written to ``<destination>.part`` and renamed on success.
        Raises ``DownloadError`` on a transport failure or a non-200
        response; the partial file is removed and any existing
        ``destination`` is left untouched.
        """
        destination = Path(destination)
        partial = destination.with_name(destination.name + ".part")

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with httpx.Client(
                timeout=DOWNLOAD_TIMEOUT,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                with client.stream("GET", url) as response:
                    if response.status_code != 200:
                        raise DownloadError(
                            url,
                            f"Download failed with HTTP {response.status_code}",
                            status_code=response.status_code,
                        )
                    total = _content_length(response)
                    received = 0
                    with open(partial, "wb") as fh:
                        for chunk in response.iter_bytes(_STREAM_CHUNK_BYTES):
                            fh.write(chunk)
                            received += len(chunk)
                            if on_progress:
                                on_progress(received, total)
            partial.replace(destination)
        except DownloadError:
            _discard(partial)
            raise
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            _discard(partial)
            raise DownloadError(url, f"Download failed: {exc}") from exc

        logger.info("[DISPATCH] Saved %s (%d bytes)", destination, destination.stat().st_size)
        return destination

    def notify(
        self,
        recipient: str,
        subject: str,
        body: str,
        *,
        high_priority: bool = False,
    ) -> bool:
        """Send a message. Returns False on failure; never raises."""
        if self._mailer is None:
            logger.info("[DISPATCH] Mail not configured; skipping %r to %s", subject, recipient)
            return False
        try:
            self._mailer.send(recipient, subject, body, high_priority=high_priority)
        except Exception as e:
            logger.error("[DISPATCH] Failed to send %r to %s: %s", subject, recipient, e)
            return False
        return True

    def invoke_persistence_hook(
        self,
        key: str,
        status: str,
        result_url: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Forward an outcome to the registered hook. No hook is a no-op."""
        if self._hook is None:
            return False
        try:
            self._hook(key, status, result_url, error_message)
        except Exception as e:
            logger.error("[DISPATCH] Persistence hook failed for %s (%s): %s", key, status, e)
            return False
        return True


def run_isolated(name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> bool:
    """Run one best-effort side effect; log its failure instead of raising."""
    try:
        fn(*args, **kwargs)
    except Exception:
        logger.exception("[DISPATCH] Side effect %s failed", name)
        return False
    return True


def _discard(partial: Path) -> None:
    try:
        partial.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("[DISPATCH] Could not remove partial download %s: %s", partial, e)


def _content_length(response: httpx.Response) -> int | None:
    value = response.headers.get("content-length")
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None
