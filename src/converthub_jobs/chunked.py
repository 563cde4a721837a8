"""Chunked upload for large files (up to 2 GB).

The file is split into fixed-size chunks that are uploaded strictly in
index order; the session is only completed after every chunk has been
acknowledged.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from .client import HttpJobClient
from .errors import ChunkTransportError, TransportError
from .models import ChunkSessionCompletion, SubmissionResult, UploadSession

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 2 * 1024 * 1024 * 1024
DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024

ChunkCallback = Callable[[int, int], None]


def count_chunks(file_size: int, chunk_size: int) -> int:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return max(1, math.ceil(file_size / chunk_size))


class ChunkedUploader:
    """Runs one upload session: init, ordered chunk uploads, complete."""

    def __init__(self, client: HttpJobClient) -> None:
        self._client = client

    def upload(
        self,
        path: Path,
        target_format: str,
        api_key: str,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        webhook_url: str | None = None,
        metadata: dict[str, Any] | None = None,
        on_session: Optional[Callable[[UploadSession], None]] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> SubmissionResult:
        """Upload ``path`` and start its conversion.

        A rejected chunk raises ``ChunkUploadError`` and an undelivered one
        ``ChunkTransportError``, both carrying the chunk index; later chunks
        are not attempted and the session is not completed.
        """
        path = Path(path)
        file_size = path.stat().st_size
        if file_size > MAX_UPLOAD_BYTES:
            raise ValueError(
                f"File size ({file_size / 1048576:.2f} MB) exceeds 2GB limit"
            )
        total_chunks = count_chunks(file_size, chunk_size)

        session_metadata = {
            "original_size": file_size,
            "chunk_size": chunk_size,
            "upload_time": datetime.now(timezone.utc).isoformat(),
            **(metadata or {}),
        }
        session = self._client.init_upload(
            path.name,
            file_size,
            total_chunks,
            target_format,
            api_key,
            chunk_size=chunk_size,
            webhook_url=webhook_url,
            metadata=session_metadata,
        )
        logger.info(
            "Upload session %s created for %s (%d chunks of %d bytes)",
            session.session_id, path.name, total_chunks, chunk_size,
        )
        if on_session:
            on_session(session)

        with open(path, "rb") as fh:
            for index in range(total_chunks):
                chunk = fh.read(chunk_size)
                try:
                    self._client.upload_chunk(session.session_id, index, chunk, api_key)
                except TransportError as exc:
                    logger.error(
                        "Chunk %d/%d of session %s not delivered: %s",
                        index + 1, total_chunks, session.session_id, exc.message,
                    )
                    raise ChunkTransportError(
                        index, f"Chunk {index + 1}/{total_chunks} failed: {exc.message}", cause=exc.cause
                    ) from exc
                if on_chunk:
                    on_chunk(index, total_chunks)

        return self._client.submit(
            ChunkSessionCompletion(
                session_id=session.session_id,
                target_format=target_format,
                metadata=session_metadata,
            ),
            api_key,
        )
