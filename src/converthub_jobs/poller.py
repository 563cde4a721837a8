"""Drive a submitted job to a terminal state by bounded polling."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .client import HttpJobClient
from .errors import JobTimeoutError, TransportError
from .models import Job, JobState, SubmissionResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Job], None]


class JobPoller:
    """Polls ``fetch_status`` until the job completes, fails or is cancelled.

    Transport failures while waiting are treated as transient: they use up
    one attempt and polling continues. Everything the server actually
    answered (404, other API errors) propagates immediately.
    """

    def __init__(
        self,
        client: HttpJobClient,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._sleep = sleep

    def await_completion(
        self,
        job_id: str,
        api_key: str,
        poll_interval_seconds: float,
        max_attempts: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Job:
        """Block until ``job_id`` reaches a terminal state.

        Returns the terminal snapshot. Raises ``JobTimeoutError`` after
        ``max_attempts`` polls without one; the job can be resumed later
        with the same id since all state lives server-side.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        previous_state: JobState | None = None
        last_error: TransportError | None = None

        for attempt in range(1, max_attempts + 1):
            self._sleep(poll_interval_seconds)
            try:
                job = self._client.fetch_status(job_id, api_key)
            except TransportError as exc:
                last_error = exc
                logger.warning(
                    "[JOB_POLLER] Transport error polling job %s (attempt %d/%d): %s",
                    job_id, attempt, max_attempts, exc,
                )
                continue

            last_error = None
            if job.state is not previous_state:
                if job.state is JobState.UNKNOWN:
                    logger.warning(
                        "[JOB_POLLER] Job %s reported unrecognized status %r; still waiting",
                        job_id, job.raw_status,
                    )
                else:
                    logger.info("[JOB_POLLER] Job %s is %s", job_id, job.state.value)
                previous_state = job.state
                if on_progress:
                    on_progress(job)

            if job.is_terminal:
                return job

        raise JobTimeoutError(
            job_id,
            attempts_made=max_attempts,
            last_state=previous_state.value if previous_state else None,
            last_error=last_error,
        )

    def await_submission(
        self,
        submission: SubmissionResult,
        api_key: str,
        poll_interval_seconds: float,
        max_attempts: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Job:
        """Like ``await_completion`` but skips polling for cached results."""
        if submission.job.is_terminal:
            return submission.job
        return self.await_completion(
            submission.job.id,
            api_key,
            poll_interval_seconds,
            max_attempts,
            on_progress=on_progress,
        )
