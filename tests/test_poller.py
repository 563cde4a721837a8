"""Tests for bounded job polling."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from converthub_jobs.errors import ApiError, JobTimeoutError, NotFoundError, TransportError
from converthub_jobs.models import Job, JobFailure, JobResult, JobState, SubmissionResult
from converthub_jobs.poller import JobPoller

RESULT = JobResult("https://cdn.test/o.docx", "docx", 10, "2026-10-19T00:00:00Z")


def job(state: JobState, raw: str | None = None) -> Job:
    return Job(
        id="job_1",
        state=state,
        raw_status=raw or state.value,
        result=RESULT if state is JobState.COMPLETED else None,
        error=JobFailure("boom") if state is JobState.FAILED else None,
    )


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def poller(client, sleeps):
    return JobPoller(client, sleep=sleeps.append)


class TestAwaitCompletion:
    def test_returns_terminal_snapshot(self, poller, client, sleeps):
        """Should sleep before every poll and stop at the first terminal state."""
        client.fetch_status.side_effect = [job(JobState.QUEUED), job(JobState.PROCESSING), job(JobState.COMPLETED)]

        final = poller.await_completion("job_1", "k", 2.0, 10)

        assert final.state is JobState.COMPLETED
        assert client.fetch_status.call_count == 3
        assert sleeps == [2.0, 2.0, 2.0]

    @pytest.mark.parametrize("terminal", [JobState.FAILED, JobState.CANCELLED])
    def test_failed_and_cancelled_are_returned_not_raised(self, poller, client, terminal):
        """Failed and cancelled jobs are outcomes, not errors."""
        client.fetch_status.return_value = job(terminal)

        assert poller.await_completion("job_1", "k", 0, 5).state is terminal

    def test_timeout_after_exactly_max_attempts(self, poller, client):
        """Should never exceed the polling budget."""
        client.fetch_status.return_value = job(JobState.PROCESSING)

        with pytest.raises(JobTimeoutError) as exc_info:
            poller.await_completion("job_1", "k", 0, 4)

        assert client.fetch_status.call_count == 4
        assert exc_info.value.job_id == "job_1"
        assert exc_info.value.attempts_made == 4
        assert exc_info.value.last_state == "processing"

    def test_rejects_non_positive_budget(self, poller, client):
        with pytest.raises(ValueError):
            poller.await_completion("job_1", "k", 0, 0)
        client.fetch_status.assert_not_called()

    def test_progress_only_on_state_change(self, poller, client):
        """Should report each state once, in order."""
        client.fetch_status.side_effect = [
            job(JobState.QUEUED),
            job(JobState.QUEUED),
            job(JobState.PROCESSING),
            job(JobState.PROCESSING),
            job(JobState.COMPLETED),
        ]
        seen = []

        poller.await_completion("job_1", "k", 0, 10, on_progress=lambda j: seen.append(j.state))

        assert seen == [JobState.QUEUED, JobState.PROCESSING, JobState.COMPLETED]

    def test_unknown_state_keeps_polling(self, poller, client):
        client.fetch_status.side_effect = [job(JobState.UNKNOWN, raw="rendering"), job(JobState.COMPLETED)]
        seen = []

        final = poller.await_completion("job_1", "k", 0, 5, on_progress=lambda j: seen.append(j.raw_status))

        assert final.state is JobState.COMPLETED
        assert seen == ["rendering", "completed"]

    def test_transport_error_consumes_one_attempt(self, poller, client):
        """A dropped connection is retried on the next attempt."""
        client.fetch_status.side_effect = [TransportError("reset"), job(JobState.COMPLETED)]

        final = poller.await_completion("job_1", "k", 0, 2)

        assert final.state is JobState.COMPLETED
        assert client.fetch_status.call_count == 2

    def test_timeout_carries_last_transport_error(self, poller, client):
        blip = TransportError("reset")
        client.fetch_status.side_effect = [job(JobState.PROCESSING), blip]

        with pytest.raises(JobTimeoutError) as exc_info:
            poller.await_completion("job_1", "k", 0, 2)

        assert exc_info.value.last_error is blip
        assert exc_info.value.last_state == "processing"

    def test_not_found_propagates_immediately(self, poller, client):
        """An expired job will not come back; stop polling."""
        client.fetch_status.side_effect = NotFoundError(404, "JOB_NOT_FOUND", "Job not found")

        with pytest.raises(NotFoundError):
            poller.await_completion("job_1", "k", 0, 10)

        assert client.fetch_status.call_count == 1

    def test_api_error_propagates_immediately(self, poller, client):
        client.fetch_status.side_effect = ApiError(500, "INTERNAL", "oops")

        with pytest.raises(ApiError):
            poller.await_completion("job_1", "k", 0, 10)

        assert client.fetch_status.call_count == 1


class TestAwaitSubmission:
    def test_cache_hit_makes_zero_polls(self, poller, client, sleeps):
        """Should return cached results without touching the API."""
        submission = SubmissionResult(job=job(JobState.COMPLETED), cached=True)

        final = poller.await_submission(submission, "k", 2.0, 10)

        assert final is submission.job
        client.fetch_status.assert_not_called()
        assert sleeps == []

    def test_queued_submission_is_polled(self, poller, client):
        client.fetch_status.return_value = job(JobState.COMPLETED)

        final = poller.await_submission(SubmissionResult(job=Job.queued("job_1")), "k", 0, 3)

        assert final.state is JobState.COMPLETED
        client.fetch_status.assert_called_once_with("job_1", "k")
