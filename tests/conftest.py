"""Shared test fixtures and configuration."""

from __future__ import annotations

from typing import Callable

import httpx
import pytest

from converthub_jobs.client import HttpJobClient

API_BASE = "https://api.test/v2"
API_KEY = "test-key"


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def make_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], HttpJobClient]:
    """Build an HttpJobClient whose requests go to ``handler``."""
    clients: list[HttpJobClient] = []

    def factory(handler):
        client = HttpJobClient(API_BASE, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()


@pytest.fixture
def completed_result():
    """Result object as the API reports it for a finished job."""
    return {
        "download_url": "https://cdn.test/out/report.docx",
        "format": "docx",
        "file_size": 2048,
        "expires_at": "2026-10-19T12:00:00Z",
    }


@pytest.fixture
def job_payload(completed_result):
    """Build a ``GET /jobs/{id}`` body in the given state."""

    def factory(status: str, job_id: str = "job_1", **extra):
        body = {
            "job_id": job_id,
            "status": status,
            "source_format": "pdf",
            "target_format": "docx",
            "created_at": "2026-10-18T12:00:00Z",
        }
        if status == "completed":
            body["result"] = completed_result
        elif status == "failed":
            body["error"] = {"code": "CONVERSION_FAILED", "message": "Corrupt input"}
        body.update(extra)
        return body

    return factory
