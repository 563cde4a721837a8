"""FastAPI application setup."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from ..config import get_settings
from ..webhook import WebhookReceiver, build_receiver
from .routes import webhooks

logger = logging.getLogger(__name__)


def create_app(receiver: WebhookReceiver | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    ``receiver`` defaults to one wired from environment settings.
    """
    settings = get_settings()

    app = FastAPI(
        title="ConvertHub Webhook Receiver",
        description="Receives ConvertHub conversion notifications",
        version="0.1.0",
        debug=settings.debug,
    )
    app.state.receiver = receiver or build_receiver(settings)

    app.include_router(webhooks.router, tags=["webhooks"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
