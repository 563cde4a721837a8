"""Inbound webhook routes."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ...webhook import WebhookReceiver

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/converthub")
@router.post("/webhook")
async def converthub_webhook(request: Request) -> JSONResponse:
    """Accept a ConvertHub event.

    The body is read raw so that unparseable deliveries still reach the
    audit log. The receiver does blocking I/O and runs off the event loop.
    """
    receiver: WebhookReceiver = request.app.state.receiver
    body = await request.body()
    response = await asyncio.to_thread(receiver.handle, body)
    return JSONResponse(status_code=response.status_code, content=response.body)
