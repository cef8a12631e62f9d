"""POST /webhooks/call-events: validate a call webhook and run the pipeline."""

import asyncio
import json
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from profile_matching.errors import ProfileMatchingError, ValidationError
from profile_matching.models.event import parse_webhook
from profile_matching.pipeline.pipeline import EventStatus

from ..responses import error_response

logger = structlog.get_logger(__name__)

router = APIRouter()

# Non-standard status used when the caller went away before we answered
CLIENT_CLOSED_REQUEST = 499
DISCONNECT_POLL_SECONDS = 0.5

_MESSAGES = {
    EventStatus.PROCESSED: "Profile updated",
    EventStatus.ALREADY_PROCESSED: "Call already processed",
    EventStatus.PROFILE_COMPLETE: "Profile already complete",
    EventStatus.SKIPPED_EMPTY_TRANSCRIPT: "No transcript to process",
}


class ClientDisconnected(Exception):
    """The webhook caller closed the connection mid-processing."""


async def _run_until_disconnect(request: Request, coro) -> Any:
    """Await ``coro`` as a task, cancelling it if the client disconnects."""
    task = asyncio.ensure_future(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                raise ClientDisconnected()
    except asyncio.CancelledError:
        task.cancel()
        raise


@router.post("/webhooks/call-events")
@router.post("/update-user-info")
async def call_event_webhook(request: Request):
    """Process a call_ended webhook from the voice platform."""
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return error_response(ValidationError("Request body must be valid JSON"))

    try:
        event = parse_webhook(body)
    except ValidationError as e:
        logger.info("webhook.rejected", error=e.message, event=body.get("event") if isinstance(body, dict) else None)
        return error_response(e)

    log = logger.bind(event_id=event.call_id, contact_id=event.contact_id)
    log.info("webhook.received")

    pipeline = request.app.state.pipeline
    try:
        result = await _run_until_disconnect(request, pipeline.process_event(event))
    except ClientDisconnected:
        log.warning("webhook.client_disconnected")
        return JSONResponse(
            status_code=CLIENT_CLOSED_REQUEST,
            content={"error": "Client closed request"},
        )
    except ProfileMatchingError as e:
        log.error("webhook.failed", error=str(e), error_type=type(e).__name__)
        return error_response(e)
    except Exception as e:
        log.error("webhook.failed", error=str(e), error_type=type(e).__name__)
        return JSONResponse(status_code=500, content={"error": str(e)})

    log.info("webhook.complete", status=result.status)
    return {"message": _MESSAGES.get(result.status, result.status), **result.to_dict()}
