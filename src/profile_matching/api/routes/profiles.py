"""Profile lookup and manual re-match endpoints."""

import json
from typing import Any

import structlog
from fastapi import APIRouter, Request

from profile_matching.errors import ProfileMatchingError, ValidationError

from ..responses import error_response

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/profiles/{contact_id}")
async def get_profile(contact_id: str, request: Request):
    """Every tracked field with its completion flag, plus recorded matches."""
    pipeline = request.app.state.pipeline
    try:
        profile = await pipeline.get_profile(contact_id)
        matches = await pipeline.match_store.list_for(contact_id)
    except ProfileMatchingError as e:
        return error_response(e)

    return {
        "contact_id": profile.contact_id,
        "fields": profile.field_status(),
        "is_complete": pipeline.merger.is_complete(profile),
        "has_embedding": profile.has_embedding,
        "matches": [m.to_dict() for m in matches],
    }


@router.post("/get-user-info")
async def get_user_info(body: dict[str, Any], request: Request):
    """
    Inbound-call lookup for the voice agent.

    Creates an empty profile for an unknown caller. Known callers get every
    tracked field with its completion flag, JSON-encoded into the
    ``userFields`` dynamic variable.
    """
    if body.get("event") != "call_inbound":
        return error_response(ValidationError("event must be call_inbound"))

    call = body.get("call_inbound")
    contact_id = call.get("from_number") if isinstance(call, dict) else None
    if not isinstance(contact_id, str) or not contact_id:
        return error_response(ValidationError("Missing call_inbound.from_number"))

    pipeline = request.app.state.pipeline
    try:
        profile, created = await pipeline.get_or_create_profile(contact_id)
    except ProfileMatchingError as e:
        return error_response(e)

    if created:
        logger.info("profiles.created_on_lookup", contact_id=contact_id)
        user_fields: dict[str, Any] | str = {}
    else:
        user_fields = json.dumps(profile.field_status())
    return {"call_inbound": {"dynamic_variables": {"userFields": user_fields}}}



@router.post("/profiles/{contact_id}/match")
async def rematch_profile(contact_id: str, request: Request):
    """Rerun matching for a stored profile."""
    pipeline = request.app.state.pipeline
    try:
        result = await pipeline.rematch(contact_id)
    except ProfileMatchingError as e:
        logger.info("profiles.rematch_failed", contact_id=contact_id, error=e.message)
        return error_response(e)

    return {"contact_id": contact_id, **result.to_dict()}
