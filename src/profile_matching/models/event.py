"""
Inbound call webhook payload.

The voice platform posts ``{"event": <kind>, "call": {...}}`` for every call
lifecycle change. Only ``call_ended`` carries a final transcript, so every
other kind is rejected before any processing.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError


class EventKind(str, Enum):
    """Call lifecycle event kinds sent by the voice platform."""

    CALL_STARTED = 'call_started'
    CALL_ENDED = 'call_ended'
    CALL_ANALYZED = 'call_analyzed'


SUPPORTED_EVENT_KINDS = frozenset({EventKind.CALL_ENDED})


class CallEvent(BaseModel):
    """A completed call, consumed once. ``call_id`` is the idempotency key."""

    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(..., min_length=1, description='Stable call identifier')
    contact_id: str = Field(
        ...,
        min_length=1,
        alias='from_number',
        description="Caller's contact identifier (phone number)",
    )
    transcript: str = Field(default='', description='Full call transcript')
    context_vars: dict[str, Any] = Field(
        default_factory=dict,
        alias='retell_llm_dynamic_variables',
        description='Dynamic variables injected into the call agent',
    )


class WebhookPayload(BaseModel):
    """Envelope around a CallEvent."""

    event: str
    call: CallEvent

    model_config = {
        'json_schema_extra': {
            'examples': [
                {
                    'event': 'call_ended',
                    'call': {
                        'call_id': 'call_8f2d1c',
                        'from_number': '+14155550123',
                        'transcript': 'Agent: Hi! What should I call you?\nUser: Ana.',
                        'retell_llm_dynamic_variables': {'first_name': 'Ana'},
                    },
                }
            ]
        }
    }


def parse_webhook(data: Any) -> CallEvent:
    """
    Validate a raw webhook body and return its CallEvent.

    Raises:
        ValidationError: body is malformed, the event kind is unsupported,
            or the call is missing its identifiers
    """
    if not isinstance(data, dict):
        raise ValidationError('Webhook body must be a JSON object')

    kind = data.get('event')
    if kind not in {k.value for k in SUPPORTED_EVENT_KINDS}:
        raise ValidationError(
            'Only call_ended events are supported',
            context={'event': kind},
        )

    call = data.get('call')
    if not isinstance(call, dict) or not call.get('call_id'):
        raise ValidationError('Missing call_id')

    try:
        return WebhookPayload.model_validate(data).call
    except PydanticValidationError as e:
        raise ValidationError(
            'Invalid call payload',
            context={'errors': e.errors(include_url=False, include_context=False)},
        ) from e
