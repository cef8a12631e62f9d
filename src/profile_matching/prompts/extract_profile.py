"""
Profile extraction prompt.

The response model lives in models/extraction.py; this module only builds
the chat messages.
"""

import json
from typing import Any

EXTRACTION_SYSTEM_PROMPT = """You are a helpful assistant that analyzes call transcripts to extract user information.

Return only factual information that was explicitly mentioned in the transcript or in the dynamic variables.
Use null for anything that was not stated. Do not guess, infer, or fill in typical values.

Field guidance:
- first_name: the caller's own first name, not the agent's.
- year_of_birth: a four-digit year. Convert a stated age only if the call makes the current year clear.
- relationship_type: one of "casual", "long-term", "still figuring it out" when the caller says so.
- dealbreakers: short phrases for traits the caller will not accept in a partner.
- preference_tags: short phrases (1-3 words) for positive traits the caller looks for, e.g. "honest", "funny".
- dating_preferences: age range and preferred gender of partners, null members when unknown."""

EXTRACTION_USER_PROMPT_TEMPLATE = """Analyze this call data and extract user profile information.

Dynamic Variables:
{context_vars}

Transcript:
{transcript}

Return the user's information following the response format."""


def build_extraction_prompt(
    transcript: str,
    context_vars: dict[str, Any] | None = None,
) -> list[dict[str, str]]:
    """
    Build the extraction prompt messages for OpenAI.

    Args:
        transcript: The call transcript
        context_vars: Dynamic variables passed to the call agent

    Returns:
        List of message dicts for OpenAI chat completion
    """
    user_prompt = EXTRACTION_USER_PROMPT_TEMPLATE.format(
        context_vars=json.dumps(context_vars or {}, indent=2, default=str),
        transcript=transcript,
    )

    return [
        {'role': 'system', 'content': EXTRACTION_SYSTEM_PROMPT},
        {'role': 'user', 'content': user_prompt},
    ]
