"""
LLM prompts for the profile matching pipeline.
"""

from .extract_profile import (
    EXTRACTION_SYSTEM_PROMPT,
    build_extraction_prompt,
)

__all__ = [
    'EXTRACTION_SYSTEM_PROMPT',
    'build_extraction_prompt',
]
