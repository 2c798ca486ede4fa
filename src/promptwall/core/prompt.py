"""Prompt validation and styling.

Visitors type free text on the kiosk.  Before anything leaves the process it
must pass :func:`validate_prompt`; the validated text is then wrapped with the
deployment's trigger word and style suffix by :func:`build_styled_prompt`.
The record stored for an image always keeps the visitor's original text.
"""

from __future__ import annotations

from typing import Any

from promptwall.core.errors import ValidationError

MIN_PROMPT_LENGTH = 1
MAX_PROMPT_LENGTH = 500


def validate_prompt(value: Any) -> str:
    """Validate a raw prompt value.

    No trimming or normalisation is applied; the caller's text is accepted
    or rejected exactly as given.

    Args:
        value: Raw prompt from the request body.

    Returns:
        The prompt, unchanged.

    Raises:
        ValidationError: If the prompt is not a string, is empty, or is
            longer than :data:`MAX_PROMPT_LENGTH` characters.
    """
    if not isinstance(value, str):
        raise ValidationError("Prompt must be a string")
    if len(value) < MIN_PROMPT_LENGTH:
        raise ValidationError("Prompt is required")
    if len(value) > MAX_PROMPT_LENGTH:
        raise ValidationError("Prompt too long")
    return value


def build_styled_prompt(prompt: str, prefix: str = "", suffix: str = "") -> str:
    """Wrap a visitor prompt with the trigger word and style suffix.

    Args:
        prompt: Validated visitor prompt.
        prefix: Trigger word placed before the prompt (may be empty).
        suffix: Comma-joined style text placed after it (may be empty).

    Returns:
        The text sent to the inference backend, e.g.
        ``"MM29 a red fox, Maya style, minimalist design"``.
    """
    styled = f"{prefix} {prompt}" if prefix else prompt
    if suffix:
        styled = f"{styled}, {suffix}"
    return styled
