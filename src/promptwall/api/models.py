"""Pydantic request and response models for the kiosk API.

Models
------
GenerateRequest
    Payload for ``POST /api/generate``.
GenerateResponse
    Success body of ``POST /api/generate``.
ErrorResponse
    Body returned with every 4xx/5xx from the generate route.
CountResponse
    Body of ``GET /api/images/count``.
KioskStateResponse
    Body of ``GET /api/kiosk/state``.

Records themselves are :class:`~promptwall.core.repository.GeneratedImageRecord`
and are serialised with camelCase keys.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from promptwall.core.repository import GeneratedImageRecord


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Length limits are enforced by
    :func:`~promptwall.core.prompt.validate_prompt` inside the pipeline, so
    that an empty prompt fails with the same message as every other
    validation error and never reaches the inference backend.

    Attributes:
        prompt: Visitor text, 1-500 characters.
    """

    prompt: str = Field(..., description="Visitor prompt (1-500 characters).")


class GenerateResponse(BaseModel):
    success: Literal[True] = True
    image: GeneratedImageRecord
    message: str = "Image generated and saved successfully"


class ErrorResponse(BaseModel):
    success: Literal[False] = False
    message: str


class CountResponse(BaseModel):
    count: int = Field(..., ge=0)


class KioskStateResponse(BaseModel):
    """Current state of the wall.

    Attributes:
        state: ``idle``, ``generating`` or ``displaying``.
        image: Record on display, if any.
        resetAt: Unix time the display resets to idle, if scheduled.
    """

    state: Literal["idle", "generating", "displaying"]
    image: GeneratedImageRecord | None = None
    resetAt: float | None = None
