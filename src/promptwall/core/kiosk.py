"""Display state machine for the unattended LED wall.

The wall cycles through three states::

    idle ──begin_generation()──▶ generating ──show(record)──▶ displaying
     ▲                              │                            │
     └────────── fail() ────────────┘                            │
     └────────── auto-reset after ``display_seconds`` ───────────┘

Entering ``displaying`` schedules an auto-reset on the running event loop.
Any transition out of ``displaying`` cancels that pending reset, so a new
prompt submitted while an image is on the wall is never cut short by the
previous image's timer.

Overlapping generations are counted: a failure only returns the wall to
``idle`` once no other generation is still in flight.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any

from promptwall.core.repository import GeneratedImageRecord

logger = logging.getLogger(__name__)


class KioskState(str, enum.Enum):
    IDLE = "idle"
    GENERATING = "generating"
    DISPLAYING = "displaying"


class KioskDisplay:
    """Tracks what the wall is showing and when it resets.

    Args:
        display_seconds: How long ``displaying`` lasts before reverting to
            ``idle``.
    """

    def __init__(self, display_seconds: float = 30.0):
        self.display_seconds = display_seconds
        self.state = KioskState.IDLE
        self.image: GeneratedImageRecord | None = None
        self._reset_handle: asyncio.TimerHandle | None = None
        self._reset_at: float | None = None
        self._in_flight = 0

    def __repr__(self) -> str:
        return f"KioskDisplay(state={self.state.value!r}, display_seconds={self.display_seconds})"

    @property
    def reset_pending(self) -> bool:
        return self._reset_handle is not None

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            logger.debug("Cancelled pending kiosk reset")
        self._reset_handle = None
        self._reset_at = None

    def begin_generation(self) -> None:
        """A prompt was submitted; show the loading state."""
        self._cancel_reset()
        self._in_flight += 1
        self.state = KioskState.GENERATING

    def show(self, record: GeneratedImageRecord) -> None:
        """Put *record* on the wall and schedule the auto-reset.

        Must be called from within a running event loop.
        """
        loop = asyncio.get_running_loop()
        self._cancel_reset()
        self._in_flight = max(self._in_flight - 1, 0)
        self.state = KioskState.DISPLAYING
        self.image = record

        self._reset_handle = loop.call_later(self.display_seconds, self._auto_reset)
        self._reset_at = time.time() + self.display_seconds

    def fail(self) -> None:
        """Generation failed; drop back to idle unless another is running."""
        self._in_flight = max(self._in_flight - 1, 0)
        if self.state is KioskState.GENERATING and not self._in_flight:
            self._cancel_reset()
            self.state = KioskState.IDLE
            self.image = None

    def reset(self) -> None:
        """Return to idle immediately and clear the shown image."""
        self._cancel_reset()
        self._in_flight = 0
        self.state = KioskState.IDLE
        self.image = None

    def _auto_reset(self) -> None:
        self._reset_handle = None
        self._reset_at = None
        logger.info("Kiosk display timed out, resetting to idle")
        self.state = KioskState.IDLE
        self.image = None

    def snapshot(self) -> dict[str, Any]:
        """Serialisable view of the current state."""
        return {
            "state": self.state.value,
            "image": self.image.model_dump(mode="json", by_alias=True) if self.image else None,
            "resetAt": self._reset_at,
        }
