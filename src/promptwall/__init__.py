"""Promptwall - kiosk front end for hosted text-to-image generation."""

__version__ = "1.0.0"

from promptwall.core.config import PromptwallConfig, config

__all__ = [
    "PromptwallConfig",
    "config",
]
