"""Core components of the image generation pipeline.

Leaf to root:

- **prompt**: prompt validation and styling
- **inference**: hosted inference client and response normalisation
- **filenames**: stored and download filename derivation
- **fetcher**: streaming image download to local disk
- **repository**: generation record storage (in-memory or SQLite)
- **pipeline**: the generate → download → persist sequence
- **kiosk**: display state machine with cancellable auto-reset
- **config**: ``PromptwallConfig`` and the global ``config`` instance
- **errors**: the ``PromptwallError`` hierarchy
"""

from promptwall.core.config import PromptwallConfig, config
from promptwall.core.errors import PromptwallError
from promptwall.core.pipeline import GenerationPipeline

__all__ = [
    "GenerationPipeline",
    "PromptwallConfig",
    "PromptwallError",
    "config",
]
