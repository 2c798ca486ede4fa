"""Filename generation for downloaded images.

Stored images are named ``{timestamp}_{prompt}.png`` where the timestamp is
an ISO-8601 UTC instant with millisecond precision and ``:``/``.`` replaced
by ``-``::

    2025-03-14T09-26-53-589Z_a-neon-koi-pond.png

Two requests handled in the same millisecond with the same prompt would get
the same name and the second download would overwrite the first.  That is a
known limitation rather than something this module guards against.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

PROMPT_SEGMENT_LENGTH = 50

_DISALLOWED_CHARS = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RUN = re.compile(r"\s+")
_STORED_NAME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z_(.+)\.png$")


def format_timestamp(moment: datetime) -> str:
    """Render *moment* as a filesystem-safe ISO-8601 UTC timestamp.

    Naive datetimes are treated as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def sanitize_prompt(prompt: str) -> str:
    """Reduce a prompt to a lowercase, hyphen-separated filename segment.

    Characters outside ``[a-z0-9]`` and whitespace are dropped, surrounding
    whitespace is removed, inner whitespace runs become a single ``-`` and
    the result is cut to :data:`PROMPT_SEGMENT_LENGTH` characters.

    >>> sanitize_prompt("A Cat!! @#%")
    'a-cat'
    """
    cleaned = _DISALLOWED_CHARS.sub("", prompt.lower()).strip()
    return _WHITESPACE_RUN.sub("-", cleaned)[:PROMPT_SEGMENT_LENGTH]


def generate_filename(prompt: str, now: datetime | None = None) -> str:
    """Build the stored filename for a prompt.

    Args:
        prompt: Visitor prompt.
        now: Timestamp to embed; defaults to the current UTC time.

    Returns:
        ``{timestamp}_{sanitized_prompt}.png``
    """
    moment = now if now is not None else datetime.now(timezone.utc)
    return f"{format_timestamp(moment)}_{sanitize_prompt(prompt)}.png"


def download_filename(filename: str, brand: str) -> str:
    """Derive the branded name offered to browsers when downloading.

    The prompt segment is recovered from a stored filename; names that do not
    follow the stored pattern fall back to ``generated-image``.

    >>> download_filename("2025-03-14T09-26-53-589Z_a-cat.png", "MM29")
    'MM29-a-cat.png'
    """
    match = _STORED_NAME.match(filename)
    prompt_part = match.group(1) if match else "generated-image"
    return f"{brand}-{prompt_part}.png"


def is_safe_filename(filename: str) -> bool:
    """Return ``True`` if *filename* names a plain file inside one directory."""
    if not filename or filename in (".", ".."):
        return False
    return "/" not in filename and "\\" not in filename and "\x00" not in filename
