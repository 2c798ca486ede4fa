"""Exception hierarchy for the image generation pipeline.

Every failure the pipeline can report derives from :class:`PromptwallError`
so the HTTP layer can map the whole family in one place.

========================  =========================================  ======
Exception                 Raised when                                HTTP
========================  =========================================  ======
ValidationError           the prompt is empty, too long, not text    400
UpstreamCallError         the inference API call fails or is non-2xx 500
UpstreamResponseError     the inference API returns no usable URL    500
DownloadError             fetching the generated image fails         500
ImageWriteError           writing the image to disk fails            500
StorageError              the metadata repository rejects a record   500
NotFoundError             an image id or filename is unknown         404
========================  =========================================  ======
"""

from __future__ import annotations


class PromptwallError(Exception):
    """Base class for all pipeline failures."""


class ValidationError(PromptwallError):
    """User-facing validation error.

    The message is intended to be displayed directly to the visitor.
    """


class UpstreamCallError(PromptwallError):
    """The inference backend could not be reached or returned an error.

    Attributes:
        status_code: HTTP status returned upstream, or ``None`` for transport
            failures.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamResponseError(PromptwallError):
    """The inference backend answered, but not with an image URL."""


class DownloadError(PromptwallError):
    """The generated image could not be downloaded."""


class ImageWriteError(PromptwallError):
    """The downloaded image could not be written to the images directory."""


class StorageError(PromptwallError):
    """The metadata repository refused or failed to store a record."""


class NotFoundError(PromptwallError):
    """No image matches the requested id or filename."""
