"""Download generated images to local disk.

Image URLs returned by the inference backend are short-lived, so every image
is copied into ``images_dir`` before a record is written.  The body is
streamed chunk by chunk straight into the target file; nothing holds the
whole payload in memory.

A failed download may leave a partially written file behind.  It is not
cleaned up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import httpx

from promptwall.core.errors import DownloadError, ImageWriteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredImage:
    """Location and size of a downloaded image."""

    path: Path
    size: int


class ImageFetcher:
    """Stream remote images into a local directory."""

    def __init__(
        self,
        images_dir: Path,
        timeout: float | None = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.images_dir = Path(images_dir)
        self.timeout = timeout
        self._transport = transport

    def ensure_directory(self) -> Path:
        """Create the images directory if it does not exist yet."""
        try:
            self.images_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ImageWriteError(f"Cannot create images directory {self.images_dir}: {e}") from e
        return self.images_dir

    def path_for(self, filename: str) -> Path:
        return (self.images_dir / filename).resolve()

    async def fetch(self, url: str, filename: str) -> StoredImage:
        """Download *url* into ``images_dir / filename``.

        Args:
            url: Source URL of the generated image.
            filename: Target filename inside the images directory.

        Returns:
            The absolute path of the written file and its size in bytes as
            reported by the filesystem after the write.

        Raises:
            DownloadError: On an unparsable URL, a transport failure or a
                non-2xx response.
            ImageWriteError: If the file cannot be written.
        """
        self.ensure_directory()
        target = self.path_for(filename)

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport, follow_redirects=True
        ) as client:
            try:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        reason = response.reason_phrase or f"HTTP {response.status_code}"
                        raise DownloadError(f"Failed to download image: {reason}")
                    await self._write_stream(response, target)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise DownloadError(f"Failed to download image: {e}") from e

        try:
            size = target.stat().st_size
        except OSError as e:
            raise ImageWriteError(f"Cannot stat downloaded image {target}: {e}") from e

        logger.info(f"Downloaded image to {target} ({size} bytes)")
        return StoredImage(path=target, size=size)

    async def _write_stream(self, response: httpx.Response, target: Path) -> None:
        try:
            with open(target, "wb") as handle:
                async for chunk in response.aiter_bytes():
                    handle.write(chunk)
        except OSError as e:
            raise ImageWriteError(f"Failed to write image {target}: {e}") from e
