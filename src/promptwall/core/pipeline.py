"""The generate → download → persist request pipeline.

One call to :meth:`GenerationPipeline.run` walks a single request through::

    received → validated → upstream-called → downloaded → persisted

Any failure propagates straight to the caller as a
:class:`~promptwall.core.errors.PromptwallError`.  There is no retry and no
rollback: if the record cannot be stored after the download succeeded, the
image file stays on disk without a record.
"""

from __future__ import annotations

import logging

from promptwall.core.config import PromptwallConfig
from promptwall.core.fetcher import ImageFetcher
from promptwall.core.filenames import generate_filename
from promptwall.core.inference import InferenceClient
from promptwall.core.prompt import build_styled_prompt, validate_prompt
from promptwall.core.repository import GeneratedImageRecord, ImageRepository, NewImageRecord

logger = logging.getLogger(__name__)


class GenerationPipeline:
    """Turn a visitor prompt into a stored, servable image record."""

    def __init__(
        self,
        config: PromptwallConfig,
        repository: ImageRepository,
        inference: InferenceClient,
        fetcher: ImageFetcher,
    ):
        self.config = config
        self.repository = repository
        self.inference = inference
        self.fetcher = fetcher

    def image_url_for(self, filename: str) -> str:
        """Internal path an image is served from.

        Provider URLs expire, so records always point at the local copy.
        """
        return f"{self.config.base_path}/api/images/{filename}"

    async def run(self, prompt: object) -> GeneratedImageRecord:
        """Generate, download and record one image.

        Args:
            prompt: Raw prompt from the request.

        Returns:
            The stored record.

        Raises:
            ValidationError: Before any upstream call if the prompt is invalid.
            UpstreamCallError, UpstreamResponseError: If generation fails.
            DownloadError, ImageWriteError: If the image cannot be saved.
            StorageError: If the record cannot be stored.
        """
        text = validate_prompt(prompt)
        styled = build_styled_prompt(text, self.config.prompt_prefix, self.config.prompt_suffix)

        logger.info(f"Generating image for prompt: {text!r}")
        source_url = await self.inference.generate(styled)

        filename = generate_filename(text)
        stored = await self.fetcher.fetch(source_url, filename)

        record = self.repository.save(
            NewImageRecord(
                prompt=text,
                image_url=self.image_url_for(filename),
                local_path=str(stored.path),
                file_size=stored.size,
                resolution=self.config.aspect_ratio,
                model_used=self.config.model_label,
            )
        )
        logger.info(f"Saved image {record.id} at {record.image_url}")
        return record
