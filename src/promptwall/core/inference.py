"""Client for the hosted image-generation inference API.

The kiosk does not run a model locally.  Each prompt is sent to a hosted
model-serving API (Replicate's predictions endpoint) and the service waits
for the prediction to finish.  Only the prompt varies per request; every
other input comes from :class:`InferenceSettings`, fixed per deployment.

Response Normalisation
----------------------
Depending on the model the prediction ``output`` is either a list of URLs or
a single URL string.  :func:`decode_output` turns that into exactly one image
URL or raises :class:`~promptwall.core.errors.UpstreamResponseError`:

==========================  ==========================================
``output``                  Result
==========================  ==========================================
``["https://…/0.png", …]``  first element
``"https://…/0.png"``       the string itself
``[]`` / ``{…}`` / ``None``  :class:`UpstreamResponseError`
==========================  ==========================================

Usage
-----
::

    client = InferenceClient.from_config(config)
    image_url = await client.generate("MM29 a neon koi pond, Maya style")
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from promptwall.core.config import PromptwallConfig
from promptwall.core.errors import UpstreamCallError, UpstreamResponseError

logger = logging.getLogger(__name__)

_TERMINAL_FAILURES = ("failed", "canceled")


@dataclass(frozen=True)
class InferenceSettings:
    """Generation inputs fixed once per deployment."""

    model_id: str
    aspect_ratio: str = "3:4"
    output_format: str = "png"
    output_quality: int = 90
    num_inference_steps: int = 4
    guidance_scale: float | None = None
    num_outputs: int = 1

    @classmethod
    def from_config(cls, cfg: PromptwallConfig) -> "InferenceSettings":
        return cls(
            model_id=cfg.model_id,
            aspect_ratio=cfg.aspect_ratio,
            output_format=cfg.output_format,
            output_quality=cfg.output_quality,
            num_inference_steps=cfg.num_inference_steps,
            guidance_scale=cfg.guidance_scale,
        )

    def to_input(self, prompt: str) -> dict[str, Any]:
        """Build the ``input`` object of a prediction request."""
        payload: dict[str, Any] = {
            "prompt": prompt,
            "aspect_ratio": self.aspect_ratio,
            "num_outputs": self.num_outputs,
            "output_format": self.output_format,
            "output_quality": self.output_quality,
            "num_inference_steps": self.num_inference_steps,
        }
        if self.guidance_scale is not None:
            payload["guidance"] = self.guidance_scale
        return payload


def decode_output(output: Any) -> str:
    """Normalise a prediction ``output`` into a single image URL.

    Args:
        output: The ``output`` field of a finished prediction.

    Returns:
        The image source URL.

    Raises:
        UpstreamResponseError: If no usable URL can be extracted.
    """
    if isinstance(output, list) and output:
        first = output[0]
        if isinstance(first, str) and first:
            return first
        raise UpstreamResponseError("No valid image URL in API response")
    if isinstance(output, str) and output:
        return output
    raise UpstreamResponseError("No valid image URL in API response")


def _error_detail(response: httpx.Response) -> str:
    """Extract a human-readable error from a non-2xx upstream response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error") or body.get("title")
        if detail:
            return str(detail)
    return response.reason_phrase or f"HTTP {response.status_code}"


class InferenceClient:
    """Runs predictions against the hosted inference API.

    Each call to :meth:`generate` opens its own ``httpx.AsyncClient`` so
    concurrent kiosk requests never share connection state.  The call only
    suspends the current request; other requests keep being served.
    """

    def __init__(
        self,
        settings: InferenceSettings,
        api_token: str,
        api_base: str = "https://api.replicate.com/v1",
        timeout: float | None = 120.0,
        poll_interval: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._api_token = api_token
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        cfg: PromptwallConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "InferenceClient":
        """Build a client from the deployment configuration."""
        if not cfg.replicate_api_token:
            logger.warning("No inference API token configured; upstream calls will be rejected.")
        return cls(
            InferenceSettings.from_config(cfg),
            api_token=cfg.replicate_api_token,
            api_base=cfg.replicate_api_base,
            timeout=cfg.request_timeout,
            transport=transport,
        )

    @property
    def predictions_url(self) -> str:
        return f"{self.api_base}/models/{self.settings.model_id}/predictions"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }

    async def generate(self, prompt: str) -> str:
        """Run one prediction and return the generated image URL.

        Args:
            prompt: Fully styled prompt text.

        Returns:
            The normalised image source URL.

        Raises:
            UpstreamCallError: On transport failure, a non-2xx status, or a
                prediction that ends ``failed``/``canceled``.
            UpstreamResponseError: If the finished prediction carries no
                usable image URL.
        """
        body = {"input": self.settings.to_input(prompt)}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            prediction = await self._request(client, "POST", self.predictions_url, json=body)

            # ``Prefer: wait`` normally returns a finished prediction; slow
            # ones come back still running and are polled until they settle.
            while prediction.get("status") in ("starting", "processing"):
                poll_url = (prediction.get("urls") or {}).get("get")
                if not poll_url:
                    break
                await asyncio.sleep(self.poll_interval)
                prediction = await self._request(client, "GET", poll_url)

        status = prediction.get("status")
        if status in _TERMINAL_FAILURES:
            raise UpstreamCallError(str(prediction.get("error") or f"Prediction {status}"))

        logger.debug("Inference output: %r", prediction.get("output"))
        return decode_output(prediction.get("output"))

    async def _request(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> dict[str, Any]:
        try:
            response = await client.request(method, url, headers=self._headers(), **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UpstreamCallError(f"Inference request failed: {e}") from e

        if not response.is_success:
            raise UpstreamCallError(_error_detail(response), status_code=response.status_code)

        try:
            prediction = response.json()
        except ValueError as e:
            raise UpstreamResponseError("Inference API returned invalid JSON") from e
        if not isinstance(prediction, dict):
            raise UpstreamResponseError("Inference API returned an unexpected payload")
        return prediction
