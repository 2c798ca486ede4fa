"""Shared pytest fixtures for Promptwall tests.

No test talks to the real inference API.  :class:`StubUpstream` plays both
the inference backend and the host serving the generated image through an
``httpx.MockTransport`` that is injected into the client and the fetcher.
"""

from __future__ import annotations

import io
import shutil
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from promptwall.api.main import create_app
from promptwall.core.config import PromptwallConfig
from promptwall.core.fetcher import ImageFetcher
from promptwall.core.inference import InferenceClient, InferenceSettings
from promptwall.core.kiosk import KioskDisplay
from promptwall.core.repository import ImageRepository, InMemoryImageRepository

API_BASE = "https://inference.test/v1"
IMAGE_URL = "http://x/img.png"


class StubUpstream:
    """Fake inference backend and image host.

    Attributes:
        output: Value returned as the prediction ``output``.
        image_bytes: Body served for any non-inference URL.
        prediction_status: Final prediction ``status``.
        inference_status_code: HTTP status of the predictions endpoint.
        image_status_code: HTTP status of the image host.
        prediction_requests: Requests received by the predictions endpoint.
        download_requests: Requests received by the image host.
    """

    def __init__(
        self,
        output: Any = None,
        image_bytes: bytes = b"",
        prediction_status: str = "succeeded",
        inference_status_code: int = 201,
        image_status_code: int = 200,
    ):
        self.output = [IMAGE_URL] if output is None else output
        self.image_bytes = image_bytes
        self.prediction_status = prediction_status
        self.inference_status_code = inference_status_code
        self.image_status_code = image_status_code
        self.prediction_requests: list[httpx.Request] = []
        self.download_requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "inference.test":
            self.prediction_requests.append(request)
            if self.inference_status_code >= 400:
                return httpx.Response(
                    self.inference_status_code, json={"detail": "Upstream exploded"}
                )
            return httpx.Response(
                self.inference_status_code,
                json={
                    "id": "pred-1",
                    "status": self.prediction_status,
                    "output": self.output,
                    "error": "NSFW content detected" if self.prediction_status == "failed" else None,
                },
            )

        self.download_requests.append(request)
        return httpx.Response(self.image_status_code, content=self.image_bytes)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> PromptwallConfig:
    """Configuration pointing every path at the temporary directory."""
    return PromptwallConfig(
        _env_file=None,
        replicate_api_token="test-token",
        replicate_api_base=API_BASE,
        images_dir=temp_dir / "generated_images",
        database_path=temp_dir / "data" / "promptwall.db",
        base_path="",
        request_timeout=5.0,
        display_seconds=30.0,
    )


@pytest.fixture
def png_bytes() -> bytes:
    """A small real PNG payload (3x4 pixels, like the wall's aspect ratio)."""
    buffer = io.BytesIO()
    Image.new("RGB", (3, 4), color=(255, 0, 128)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def stub_upstream(png_bytes: bytes) -> StubUpstream:
    """Upstream that succeeds with ``["http://x/img.png"]``."""
    return StubUpstream(image_bytes=png_bytes)


@pytest.fixture
def make_inference() -> Callable[[PromptwallConfig, StubUpstream], InferenceClient]:
    def _make(cfg: PromptwallConfig, stub: StubUpstream) -> InferenceClient:
        return InferenceClient(
            InferenceSettings.from_config(cfg),
            api_token=cfg.replicate_api_token,
            api_base=cfg.replicate_api_base,
            poll_interval=0,
            transport=stub.transport,
        )

    return _make


@pytest.fixture
def make_client(
    test_config: PromptwallConfig, make_inference
) -> Callable[..., TestClient]:
    """Build a TestClient around an app wired to a stub upstream.

    Each call gets its own repository unless one is passed in.
    """

    def _make(
        stub: StubUpstream,
        repository: ImageRepository | None = None,
        kiosk: KioskDisplay | None = None,
        config: PromptwallConfig | None = None,
    ) -> TestClient:
        cfg = config or test_config
        app = create_app(
            config=cfg,
            repository=repository or InMemoryImageRepository(),
            inference=make_inference(cfg, stub),
            fetcher=ImageFetcher(cfg.images_dir, transport=stub.transport),
            kiosk=kiosk,
        )
        return TestClient(app)

    return _make


@pytest.fixture
def test_client(make_client, stub_upstream: StubUpstream) -> TestClient:
    """TestClient backed by a succeeding stub upstream."""
    return make_client(stub_upstream)


@pytest.fixture
def make_stub(png_bytes: bytes) -> Callable[..., StubUpstream]:
    """Factory for stub upstreams serving the PNG fixture by default."""

    def _make(**kwargs: Any) -> StubUpstream:
        kwargs.setdefault("image_bytes", png_bytes)
        return StubUpstream(**kwargs)

    return _make
