"""Unit tests for the inference client and response normalisation."""

from __future__ import annotations

import json

import httpx
import pytest

from promptwall.core.errors import UpstreamCallError, UpstreamResponseError
from promptwall.core.inference import InferenceClient, InferenceSettings, decode_output

SETTINGS = InferenceSettings(model_id="black-forest-labs/flux-schnell")
API_BASE = "https://inference.test/v1"


def _client(handler) -> InferenceClient:
    return InferenceClient(
        SETTINGS,
        api_token="test-token",
        api_base=API_BASE,
        poll_interval=0,
        transport=httpx.MockTransport(handler),
    )


class TestDecodeOutput:
    """Tests for decode_output."""

    def test_list_takes_first(self):
        assert decode_output(["http://x/0.png", "http://x/1.png"]) == "http://x/0.png"

    def test_string_used_directly(self):
        assert decode_output("http://x/img.png") == "http://x/img.png"

    @pytest.mark.parametrize("output", [[], {}, {"url": "http://x"}, None, 42, "", [None], [""]])
    def test_unusable_output(self, output):
        with pytest.raises(UpstreamResponseError):
            decode_output(output)


class TestInferenceSettings:
    def test_input_payload(self):
        payload = SETTINGS.to_input("MM29 a fox")
        assert payload == {
            "prompt": "MM29 a fox",
            "aspect_ratio": "3:4",
            "num_outputs": 1,
            "output_format": "png",
            "output_quality": 90,
            "num_inference_steps": 4,
        }

    def test_guidance_included_when_set(self):
        settings = InferenceSettings(model_id="m/n", guidance_scale=3.5)
        assert settings.to_input("x")["guidance"] == 3.5

    def test_from_config(self, test_config):
        settings = InferenceSettings.from_config(test_config)
        assert settings.model_id == test_config.model_id
        assert settings.aspect_ratio == test_config.aspect_ratio


class TestInferenceClient:
    """Tests for InferenceClient.generate."""

    @pytest.mark.asyncio
    async def test_sends_prediction_request(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"status": "succeeded", "output": ["http://x/img.png"]})

        url = await _client(handler).generate("MM29 a fox")

        assert url == "http://x/img.png"
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == f"{API_BASE}/models/black-forest-labs/flux-schnell/predictions"
        assert request.headers["Authorization"] == "Bearer test-token"
        assert request.headers["Prefer"] == "wait"
        assert json.loads(request.content)["input"]["prompt"] == "MM29 a fox"

    @pytest.mark.asyncio
    async def test_string_output(self):
        def handler(request):
            return httpx.Response(201, json={"status": "succeeded", "output": "http://x/img.png"})

        assert await _client(handler).generate("a fox") == "http://x/img.png"

    @pytest.mark.asyncio
    async def test_empty_output_list(self):
        def handler(request):
            return httpx.Response(201, json={"status": "succeeded", "output": []})

        with pytest.raises(UpstreamResponseError):
            await _client(handler).generate("a fox")

    @pytest.mark.asyncio
    async def test_non_2xx_carries_detail(self):
        def handler(request):
            return httpx.Response(401, json={"detail": "Invalid token."})

        with pytest.raises(UpstreamCallError, match="Invalid token.") as excinfo:
            await _client(handler).generate("a fox")
        assert excinfo.value.status_code == 401

    @pytest.mark.asyncio
    async def test_non_2xx_without_body_uses_status_text(self):
        def handler(request):
            return httpx.Response(503, content=b"")

        with pytest.raises(UpstreamCallError, match="Service Unavailable"):
            await _client(handler).generate("a fox")

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamCallError, match="connection refused"):
            await _client(handler).generate("a fox")

    @pytest.mark.asyncio
    async def test_failed_prediction(self):
        def handler(request):
            return httpx.Response(
                201, json={"status": "failed", "output": None, "error": "NSFW content detected"}
            )

        with pytest.raises(UpstreamCallError, match="NSFW"):
            await _client(handler).generate("a fox")

    @pytest.mark.asyncio
    async def test_polls_until_finished(self):
        poll_url = f"{API_BASE}/predictions/pred-1"
        responses = iter(
            [
                {"status": "starting", "urls": {"get": poll_url}},
                {"status": "processing", "urls": {"get": poll_url}},
                {"status": "succeeded", "output": ["http://x/late.png"], "urls": {"get": poll_url}},
            ]
        )
        methods: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return httpx.Response(200, json=next(responses))

        assert await _client(handler).generate("a fox") == "http://x/late.png"
        assert methods == ["POST", "GET", "GET"]

    @pytest.mark.asyncio
    async def test_unparsable_poll_url(self):
        def handler(request):
            return httpx.Response(201, json={"status": "starting", "urls": {"get": "http://[::1/poll"}})

        with pytest.raises(UpstreamCallError, match="Inference request failed"):
            await _client(handler).generate("a fox")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>oops</html>")

        with pytest.raises(UpstreamResponseError):
            await _client(handler).generate("a fox")

    def test_from_config(self, test_config):
        client = InferenceClient.from_config(test_config)
        assert client.api_base == test_config.replicate_api_base
        assert client.timeout == test_config.request_timeout
