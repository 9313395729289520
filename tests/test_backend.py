from __future__ import annotations

import json

import httpx
import pytest

from agentrelay.core import metrics
from agentrelay.core.config import BackendSettings, ToolLoopSettings
from agentrelay.core.errors import TransportError
from agentrelay.services.backend import HttpBackendConfig, HttpReasoningBackend


def _config(**overrides) -> HttpBackendConfig:
    config = HttpBackendConfig(
        base_url="http://backend.local",
        responses_path="/api/responses",
        timeout_seconds=1.0,
        parallel_tool_calls=False,
        default_headers={"X-Test": "true"},
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


@pytest.fixture
def observed(monkeypatch):
    calls = []

    def fake_observe(*, outcome: str, latency: float | None = None) -> None:
        calls.append(outcome)

    monkeypatch.setattr(metrics, "observe_backend_request", fake_observe)
    return calls


@pytest.mark.asyncio
async def test_backend_posts_body_with_parallel_tool_calls_disabled(observed):
    seen = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["header"] = request.headers.get("X-Test")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"output": []})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://backend.local") as client:
        backend = HttpReasoningBackend(_config(), client=client)
        data = await backend({"model": "gpt-4.1", "input": []})

    assert data == {"output": []}
    assert seen["path"] == "/api/responses"
    assert seen["body"]["parallel_tool_calls"] is False
    assert seen["body"]["model"] == "gpt-4.1"
    assert observed == ["success"]


@pytest.mark.asyncio
async def test_backend_returns_error_payload_untouched(observed):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": {"message": "quota"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://backend.local") as client:
        data = await HttpReasoningBackend(_config(), client=client).create_response({"input": []})

    assert data == {"error": {"message": "quota"}}


@pytest.mark.asyncio
async def test_backend_raises_transport_error_on_server_failure(observed):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"detail": "boom"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://backend.local") as client:
        backend = HttpReasoningBackend(_config(), client=client)
        with pytest.raises(TransportError) as excinfo:
            await backend({"input": []})

    assert "500" in str(excinfo.value)
    assert excinfo.value.kind == "transport_error"
    assert observed == ["status_500"]


@pytest.mark.asyncio
async def test_backend_wraps_request_errors(observed):
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://backend.local") as client:
        backend = HttpReasoningBackend(_config(), client=client)
        with pytest.raises(TransportError):
            await backend({"input": []})

    assert observed == ["transport_error"]


@pytest.mark.asyncio
async def test_backend_rejects_non_json_body(observed):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://backend.local") as client:
        backend = HttpReasoningBackend(_config(), client=client)
        with pytest.raises(TransportError):
            await backend({"input": []})

    assert observed == ["invalid_json"]


@pytest.mark.asyncio
async def test_backend_forwards_parallel_flag_from_settings(observed):
    seen = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"output": []})

    config = HttpBackendConfig.from_settings(
        BackendSettings(base_url="http://backend.local"),
        ToolLoopSettings(parallel_tool_calls=True),
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://backend.local") as client:
        await HttpReasoningBackend(config, client=client)({"input": []})

    assert seen["body"]["parallel_tool_calls"] is True


@pytest.mark.asyncio
async def test_backend_does_not_close_injected_client():
    async with httpx.AsyncClient(base_url="http://backend.local") as client:
        backend = HttpReasoningBackend(_config(), client=client)
        await backend.aclose()
        assert client.is_closed is False


@pytest.mark.asyncio
async def test_backend_closes_owned_client():
    backend = HttpReasoningBackend(_config())

    await backend.aclose()

    assert backend._client.is_closed is True
