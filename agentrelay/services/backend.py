from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from agentrelay.core import metrics
from agentrelay.core.config import BackendSettings, ToolLoopSettings
from agentrelay.core.errors import TransportError
from agentrelay.core.logging import get_logger

logger = get_logger(name=__name__)

ReasoningBackend = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


@dataclass(slots=True)
class HttpBackendConfig:
    base_url: str
    responses_path: str = "/api/responses"
    timeout_seconds: float = 30.0
    parallel_tool_calls: bool = False
    default_headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, backend: BackendSettings, tool_loop: ToolLoopSettings) -> "HttpBackendConfig":
        return cls(
            base_url=backend.base_url,
            responses_path=backend.responses_path,
            timeout_seconds=backend.timeout_seconds,
            parallel_tool_calls=tool_loop.parallel_tool_calls,
            default_headers=dict(backend.extra_headers),
        )


class HttpReasoningBackend:
    """POSTs response requests to the reasoning backend proxy.

    Any transport failure or non-2xx status is raised as ``TransportError``;
    a JSON body that carries an ``error`` key is returned untouched so the
    caller can decide how to surface it.
    """

    def __init__(self, config: HttpBackendConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=httpx.Timeout(config.timeout_seconds),
            headers={"Content-Type": "application/json", **config.default_headers},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __call__(self, body: dict[str, Any]) -> dict[str, Any]:
        return await self.create_response(body)

    async def create_response(self, body: dict[str, Any]) -> dict[str, Any]:
        payload = {**body, "parallel_tool_calls": self._config.parallel_tool_calls}
        start = time.perf_counter()
        try:
            response = await self._client.post(self._config.responses_path, json=payload)
        except httpx.RequestError as exc:
            metrics.observe_backend_request(outcome="transport_error", latency=time.perf_counter() - start)
            logger.warning("backend_request_failed", path=self._config.responses_path, error=str(exc))
            raise TransportError(f"Backend request failed: {exc}") from exc

        latency = time.perf_counter() - start
        if not response.is_success:
            metrics.observe_backend_request(outcome=f"status_{response.status_code}", latency=latency)
            logger.warning(
                "backend_returned_error",
                path=self._config.responses_path,
                status=response.status_code,
            )
            raise TransportError(f"Backend request failed with status {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            metrics.observe_backend_request(outcome="invalid_json", latency=latency)
            raise TransportError("Backend returned a non-JSON body") from exc
        if not isinstance(data, dict):
            metrics.observe_backend_request(outcome="invalid_json", latency=latency)
            raise TransportError("Backend returned an unexpected payload")

        metrics.observe_backend_request(outcome="success", latency=latency)
        return data
