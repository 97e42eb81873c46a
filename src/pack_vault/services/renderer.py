"""Client for the external watermark renderer.

The renderer receives the normalized content key plus a capability token and
answers with the watermarked media bytes. This module provides:

- a streaming HTTP client built on ``httpx.AsyncClient``
- a circuit breaker that fails fast while the renderer is unhealthy
- request metrics exposed by the system endpoints

Calls are never retried; the rate limiter already bounds request volume.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from pack_vault.services.errors import UpstreamFailure, UpstreamTimeout

logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_INTERNAL_SERVER_ERROR = 500

# Renderer client errors caused by the requested key, relayed with their status
PROPAGATED_STATUS_REASONS: dict[int, str] = {
    HTTP_BAD_REQUEST: "invalid_content_key",
    HTTP_NOT_FOUND: "content_not_found",
}


class CircuitState(Enum):
    """Circuit breaker states for the renderer connection."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RendererMetrics:
    """Metrics collection for renderer calls."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_response_time: float = 0.0
    min_response_time: float = float("inf")
    max_response_time: float = 0.0
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    status_counts: dict[int, int] = field(default_factory=lambda: defaultdict(int))

    def record_request(
        self,
        response_time: float,
        success: bool,
        *,
        status_code: int | None = None,
        error_type: str | None = None,
    ) -> None:
        """Record a single renderer call."""
        self.request_count += 1
        self.total_response_time += response_time
        self.min_response_time = min(self.min_response_time, response_time)
        self.max_response_time = max(self.max_response_time, response_time)
        if status_code is not None:
            self.status_counts[status_code] += 1

        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            if error_type:
                self.error_counts_by_type[error_type] += 1

    def get_average_response_time(self) -> float:
        return self.total_response_time / self.request_count if self.request_count > 0 else 0.0

    def get_success_rate(self) -> float:
        return (self.success_count / self.request_count * 100) if self.request_count > 0 else 0.0


@dataclass
class CircuitBreaker:
    """Open after consecutive failures, probe again after a recovery timeout."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 1
    clock: Callable[[], float] = field(default=time.time, repr=False)

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        if self._state == CircuitState.OPEN:
            if self.clock() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self.clock()
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    def snapshot(self) -> dict[str, Any]:
        is_open = self.is_open()
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure_time": self._last_failure_time,
            "is_open": is_open,
        }


@dataclass(frozen=True)
class RenderRequest:
    """Parameters for one renderer call."""

    content_key: str
    pack_id: str
    order_id: str
    username: str
    capability_token: str
    range_header: str | None = None


class WatermarkRendererClient:
    """HTTP client wrapper for the watermark renderer."""

    def __init__(
        self,
        base_url: str | None,
        *,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url
        self.read_timeout = read_timeout
        self._timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            clock=clock,
        )
        self._metrics = RendererMetrics()
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def open_stream(self, render: RenderRequest) -> httpx.Response:
        """Send the render request and return the response with an unread body.

        The caller owns the returned response and must close it.

        Raises:
            UpstreamTimeout: The renderer did not answer within the timeouts.
            UpstreamFailure: The renderer is unavailable or answered non-2xx.
        """
        if not self.enabled:
            logger.error("Watermark renderer URL is not configured")
            raise UpstreamFailure("renderer_unavailable")
        if self._circuit_breaker.is_open():
            logger.warning("Renderer circuit breaker open, failing fast")
            raise UpstreamFailure("renderer_unavailable")

        client = await self._ensure_client()
        headers = {
            "X-Service-Authorization": f"Bearer {render.capability_token}",
            "Accept-Encoding": "identity",
        }
        if render.range_header:
            headers["Range"] = render.range_header
        request = client.build_request(
            "GET",
            self.base_url or "",
            params={
                "packId": render.pack_id,
                "orderId": render.order_id,
                "contentKey": render.content_key,
                "username": render.username,
                "token": render.capability_token,
            },
            headers=headers,
        )

        start_time = self._clock()
        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            self._circuit_breaker.record_failure()
            self._metrics.record_request(self._clock() - start_time, False, error_type="timeout")
            raise UpstreamTimeout("renderer_timeout") from exc
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            self._metrics.record_request(
                self._clock() - start_time, False, error_type="network_error"
            )
            logger.warning("Renderer request failed: %s", exc.__class__.__name__)
            raise UpstreamFailure("renderer_unavailable") from exc

        response_time = self._clock() - start_time
        status = response.status_code
        if response.is_success:
            self._circuit_breaker.record_success()
            self._metrics.record_request(response_time, True, status_code=status)
            return response

        await response.aclose()
        self._metrics.record_request(
            response_time, False, status_code=status, error_type=f"http_{status}"
        )
        if status in PROPAGATED_STATUS_REASONS:
            # The renderer itself is healthy; the requested key is not
            self._circuit_breaker.record_success()
            raise UpstreamFailure(PROPAGATED_STATUS_REASONS[status], status_code=status)

        if status >= HTTP_INTERNAL_SERVER_ERROR:
            self._circuit_breaker.record_failure()
        logger.warning("Renderer responded with status %s", status)
        raise UpstreamFailure("renderer_error")

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        return self._circuit_breaker.snapshot()

    def get_metrics(self) -> dict[str, Any]:
        """Return renderer call counts and latencies."""
        return {
            "request_count": self._metrics.request_count,
            "success_count": self._metrics.success_count,
            "error_count": self._metrics.error_count,
            "success_rate": self._metrics.get_success_rate(),
            "average_response_time": self._metrics.get_average_response_time(),
            "min_response_time": (
                self._metrics.min_response_time
                if self._metrics.min_response_time != float("inf")
                else 0.0
            ),
            "max_response_time": self._metrics.max_response_time,
            "error_counts_by_type": dict(self._metrics.error_counts_by_type),
            "status_counts": {str(k): v for k, v in self._metrics.status_counts.items()},
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
