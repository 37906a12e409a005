"""HTTP endpoint probe."""

from __future__ import annotations

import time

import httpx

from ..config import UrlTarget
from ..models import ProbeResult, utcnow
from .base import Probe


class HttpProbe(Probe):
    """Requests a URL and compares the status code with the expected one.

    Any status code is accepted from the transport; only a mismatch or a
    request error makes the target unhealthy.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def check(self, target: UrlTarget) -> ProbeResult:
        client = self._get_client()
        started = time.perf_counter()
        try:
            resp = await client.request(target.method.upper(), target.url, timeout=target.timeout_seconds)
        except httpx.RequestError as e:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            return ProbeResult(
                target_id=target.id,
                timestamp=utcnow(),
                healthy=False,
                latency_ms=elapsed_ms,
                error=f"http_error: {type(e).__name__}: {e}",
            )

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        healthy = resp.status_code == target.expected_status
        error = None
        if not healthy:
            error = f"Unexpected status {resp.status_code} (expected {target.expected_status})"
        return ProbeResult(
            target_id=target.id,
            timestamp=utcnow(),
            healthy=healthy,
            latency_ms=elapsed_ms,
            error=error,
            details={"status_code": resp.status_code},
        )

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
