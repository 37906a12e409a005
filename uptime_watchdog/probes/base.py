"""Probe contract and the timeout wrapper every monitor uses."""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any

import structlog

from ..models import ProbeResult, utcnow

logger = structlog.get_logger(__name__)


class Probe(ABC):
    """Performs one health check against a target."""

    @abstractmethod
    async def check(self, target: Any) -> ProbeResult:
        """Return the result of a single check."""

    async def close(self) -> None:
        """Release any resources held by the probe."""


async def run_probe(probe: Probe, target: Any, timeout: float) -> ProbeResult:
    """Run a probe under a hard timeout.

    A probe that raises or times out yields an unhealthy result instead of an
    exception, so a broken target can never stop its monitor.
    """
    started = time.perf_counter()
    try:
        return await asyncio.wait_for(probe.check(target), timeout=timeout)
    except asyncio.TimeoutError:
        error = f"Probe timed out after {timeout:g}s"
    except Exception as e:
        error = f"{type(e).__name__}: {e}"

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    logger.warning("Probe failed", target_id=target.id, error=error)
    return ProbeResult(
        target_id=target.id,
        timestamp=utcnow(),
        healthy=False,
        latency_ms=elapsed_ms,
        error=error,
    )
