"""Database liveness probe over a cached DB-API connection."""

from __future__ import annotations

import asyncio
import importlib
import threading
import time
from typing import Any, Callable

import structlog

from ..config import DatabaseTarget
from ..errors import ConfigurationError, ProbeError
from ..models import ProbeResult, utcnow
from .base import Probe

logger = structlog.get_logger(__name__)


def driver_connect_factory(target: DatabaseTarget) -> Callable[[], Any]:
    """Build a connect callable from the configured DB-API driver module."""
    if not target.dsn:
        raise ConfigurationError(f"Database target {target.id} has no dsn configured")
    try:
        driver = importlib.import_module(target.driver)
    except ImportError as e:
        raise ConfigurationError(f"Database driver {target.driver!r} is not installed: {e}") from e

    def connect() -> Any:
        return driver.connect(target.dsn, **target.connect_kwargs)

    return connect


class DatabaseProbe(Probe):
    """Runs the liveness query on a reused connection.

    The connection is dropped after any failure and reopened on the next
    check. Blocking driver calls run in a worker thread, and at most one
    such thread is alive per probe: while a query from an earlier check is
    still stuck in the driver, later checks report unhealthy immediately.
    """

    def __init__(self, connect: Callable[[], Any]):
        self._connect = connect
        self._connection: Any = None
        self._lock = threading.Lock()
        self._pending: asyncio.Future | None = None

    @property
    def query_running(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def _query(self, sql: str, timeout: float) -> None:
        with self._lock:
            try:
                if self._connection is None:
                    self._connection = self._connect()
                    if hasattr(self._connection, "call_timeout"):
                        # oracledb round-trip limit, in milliseconds
                        self._connection.call_timeout = int(timeout * 1000)
                cursor = self._connection.cursor()
                try:
                    cursor.execute(sql)
                    cursor.fetchone()
                finally:
                    cursor.close()
            except Exception as e:
                self._discard()
                raise ProbeError(str(e)) from e

    def _discard(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        except Exception as e:
            logger.debug("Ignoring error while closing connection", error=str(e))
        self._connection = None

    @staticmethod
    def _collect(future: asyncio.Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.debug("Abandoned liveness query finished with error", error=str(future.exception()))

    async def check(self, target: DatabaseTarget) -> ProbeResult:
        started = time.perf_counter()
        if self.query_running:
            logger.warning("Previous liveness query still running", target_id=target.id)
            return ProbeResult(
                target_id=target.id,
                timestamp=utcnow(),
                healthy=False,
                latency_ms=0.0,
                error="Previous liveness query still running",
            )

        self._pending = asyncio.ensure_future(
            asyncio.to_thread(self._query, target.liveness_query, target.timeout_seconds)
        )
        self._pending.add_done_callback(self._collect)
        try:
            # shielded so a timed-out check leaves the worker tracked
            await asyncio.shield(self._pending)
        except ProbeError as e:
            return ProbeResult(
                target_id=target.id,
                timestamp=utcnow(),
                healthy=False,
                latency_ms=(time.perf_counter() - started) * 1000.0,
                error=str(e),
            )
        return ProbeResult(
            target_id=target.id,
            timestamp=utcnow(),
            healthy=True,
            latency_ms=(time.perf_counter() - started) * 1000.0,
        )

    async def close(self) -> None:
        if self.query_running:
            logger.warning("Liveness query still running, connection left to the driver")
            return
        await asyncio.to_thread(self._close_locked)

    def _close_locked(self) -> None:
        with self._lock:
            self._discard()
