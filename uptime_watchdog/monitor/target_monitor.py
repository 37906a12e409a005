"""Per-target monitor: probe, detect transitions, record downtime, alert."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Callable

import structlog

from ..config import TargetConfig
from ..errors import ConflictError, NotFoundError
from ..models import Direction, ProbeResult, Status, TransitionEvent
from ..probes import Probe, run_probe
from .alerts import AlertDispatcher
from .detector import StatusTransitionDetector
from .ledger import DowntimeLedger, format_duration

logger = structlog.get_logger(__name__)

DownListener = Callable[[TransitionEvent], Any]


class TargetMonitor:
    """Runs checks for one target and turns them into side effects.

    A check never overlaps itself: a tick arriving while the previous probe
    is still outstanding is skipped. All mutations for the target happen
    under one lock.
    """

    def __init__(
        self,
        target: TargetConfig,
        probe: Probe,
        detector: StatusTransitionDetector,
        ledger: DowntimeLedger,
        dispatcher: AlertDispatcher,
        recent_checks_limit: int = 100,
    ):
        self.target = target
        self.probe = probe
        self.detector = detector
        self.ledger = ledger
        self.dispatcher = dispatcher
        self._recent: deque[ProbeResult] = deque(maxlen=recent_checks_limit)
        self._down_listeners: list[DownListener] = []
        self._lock = asyncio.Lock()
        self._in_flight = False
        self.total_checks = 0
        self.skipped_checks = 0

    @property
    def target_id(self) -> str:
        return self.target.id

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def add_down_listener(self, listener: DownListener) -> None:
        """Register a callback fired after an UP->DOWN transition is handled."""
        self._down_listeners.append(listener)

    async def probe_once(self) -> ProbeResult:
        """Probe the target without touching status, ledger or alerts."""
        return await run_probe(self.probe, self.target, self.target.timeout_seconds)

    async def verify(self) -> bool:
        result = await self.probe_once()
        logger.info("Verification probe", target_id=self.target_id, healthy=result.healthy, error=result.error)
        return result.healthy

    async def check(self) -> ProbeResult | None:
        """Run one scheduled check. Returns None when the check was skipped."""
        if self._in_flight:
            self.skipped_checks += 1
            logger.warning("Previous check still running, skipping tick", target_id=self.target_id)
            return None

        self._in_flight = True
        try:
            result = await self.probe_once()
            async with self._lock:
                await self._process(result)
            return result
        finally:
            self._in_flight = False

    async def _process(self, result: ProbeResult) -> None:
        self.total_checks += 1
        self._recent.append(result)

        is_baseline = self.detector.status(self.target_id) == Status.UNKNOWN
        event = self.detector.observe(self.target_id, result)

        logger.debug("Check completed",
                    target_id=self.target_id,
                    healthy=result.healthy,
                    latency_ms=result.latency_ms)

        if is_baseline:
            await self._reconcile_baseline(result)
            return
        if event is None:
            return

        logger.info("Status changed",
                   target_id=self.target_id,
                   direction=event.direction.value,
                   error=event.error)
        try:
            if event.direction == Direction.UP_TO_DOWN:
                await self._handle_down(event)
            else:
                await self._handle_up(event)
        except Exception as e:
            logger.error("Failed to handle transition",
                        target_id=self.target_id,
                        direction=event.direction.value,
                        error=str(e))

    async def _reconcile_baseline(self, result: ProbeResult) -> None:
        """Line up a downtime record left open by a previous process."""
        record = self.ledger.open_record(self.target_id)
        if record is None:
            logger.info("Initial status recorded",
                       target_id=self.target_id,
                       status=self.detector.status(self.target_id).value)
            return

        if result.healthy:
            logger.warning("Closing downtime record left open before restart",
                          target_id=self.target_id,
                          record_id=record.id)
            try:
                duration = self.ledger.on_up(self.target_id, result.timestamp)
            except OSError as e:
                logger.error("Failed to persist downtime close", target_id=self.target_id, error=str(e))
                duration = format_duration((result.timestamp - record.start_time).total_seconds())
            await self.dispatcher.on_up(self.target, duration, record)
        else:
            logger.warning("Resuming downtime episode left open before restart",
                          target_id=self.target_id,
                          record_id=record.id)
            await self.dispatcher.on_down(self.target, result.error, record)

    async def _handle_down(self, event: TransitionEvent) -> None:
        record = None
        try:
            record_id = self.ledger.on_down(self.target_id, event.timestamp, event.error)
            record = self.ledger.get(record_id)
        except ConflictError as e:
            logger.warning("Downtime record already open, reusing it",
                          target_id=self.target_id,
                          record_id=e.record_id)
            record = self.ledger.get(e.record_id)
        except OSError as e:
            logger.error("Failed to persist downtime record, alerting without it",
                        target_id=self.target_id,
                        error=str(e))

        await self.dispatcher.on_down(self.target, event.error, record)

        for listener in self._down_listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error("Down listener failed", target_id=self.target_id, error=str(e))

    async def _handle_up(self, event: TransitionEvent) -> None:
        record = self.ledger.open_record(self.target_id)
        try:
            duration = self.ledger.on_up(self.target_id, event.timestamp)
        except NotFoundError:
            logger.warning("UP transition without open downtime record", target_id=self.target_id)
            duration = "Unknown"
        except OSError as e:
            logger.error("Failed to persist downtime close", target_id=self.target_id, error=str(e))
            duration = format_duration((event.timestamp - record.start_time).total_seconds())

        await self.dispatcher.on_up(self.target, duration, record)

    def recent_checks(self, limit: int = 10) -> list[ProbeResult]:
        items = list(self._recent)
        return items[-limit:] if limit > 0 else []

    @property
    def last_result(self) -> ProbeResult | None:
        return self._recent[-1] if self._recent else None

    def get_status(self) -> dict[str, Any]:
        """Status snapshot for the reporting surface."""
        last = self.last_result
        status = self.detector.status(self.target_id)
        return {
            "target_id": self.target_id,
            "name": self.target.name,
            "kind": self.target.kind,
            "status": status.value,
            "is_down": status == Status.DOWN,
            "last_error": self.detector.last_error(self.target_id),
            "last_checked": last.timestamp.isoformat() if last else None,
            "latency_ms": round(last.latency_ms, 3) if last and last.latency_ms is not None else None,
            "open_downtime": self.ledger.open_duration(self.target_id),
            "total_checks": self.total_checks,
            "skipped_checks": self.skipped_checks,
            "check_in_progress": self._in_flight,
            "recent_checks": [r.to_dict() for r in self.recent_checks(10)],
        }
