from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

import pytest

from uptime_watchdog.errors import ActionNotFound
from uptime_watchdog.models import ProbeResult
from uptime_watchdog.notifications import Notifier
from uptime_watchdog.probes import Probe
from uptime_watchdog.recovery import ActionResult

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def result(target_id: str, healthy: bool, seconds: float = 0, error: str | None = None) -> ProbeResult:
    if not healthy and error is None:
        error = "connection refused"
    return ProbeResult(target_id=target_id, timestamp=at(seconds), healthy=healthy, latency_ms=1.0, error=error)


class FakeProbe(Probe):
    """Replays a scripted list of health values; the last one repeats."""

    def __init__(self, healthy: Iterable[bool] = (True,), start: float = 0, step: float = 60):
        self.healthy = list(healthy)
        self.calls = 0
        self.closed = False
        self._start = start
        self._step = step

    async def check(self, target: Any) -> ProbeResult:
        index = min(self.calls, len(self.healthy) - 1)
        ts = self._start + self.calls * self._step
        self.calls += 1
        return result(target.id, self.healthy[index], ts)

    async def close(self) -> None:
        self.closed = True


class FakeNotifier(Notifier):
    def __init__(self, ok: bool = True, raises: Exception | None = None):
        self.ok = ok
        self.raises = raises
        self.sent: list[tuple[list[str], str, str]] = []

    async def send(self, recipients: list[str], subject: str, body: str) -> bool:
        self.sent.append((list(recipients), subject, body))
        if self.raises is not None:
            raise self.raises
        return self.ok

    def subjects(self) -> list[str]:
        return [s for _, s, _ in self.sent]


class FakeActionRunner:
    """Action runner double; names missing from `results` are not found."""

    def __init__(self, results: dict[str, ActionResult] | None = None):
        self.results = dict(results or {})
        self.calls: list[str] = []

    def has_action(self, name: str) -> bool:
        return name in self.results

    def names(self) -> list[str]:
        return sorted(self.results)

    async def run(self, name: str) -> ActionResult:
        if name not in self.results:
            raise ActionNotFound(name)
        self.calls.append(name)
        return self.results[name]


def ok_actions(**overrides: ActionResult) -> dict[str, ActionResult]:
    actions = {
        "Stop Pods": ActionResult(success=True, output="stopped"),
        "Start Pods": ActionResult(success=True, output="started"),
        "Stop Database": ActionResult(success=True, output="db stopped"),
        "Start Database": ActionResult(success=True, output="db started"),
    }
    for key, value in overrides.items():
        actions[key.replace("_", " ")] = value
    return actions


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()
