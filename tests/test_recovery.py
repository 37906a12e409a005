from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import FakeActionRunner, ok_actions, no_sleep
from uptime_watchdog.config import RecoveryConfig
from uptime_watchdog.models import RecoveryOutcome
from uptime_watchdog.recovery import ActionResult, DatabaseAutoRecovery

FULL_SEQUENCE = ["Stop Pods", "Stop Database", "Start Database", "Start Pods"]


class _Verifier:
    def __init__(self, healthy: bool = True):
        self.healthy = healthy
        self.calls = 0

    async def __call__(self) -> bool:
        self.calls += 1
        return self.healthy


def _recovery(
    tmp_path: Path,
    runner: FakeActionRunner,
    verify: _Verifier | None = None,
    sleep=no_sleep,
    **config,
) -> DatabaseAutoRecovery:
    config.setdefault("enabled", True)
    return DatabaseAutoRecovery(
        RecoveryConfig(**config),
        runner,
        verify or _Verifier(),
        state_path=tmp_path / "recovery_state.json",
        log_path=tmp_path / "recovery_log.jsonl",
        sleep=sleep,
    )


async def _trigger(recovery: DatabaseAutoRecovery):
    task = recovery.trigger()
    return await task if task is not None else None


@pytest.mark.asyncio
async def test_successful_sequence_runs_actions_in_order(tmp_path: Path) -> None:
    runner = FakeActionRunner(ok_actions())
    verify = _Verifier(True)
    recovery = _recovery(tmp_path, runner, verify)

    assert await _trigger(recovery) == RecoveryOutcome.SUCCESS
    assert runner.calls == FULL_SEQUENCE
    assert verify.calls == 1
    assert recovery.state.attempts == 0
    assert recovery.state.in_progress is False
    assert [e.status for e in recovery.recent_log()] == [RecoveryOutcome.SUCCESS]


@pytest.mark.asyncio
async def test_restart_failing_reaches_max_attempts(tmp_path: Path) -> None:
    runner = FakeActionRunner(ok_actions(Start_Database=ActionResult(success=False, error="ORA-01034")))
    recovery = _recovery(tmp_path, runner, max_attempts=3)

    for expected_attempt in (1, 2, 3):
        assert await _trigger(recovery) == RecoveryOutcome.RESTART_FAILED
        assert recovery.state.attempts == expected_attempt

    calls_before = list(runner.calls)
    assert recovery.trigger() is None
    assert runner.calls == calls_before
    assert recovery.phase == "max_attempts_reached"

    statuses = [e.status for e in recovery.recent_log()]
    assert statuses == [RecoveryOutcome.RESTART_FAILED] * 3 + [RecoveryOutcome.MAX_ATTEMPTS_REACHED]
    assert "ORA-01034" in recovery.recent_log()[0].message

    recovery.reset()
    assert recovery.state.attempts == 0
    assert await _trigger(recovery) == RecoveryOutcome.RESTART_FAILED


@pytest.mark.asyncio
async def test_verification_failure_increments_attempts(tmp_path: Path) -> None:
    runner = FakeActionRunner(ok_actions())
    recovery = _recovery(tmp_path, runner, _Verifier(False), max_attempts=2)

    assert await _trigger(recovery) == RecoveryOutcome.FAILED
    assert await _trigger(recovery) == RecoveryOutcome.FAILED
    assert recovery.state.attempts == 2
    assert "Start Pods" not in runner.calls
    assert recovery.trigger() is None


@pytest.mark.asyncio
async def test_trigger_while_in_progress_is_dropped(tmp_path: Path) -> None:
    runner = FakeActionRunner(ok_actions())
    recovery = _recovery(tmp_path, runner)

    first = recovery.trigger()
    assert first is not None
    assert recovery.state.in_progress is True
    assert recovery.trigger() is None

    assert await first == RecoveryOutcome.SUCCESS
    assert runner.calls == FULL_SEQUENCE
    assert len(recovery.recent_log()) == 1


@pytest.mark.asyncio
async def test_disabled_trigger_is_a_noop(tmp_path: Path) -> None:
    runner = FakeActionRunner(ok_actions())
    recovery = _recovery(tmp_path, runner, enabled=False)

    assert recovery.trigger() is None
    assert await recovery.run_now() is None
    assert runner.calls == []
    assert recovery.recent_log() == []


@pytest.mark.asyncio
async def test_missing_action_is_reported_as_error(tmp_path: Path) -> None:
    actions = ok_actions()
    del actions["Stop Pods"]
    runner = FakeActionRunner(actions)
    recovery = _recovery(tmp_path, runner)

    assert await _trigger(recovery) == RecoveryOutcome.ERROR
    entry = recovery.recent_log()[-1]
    assert 'configure an action named exactly "Stop Pods"' in entry.message
    assert recovery.state.attempts == 1
    assert recovery.state.in_progress is False
    assert runner.calls == []

    status = recovery.get_status()
    assert status["config"]["stop_action_found"] is False
    assert status["config"]["stop_action_name"] == "Not Found"
    assert status["config"]["start_action_found"] is True


@pytest.mark.asyncio
async def test_failing_workload_stop_is_an_error(tmp_path: Path) -> None:
    runner = FakeActionRunner(ok_actions(Stop_Pods=ActionResult(success=False, error="exit code 1")))
    recovery = _recovery(tmp_path, runner)

    assert await _trigger(recovery) == RecoveryOutcome.ERROR
    assert runner.calls == ["Stop Pods"]
    assert "exit code 1" in recovery.recent_log()[-1].message


@pytest.mark.asyncio
async def test_failing_database_stop_is_tolerated(tmp_path: Path) -> None:
    runner = FakeActionRunner(ok_actions(Stop_Database=ActionResult(success=False, error="not running")))
    recovery = _recovery(tmp_path, runner)

    assert await _trigger(recovery) == RecoveryOutcome.SUCCESS
    assert runner.calls == FULL_SEQUENCE


@pytest.mark.asyncio
@pytest.mark.parametrize("reset_policy, expected_attempts", [(True, 0), (False, 1)])
async def test_partial_success_reset_policy(tmp_path: Path, reset_policy: bool, expected_attempts: int) -> None:
    runner = FakeActionRunner(ok_actions(Start_Pods=ActionResult(success=False, error="quota exceeded")))
    recovery = _recovery(tmp_path, runner, reset_attempts_on_partial_success=reset_policy)

    assert await _trigger(recovery) == RecoveryOutcome.PARTIAL_SUCCESS
    assert recovery.state.attempts == expected_attempts
    assert "quota exceeded" in recovery.recent_log()[-1].message


@pytest.mark.asyncio
async def test_waits_use_configured_intervals(tmp_path: Path) -> None:
    waits: list[float] = []

    async def record_sleep(seconds: float) -> None:
        waits.append(seconds)

    runner = FakeActionRunner(ok_actions())
    recovery = _recovery(
        tmp_path,
        runner,
        sleep=record_sleep,
        trigger_delay_seconds=7,
        quiescence_seconds=1,
        restart_pause_seconds=2,
        settle_seconds=3,
    )

    assert await _trigger(recovery) == RecoveryOutcome.SUCCESS
    assert waits == [7, 1, 2, 3]


@pytest.mark.asyncio
async def test_disabling_during_trigger_delay_cancels_run(tmp_path: Path) -> None:
    runner = FakeActionRunner(ok_actions())
    holder: dict[str, DatabaseAutoRecovery] = {}

    async def disabling_sleep(seconds: float) -> None:
        holder["recovery"].set_enabled(False)

    recovery = _recovery(tmp_path, runner, sleep=disabling_sleep, trigger_delay_seconds=5)
    holder["recovery"] = recovery

    assert await _trigger(recovery) is None
    assert runner.calls == []
    assert recovery.state.in_progress is False
    assert recovery.state.attempts == 0


@pytest.mark.asyncio
async def test_state_persists_but_in_progress_does_not(tmp_path: Path) -> None:
    runner = FakeActionRunner(ok_actions(Start_Database=ActionResult(success=False, error="boom")))
    recovery = _recovery(tmp_path, runner)
    await _trigger(recovery)

    # simulate a crash mid-run leaving the flag set
    recovery.state.in_progress = True
    saved = json.loads((tmp_path / "recovery_state.json").read_text(encoding="utf-8"))
    assert saved["attempts"] == 1
    assert saved["enabled"] is True
    assert "in_progress" not in saved

    restarted = _recovery(tmp_path, runner, enabled=False)
    assert restarted.state.enabled is True
    assert restarted.state.attempts == 1
    assert restarted.state.in_progress is False
    assert [e.status for e in restarted.recent_log()] == [RecoveryOutcome.RESTART_FAILED]


@pytest.mark.asyncio
async def test_set_enabled_false_resets_attempts(tmp_path: Path) -> None:
    runner = FakeActionRunner(ok_actions())
    recovery = _recovery(tmp_path, runner, _Verifier(False))
    await _trigger(recovery)
    assert recovery.state.attempts == 1

    recovery.set_enabled(False)
    assert recovery.state.attempts == 0
    assert recovery.get_status()["enabled"] is False

    recovery.set_enabled(True)
    assert await recovery.run_now() == RecoveryOutcome.FAILED


@pytest.mark.asyncio
async def test_reset_clears_stale_in_progress(tmp_path: Path) -> None:
    recovery = _recovery(tmp_path, FakeActionRunner(ok_actions()))
    recovery.state.in_progress = True
    assert recovery.trigger() is None

    recovery.reset()
    assert recovery.state.in_progress is False
    assert await _trigger(recovery) == RecoveryOutcome.SUCCESS
