"""Bounded-retry automatic recovery for the monitored database.

On a DOWN transition the sequence stops the dependent workload, restarts the
database service, verifies the database answers and starts the workload
again. Attempts are counted across independent DOWN events; once the limit is
reached nothing runs until an operator resets the counter.
"""

from __future__ import annotations

import asyncio
from collections import deque
from pathlib import Path
from typing import Any, Awaitable, Callable

import structlog

from ..config import RecoveryConfig
from ..errors import ActionError, ActionFailed, ActionNotFound
from ..models import RecoveryAttempt, RecoveryOutcome, RecoveryState, TransitionEvent, utcnow
from ..storage import JsonFileStore, JsonLinesLog
from .actions import ActionRunner

logger = structlog.get_logger(__name__)

Verifier = Callable[[], Awaitable[bool]]
Sleeper = Callable[[float], Awaitable[Any]]


class DatabaseAutoRecovery:
    """Recovery state machine: idle -> recovering -> outcome -> idle.

    `in_progress` is the only concurrency gate and is never persisted, so a
    process restart always starts idle.
    """

    def __init__(
        self,
        config: RecoveryConfig,
        runner: ActionRunner,
        verify: Verifier,
        state_path: Path | str,
        log_path: Path | str,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.config = config
        self.runner = runner
        self._verify = verify
        self._sleep = sleep
        self._state_store = JsonFileStore(state_path)
        self._log_store = JsonLinesLog(log_path)
        self._log: deque[RecoveryAttempt] = deque(maxlen=config.log_size)
        self._task: asyncio.Task | None = None

        self.state = RecoveryState(enabled=config.enabled, max_attempts=config.max_attempts)
        self._load()

        logger.info("Database auto-recovery initialized",
                   enabled=self.state.enabled,
                   attempts=self.state.attempts,
                   max_attempts=self.state.max_attempts)

    def _load(self) -> None:
        saved = self._state_store.load(default=None)
        if isinstance(saved, dict):
            self.state.enabled = bool(saved.get("enabled", self.state.enabled))
            self.state.attempts = min(int(saved.get("attempts", 0) or 0), self.state.max_attempts)
        else:
            self._persist()

        for item in self._log_store.tail(self.config.log_size):
            try:
                self._log.append(RecoveryAttempt.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable recovery log entry", error=str(e))

    def _persist(self) -> None:
        try:
            self._state_store.save({
                "enabled": self.state.enabled,
                "attempts": self.state.attempts,
                "max_attempts": self.state.max_attempts,
                "last_updated": utcnow().isoformat(),
            })
        except OSError as e:
            logger.error("Failed to save recovery state", error=str(e))

    def _record(self, status: RecoveryOutcome, message: str) -> RecoveryAttempt:
        entry = RecoveryAttempt(
            timestamp=utcnow(),
            attempt_number=self.state.attempts,
            status=status,
            message=message,
        )
        self._log.append(entry)
        try:
            self._log_store.append(entry.to_dict())
        except OSError as e:
            logger.error("Failed to append recovery log", error=str(e))

        logger.info("Recovery log", status=status.value, attempt=entry.attempt_number, message=message)
        return entry

    @property
    def _task_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def phase(self) -> str:
        if self.state.in_progress:
            return "recovering"
        if self.state.attempts >= self.state.max_attempts:
            return "max_attempts_reached"
        return "idle"

    def on_database_down(self, event: TransitionEvent) -> asyncio.Task | None:
        """Down listener for the database monitor."""
        return self.trigger(reason=event.error or "database down")

    def trigger(self, reason: str = "database down", delay: float | None = None) -> asyncio.Task | None:
        """Start a detached recovery sequence if the entry conditions hold."""
        if not self.state.enabled:
            logger.info("Auto-recovery is disabled, skipping recovery", reason=reason)
            return None

        if self.state.in_progress:
            logger.warning("Recovery already in progress, dropping trigger", reason=reason)
            return None

        if self.state.attempts >= self.state.max_attempts:
            logger.warning("Maximum recovery attempts reached",
                          attempts=self.state.attempts,
                          max_attempts=self.state.max_attempts)
            self._record(RecoveryOutcome.MAX_ATTEMPTS_REACHED, "Maximum recovery attempts exceeded")
            return None

        self.state.in_progress = True
        wait = self.config.trigger_delay_seconds if delay is None else delay
        self._task = asyncio.get_running_loop().create_task(self._run(wait, reason))
        return self._task

    async def run_now(self) -> RecoveryOutcome | None:
        """Run the sequence immediately and wait for its outcome."""
        task = self.trigger(reason="manual run", delay=0)
        if task is None:
            return None
        return await task

    async def _run(self, delay: float, reason: str) -> RecoveryOutcome | None:
        try:
            if delay > 0:
                logger.info("Recovery scheduled", delay_seconds=delay, reason=reason)
                await self._sleep(delay)
            if not self.state.enabled:
                logger.info("Auto-recovery disabled before start, skipping")
                return None
            return await self._run_sequence()
        finally:
            self.state.in_progress = False
            self._persist()

    async def _run_sequence(self) -> RecoveryOutcome:
        self.state.attempts += 1
        self._persist()
        logger.info("Starting automatic database recovery",
                   attempt=self.state.attempts,
                   max_attempts=self.state.max_attempts)

        try:
            await self._run_action(self.config.stop_workload_action)

            await self._sleep(self.config.quiescence_seconds)

            restarted, restart_error = await self._restart_database()
            if not restarted:
                self._record(RecoveryOutcome.RESTART_FAILED, f"Database restart command failed: {restart_error}")
                return RecoveryOutcome.RESTART_FAILED

            await self._sleep(self.config.settle_seconds)

            if not await self._verify():
                self._record(RecoveryOutcome.FAILED, "Database failed to start after restart")
                return RecoveryOutcome.FAILED

            try:
                await self._run_action(self.config.start_workload_action)
            except ActionError as e:
                self._record(RecoveryOutcome.PARTIAL_SUCCESS,
                             f"Database recovered but workload start failed: {e}")
                if self.config.reset_attempts_on_partial_success:
                    self.state.attempts = 0
                return RecoveryOutcome.PARTIAL_SUCCESS

            self._record(RecoveryOutcome.SUCCESS, "Database recovered successfully")
            self.state.attempts = 0
            return RecoveryOutcome.SUCCESS

        except ActionNotFound as e:
            self._record(RecoveryOutcome.ERROR, f"Recovery failed: {e}")
        except ActionFailed as e:
            self._record(RecoveryOutcome.ERROR, f"Recovery failed: {e}")
        except Exception as e:
            logger.exception("Unexpected error during recovery")
            self._record(RecoveryOutcome.ERROR, f"Recovery failed: {type(e).__name__}: {e}")
        return RecoveryOutcome.ERROR

    async def _run_action(self, name: str) -> None:
        result = await self.runner.run(name)
        if not result.success:
            raise ActionFailed(name, result.error)

    async def _restart_database(self) -> tuple[bool, str | None]:
        """Stop then start the database service.

        A failing stop is tolerated since the service is usually already
        down; a missing action is not.
        """
        stop = await self.runner.run(self.config.stop_database_action)
        if not stop.success:
            logger.warning("Database stop failed, continuing with start", error=stop.error)

        await self._sleep(self.config.restart_pause_seconds)

        start = await self.runner.run(self.config.start_database_action)
        if not start.success:
            return False, start.error
        return True, None

    def set_enabled(self, enabled: bool) -> bool:
        self.state.enabled = bool(enabled)
        if not enabled:
            self.state.attempts = 0
            if not self._task_running:
                self.state.in_progress = False
        self._persist()
        logger.info("Auto-recovery toggled", enabled=self.state.enabled)
        return self.state.enabled

    def reset(self) -> None:
        """Clear the attempt counter and any stale in-progress flag."""
        self.state.attempts = 0
        if self._task_running:
            logger.warning("Recovery sequence still running, keeping in-progress flag")
        else:
            self.state.in_progress = False
        self._persist()
        logger.info("Recovery attempts reset")

    def recent_log(self, limit: int = 10) -> list[RecoveryAttempt]:
        items = list(self._log)
        return items[-limit:] if limit > 0 else []

    def get_status(self) -> dict[str, Any]:
        stop_found = self.runner.has_action(self.config.stop_workload_action)
        start_found = self.runner.has_action(self.config.start_workload_action)
        return {
            **self.state.to_dict(),
            "phase": self.phase,
            "log": [entry.to_dict() for entry in self.recent_log(10)],
            "config": {
                "stop_action_found": stop_found,
                "start_action_found": start_found,
                "stop_action_name": self.config.stop_workload_action if stop_found else "Not Found",
                "start_action_name": self.config.start_workload_action if start_found else "Not Found",
                "database_actions_found": (
                    self.runner.has_action(self.config.stop_database_action)
                    and self.runner.has_action(self.config.start_database_action)
                ),
            },
        }
