"""Named external actions (scripts and commands) used by recovery."""

import asyncio
import os
import subprocess
from dataclasses import dataclass
from typing import Any, Dict

import structlog

from ..config import ActionConfig
from ..errors import ActionNotFound

logger = structlog.get_logger(__name__)


@dataclass
class ActionResult:
    success: bool
    output: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "output": self.output, "error": self.error}


class ActionRunner:
    """Runs commands registered under exact names.

    An unknown name raises ActionNotFound; a command that runs and fails
    returns an unsuccessful ActionResult.
    """

    def __init__(self, actions: Dict[str, ActionConfig]):
        self._actions = {name.strip(): action for name, action in actions.items()}

    def has_action(self, name: str) -> bool:
        return name.strip() in self._actions

    def names(self) -> list[str]:
        return sorted(self._actions)

    async def run(self, name: str) -> ActionResult:
        action = self._actions.get(name.strip())
        if action is None:
            logger.error("Action not found", action=name, available=self.names())
            raise ActionNotFound(name)

        logger.info("Running action", action=name)
        result = await asyncio.to_thread(self._run_command, action)
        if result.success:
            logger.info("Action completed", action=name, output=result.output[:200])
        else:
            logger.error("Action failed", action=name, error=result.error)
        return result

    def _run_command(self, action: ActionConfig) -> ActionResult:
        """Execute the command and capture its output."""
        env = {**os.environ, **action.env} if action.env else None
        try:
            result = subprocess.run(
                action.command,
                capture_output=True,
                text=True,
                timeout=action.timeout_seconds,
                cwd=action.cwd,
                shell=action.shell,
                env=env,
                check=True
            )
            return ActionResult(success=True, output=f"STDOUT: {result.stdout}\nSTDERR: {result.stderr}")
        except subprocess.CalledProcessError as e:
            return ActionResult(
                success=False,
                output=f"STDOUT: {e.stdout}\nSTDERR: {e.stderr}",
                error=f"exit code {e.returncode}: {(e.stderr or '').strip()[:500]}",
            )
        except subprocess.TimeoutExpired:
            return ActionResult(success=False, error=f"timed out after {action.timeout_seconds:g}s")
        except OSError as e:
            return ActionResult(success=False, error=f"{type(e).__name__}: {e}")
