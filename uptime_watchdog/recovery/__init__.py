"""Automatic database recovery."""

from .actions import ActionResult, ActionRunner
from .state_machine import DatabaseAutoRecovery

__all__ = ["ActionResult", "ActionRunner", "DatabaseAutoRecovery"]
