"""Scheduling and orchestration of the monitors."""

from .coordinator import WatchdogCoordinator
from .job_scheduler import JobScheduler

__all__ = ["JobScheduler", "WatchdogCoordinator"]
