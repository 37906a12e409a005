"""Uptime watchdog: status monitoring, downtime tracking, database auto-recovery and pod lifecycle tracking."""

__version__ = "0.1.0"
