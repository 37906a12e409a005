"""Status monitoring: transition detection, downtime ledger and alerting."""

from .alerts import AlertDispatcher
from .detector import StatusTransitionDetector
from .ledger import DowntimeLedger, format_duration
from .target_monitor import TargetMonitor

__all__ = [
    "AlertDispatcher",
    "StatusTransitionDetector",
    "DowntimeLedger",
    "format_duration",
    "TargetMonitor",
]
