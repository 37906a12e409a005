"""Pod lifecycle tracking."""

from .monitor import PodMonitor
from .reconciler import PodLifecycleReconciler, derive_deployment

__all__ = ["PodMonitor", "PodLifecycleReconciler", "derive_deployment"]
