"""Probes performing health checks against external targets."""

from .base import Probe, run_probe
from .cluster import ClusterProbe, parse_pod_list
from .database import DatabaseProbe, driver_connect_factory
from .http import HttpProbe

__all__ = [
    "Probe",
    "run_probe",
    "ClusterProbe",
    "parse_pod_list",
    "DatabaseProbe",
    "driver_connect_factory",
    "HttpProbe",
]
