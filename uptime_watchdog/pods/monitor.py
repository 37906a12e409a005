"""Scheduled cluster polling feeding the pod reconciler."""

from __future__ import annotations

import asyncio
from collections import Counter, deque
from datetime import datetime
from typing import Any, Optional

import structlog

from ..config import ClusterTarget
from ..errors import ProbeError
from ..models import LifecycleEvent, Pod, utcnow
from ..monitor.alerts import AlertDispatcher
from ..monitor.ledger import format_duration
from ..probes import ClusterProbe
from .reconciler import CREATED, DELETED, RESTARTED, STATUS_CHANGE, PodLifecycleReconciler

logger = structlog.get_logger(__name__)


class PodMonitor:
    """Polls the cluster and reconciles the pod list, one pass at a time.

    Besides feeding the reconciler it raises cluster alerts: a mass
    disappearance per namespace (paired with a "pods back" alert once pods
    are created there again) and one batched alert per pass for restarts
    and failure statuses.
    """

    def __init__(
        self,
        target: ClusterTarget,
        probe: ClusterProbe,
        reconciler: PodLifecycleReconciler,
        dispatcher: AlertDispatcher,
        recent_events_limit: int = 100,
    ):
        self.target = target
        self.probe = probe
        self.reconciler = reconciler
        self.dispatcher = dispatcher
        self._recent_events: deque[LifecycleEvent] = deque(maxlen=recent_events_limit)
        # namespace -> open disappearance episode
        self._disappearances: dict[str, dict[str, Any]] = {}
        self._in_flight = False
        self.last_error: Optional[str] = None
        self.last_poll: Optional[datetime] = None
        self.total_polls = 0
        self.skipped_polls = 0
        self.failed_polls = 0

    @property
    def target_id(self) -> str:
        return self.target.id

    async def poll(self) -> Optional[list[LifecycleEvent]]:
        """List pods and reconcile. Returns None when the pass was skipped."""
        if self._in_flight:
            self.skipped_polls += 1
            logger.warning("Previous pod poll still running, skipping tick", target_id=self.target_id)
            return None

        self._in_flight = True
        try:
            try:
                pods = await self._list_pods()
            except ProbeError as e:
                self.failed_polls += 1
                self.last_error = str(e)
                logger.warning("Pod listing failed, skipping reconciliation",
                              target_id=self.target_id,
                              error=str(e))
                return None

            excluded = set(self.target.excluded_statuses)
            snapshot = [pod for pod in pods if pod.status not in excluded]

            events = self.reconciler.reconcile(snapshot)
            self.total_polls += 1
            self.last_error = None
            self.last_poll = utcnow()
            self._recent_events.extend(events)

            await self._alert_pods_back(events)
            await self._alert_mass_disappearance(events)
            await self._alert_workload_changes(events)
            return events
        finally:
            self._in_flight = False

    async def _list_pods(self) -> list[Pod]:
        timeout = self.target.timeout_seconds
        try:
            return await asyncio.wait_for(self.probe.list_pods(self.target), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProbeError(f"Pod listing timed out after {timeout:g}s") from e

    async def _alert_mass_disappearance(self, events: list[LifecycleEvent]) -> None:
        deleted = Counter(e.namespace for e in events if e.type == DELETED)
        for namespace, count in deleted.items():
            if count < self.target.mass_disappearance_threshold:
                continue
            names = sorted(e.name for e in events if e.type == DELETED and e.namespace == namespace)
            logger.warning("Mass pod disappearance detected",
                          target_id=self.target_id,
                          namespace=namespace,
                          count=count)
            episode = self._disappearances.setdefault(namespace, {"since": utcnow(), "pods": []})
            episode["pods"].extend(names)

            body = "\n".join([
                f"{count} pods disappeared from namespace {namespace} 🔴",
                f"Cluster: {self.target.name}",
                f"Detected: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}",
                "Pods:",
                *[f"  - {name}" for name in names],
            ])
            await self.dispatcher.send_to_group(
                self.target.alert_group_id,
                f"Pods disappeared in {namespace}",
                body,
                source=self.target_id,
            )

    async def _alert_pods_back(self, events: list[LifecycleEvent]) -> None:
        created = Counter(e.namespace for e in events if e.type == CREATED)
        for namespace in list(self._disappearances):
            if not created[namespace]:
                continue
            episode = self._disappearances.pop(namespace)
            names = sorted(e.name for e in events if e.type == CREATED and e.namespace == namespace)
            missing_for = format_duration((utcnow() - episode["since"]).total_seconds())
            logger.info("Pods back after mass disappearance",
                       target_id=self.target_id,
                       namespace=namespace,
                       created=len(names),
                       missing_for=missing_for)

            body = "\n".join([
                f"Pods are running again in namespace {namespace} 🟢",
                f"Cluster: {self.target.name}",
                f"Recovered: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}",
                f"Disappeared pods: {len(episode['pods'])}",
                f"Missing for: {missing_for}",
                "New pods:",
                *[f"  - {name}" for name in names],
            ])
            await self.dispatcher.send_to_group(
                self.target.alert_group_id,
                f"Pods back in {namespace}",
                body,
                source=self.target_id,
            )

    async def _alert_workload_changes(self, events: list[LifecycleEvent]) -> None:
        if not self.target.workload_alerts:
            return

        failures = set(self.target.failure_statuses)
        lines = []
        for event in events:
            if event.type == RESTARTED:
                lines.append(f"🔄 {event.key} restarted "
                             f"({event.details.get('previous')} -> {event.details.get('restarts')})")
            elif event.type == STATUS_CHANGE and event.details.get("status") in failures:
                lines.append(f"💥 {event.key}: {event.details.get('previous')} -> {event.details.get('status')}")
        if not lines:
            return

        logger.warning("Workload issues detected", target_id=self.target_id, count=len(lines))
        body = "\n".join([
            f"Cluster: {self.target.name}",
            f"Detected: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}",
            *lines,
        ])
        await self.dispatcher.send_to_group(
            self.target.alert_group_id,
            f"{len(lines)} workload issue(s) in {self.target.name}",
            body,
            source=self.target_id,
        )

    def recent_events(self, limit: int = 20) -> list[LifecycleEvent]:
        items = list(self._recent_events)
        return items[-limit:] if limit > 0 else []

    def get_status(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "name": self.target.name,
            "kind": self.target.kind,
            "last_poll": self.last_poll.isoformat() if self.last_poll else None,
            "last_error": self.last_error,
            "total_polls": self.total_polls,
            "skipped_polls": self.skipped_polls,
            "failed_polls": self.failed_polls,
            "poll_in_progress": self._in_flight,
            "open_disappearances": {
                namespace: episode["since"].isoformat()
                for namespace, episode in self._disappearances.items()
            },
            "statistics": self.reconciler.statistics(),
            "recent_events": [e.to_dict() for e in self.recent_events()],
        }
