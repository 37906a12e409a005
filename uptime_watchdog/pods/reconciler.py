"""Pod lifecycle reconciliation.

Each pass diffs the freshly observed pod list against the remembered pod
history and derives lifecycle events from the difference:

* ``created``        a pod key seen for the first time
* ``status_change``  the reported status of a known pod changed
* ``restarted``      the container restart count of a known pod went up
* ``deleted``        a known pod has been missing for longer than the grace period
* ``replaced``       an older pod of the same deployment was superseded

Deleted and replaced records stay in history as tombstones until the
retention window expires, then they are purged without an event.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Optional

import structlog

from ..models import LifecycleEvent, Pod, PodRecord, utcnow
from ..storage import JsonFileStore

logger = structlog.get_logger(__name__)

CREATED = "created"
STATUS_CHANGE = "status_change"
RESTART = "restart"
RESTARTED = "restarted"
DELETED = "deleted"
REPLACED = "replaced"


def derive_deployment(pod_name: str) -> str:
    """Strip the replicaset and pod hash suffixes: ``app-7949dd6859-92vgh`` -> ``app``."""
    parts = pod_name.split("-")
    if len(parts) >= 3:
        return "-".join(parts[:-2])
    return pod_name


class PodLifecycleReconciler:
    """Keeps persisted pod history and turns snapshots into lifecycle events."""

    def __init__(self, path: Path | str, grace_seconds: float = 60, retention_hours: float = 24):
        self._store = JsonFileStore(path)
        self.grace = timedelta(seconds=grace_seconds)
        self.retention = timedelta(hours=retention_hours)
        self._records: list[PodRecord] = []
        self.last_reconciled: Optional[datetime] = None
        self._load()

    def _load(self) -> None:
        data = self._store.load(default={}) or {}
        for item in data.get("pods", []):
            try:
                self._records.append(PodRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable pod record", error=str(e))
        logger.info("Pod history loaded", records=len(self._records))

    def _save(self) -> None:
        try:
            self._store.save({
                "pods": [r.to_dict() for r in self._records],
                "last_updated": utcnow().isoformat(),
            })
        except OSError as e:
            logger.error("Failed to save pod history", error=str(e))

    def records(self) -> list[PodRecord]:
        return list(self._records)

    def reconcile(self, snapshot: Iterable[Pod], now: Optional[datetime] = None) -> list[LifecycleEvent]:
        """Run one reconciliation pass and return the events it produced."""
        now = now or utcnow()
        current = {pod.key: pod for pod in snapshot}
        events: list[LifecycleEvent] = []

        live = {r.key: r for r in self._records if not r.is_deleted}
        replaced = {r.key: r for r in self._records if r.is_deleted and r.replaced_by}
        live_groups = {(r.namespace, r.deployment) for r in live.values()}

        for key, pod in current.items():
            record = live.get(key)
            if record is None:
                tombstone = replaced.get(key)
                if tombstone is not None and (tombstone.namespace, tombstone.deployment) in live_groups:
                    # Superseded pod still running; keep the tombstone fresh.
                    tombstone.last_seen = now
                    continue
                if tombstone is not None:
                    record = self._revive(tombstone, pod, now)
                else:
                    record = self._create(pod, now)
                live[key] = record
                events.append(self._event(CREATED, record, now, status=pod.status, node=pod.node))
            else:
                events.extend(self._update(record, pod, now))

        for key, record in live.items():
            if key in current:
                continue
            if now - record.last_seen > self.grace:
                record.is_deleted = True
                record.deleted_at = now
                record.add_history(record.status, now, DELETED)
                events.append(self._event(DELETED, record, now,
                                          last_status=record.status,
                                          last_seen=record.last_seen.isoformat()))

        events.extend(self._dedup_deployments(current, now))
        purged = self._purge(current, now)

        self.last_reconciled = now
        self._save()

        if events or purged:
            logger.info("Pod reconciliation completed",
                       observed=len(current),
                       events=len(events),
                       purged=purged,
                       by_type=dict(Counter(e.type for e in events)))
        return events

    def _create(self, pod: Pod, now: datetime) -> PodRecord:
        record = PodRecord(
            name=pod.name,
            namespace=pod.namespace,
            deployment=derive_deployment(pod.name),
            status=pod.status,
            first_seen=now,
            last_seen=now,
            restarts=pod.restarts,
            node=pod.node,
        )
        record.add_history(pod.status, now, CREATED)
        self._records.append(record)
        return record

    def _revive(self, record: PodRecord, pod: Pod, now: datetime) -> PodRecord:
        """Bring a replaced record back when its deployment has no live pod left."""
        record.is_deleted = False
        record.deleted_at = None
        record.replaced_by = None
        record.status = pod.status
        record.restarts = pod.restarts
        record.node = pod.node
        record.last_seen = now
        record.add_history(pod.status, now, CREATED)
        return record

    def _update(self, record: PodRecord, pod: Pod, now: datetime) -> list[LifecycleEvent]:
        events = []
        record.last_seen = now

        if pod.status != record.status:
            previous = record.status
            record.status = pod.status
            record.add_history(pod.status, now, STATUS_CHANGE)
            events.append(self._event(STATUS_CHANGE, record, now, previous=previous, status=pod.status))

        if pod.restarts != record.restarts:
            previous_restarts = record.restarts
            record.restarts = pod.restarts
            if pod.restarts > previous_restarts:
                record.add_history(pod.status, now, RESTART)
                events.append(self._event(RESTARTED, record, now,
                                          previous=previous_restarts,
                                          restarts=pod.restarts))

        if pod.node != record.node:
            record.node = pod.node

        return events

    def _dedup_deployments(self, current: dict[str, Pod], now: datetime) -> list[LifecycleEvent]:
        """Keep one current record per (namespace, deployment)."""
        groups: dict[tuple[str, str], list[PodRecord]] = defaultdict(list)
        for record in self._records:
            if not record.is_deleted:
                groups[(record.namespace, record.deployment)].append(record)

        events = []
        for members in groups.values():
            if len(members) < 2:
                continue
            members.sort(key=lambda r: (r.last_seen, r.key in current, r.first_seen, r.name), reverse=True)
            survivor = members[0]
            for old in members[1:]:
                old.is_deleted = True
                old.deleted_at = now
                old.replaced_by = survivor.name
                old.add_history(old.status, now, REPLACED)
                events.append(self._event(REPLACED, old, now, replaced_by=survivor.name))
        return events

    def _purge(self, current: dict[str, Pod], now: datetime) -> int:
        cutoff = now - self.retention

        def expired(record: PodRecord) -> bool:
            if not record.is_deleted or record.deleted_at is None or record.deleted_at >= cutoff:
                return False
            return not (record.replaced_by and record.key in current)

        before = len(self._records)
        self._records = [r for r in self._records if not expired(r)]
        return before - len(self._records)

    @staticmethod
    def _event(event_type: str, record: PodRecord, now: datetime, **details: Any) -> LifecycleEvent:
        return LifecycleEvent(
            type=event_type,
            namespace=record.namespace,
            name=record.name,
            deployment=record.deployment,
            timestamp=now,
            details=details,
        )

    def current_view(self) -> list[dict[str, Any]]:
        """One pod per deployment, ordered by namespace and deployment."""
        live = [r for r in self._records if not r.is_deleted]
        live.sort(key=lambda r: (r.namespace, r.deployment, r.name))
        return [
            {
                "name": r.name,
                "namespace": r.namespace,
                "deployment": r.deployment,
                "status": r.status,
                "restarts": r.restarts,
                "node": r.node,
                "first_seen": r.first_seen.isoformat(),
                "last_seen": r.last_seen.isoformat(),
            }
            for r in live
        ]

    def statistics(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Aggregates computed from the stored history."""
        now = now or utcnow()
        hour_ago = now - timedelta(hours=1)

        live = [r for r in self._records if not r.is_deleted]
        recent = Counter()
        restart_events = 0
        for record in self._records:
            for entry in record.status_history:
                event = entry.get("event")
                if event == RESTART:
                    restart_events += 1
                try:
                    ts = datetime.fromisoformat(entry["timestamp"])
                except (KeyError, TypeError, ValueError):
                    continue
                if ts >= hour_ago:
                    recent[event] += 1

        return {
            "total_pods": len(live),
            "by_status": dict(Counter(r.status for r in live)),
            "by_namespace": dict(Counter(r.namespace for r in live)),
            "created_last_hour": recent[CREATED],
            "deleted_last_hour": recent[DELETED] + recent[REPLACED],
            "restart_events": restart_events,
            "tombstones": sum(1 for r in self._records if r.is_deleted),
            "last_reconciled": self.last_reconciled.isoformat() if self.last_reconciled else None,
        }
