"""Runtime data types shared by monitors, ledger, recovery and pod reconciler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class Status(str, Enum):
    UNKNOWN = "unknown"
    UP = "up"
    DOWN = "down"


class Direction(str, Enum):
    UP_TO_DOWN = "up_to_down"
    DOWN_TO_UP = "down_to_up"


class RecoveryOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"
    RESTART_FAILED = "RESTART_FAILED"
    ERROR = "ERROR"
    MAX_ATTEMPTS_REACHED = "MAX_ATTEMPTS_REACHED"


@dataclass
class ProbeResult:
    """Result of a single health check."""

    target_id: str
    timestamp: datetime
    healthy: bool
    latency_ms: float | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "timestamp": self.timestamp.isoformat(),
            "healthy": self.healthy,
            "status": Status.UP.value if self.healthy else Status.DOWN.value,
            "latency_ms": round(self.latency_ms, 3) if self.latency_ms is not None else None,
            "error": self.error,
            "details": self.details,
        }


@dataclass(frozen=True)
class TransitionEvent:
    target_id: str
    direction: Direction
    timestamp: datetime
    error: str | None = None


@dataclass
class DowntimeRecord:
    """One downtime episode. Closing sets end_time; records are never removed."""

    id: str
    target_id: str
    start_time: datetime
    end_time: datetime | None = None
    duration: str | None = None
    duration_seconds: float | None = None
    cause: str | None = None
    alert_sent: bool = False

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "target_id": self.target_id,
            "start_time": self.start_time.isoformat(),
            "end_time": _iso(self.end_time),
            "duration": self.duration,
            "duration_seconds": self.duration_seconds,
            "cause": self.cause,
            "alert_sent": self.alert_sent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DowntimeRecord:
        return cls(
            id=str(data["id"]),
            target_id=str(data["target_id"]),
            start_time=_parse_ts(data["start_time"]),
            end_time=_parse_ts(data.get("end_time")),
            duration=data.get("duration"),
            duration_seconds=data.get("duration_seconds"),
            cause=data.get("cause"),
            alert_sent=bool(data.get("alert_sent", False)),
        )


@dataclass
class RecoveryAttempt:
    timestamp: datetime
    attempt_number: int
    status: RecoveryOutcome
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "attempt": self.attempt_number,
            "status": self.status.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecoveryAttempt:
        return cls(
            timestamp=_parse_ts(data["timestamp"]),
            attempt_number=int(data.get("attempt", 0)),
            status=RecoveryOutcome(data["status"]),
            message=str(data.get("message", "")),
        )


@dataclass
class RecoveryState:
    enabled: bool = False
    in_progress: bool = False
    attempts: int = 0
    max_attempts: int = 3

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "in_progress": self.in_progress,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
        }


@dataclass(frozen=True)
class Pod:
    """A pod as reported by the cluster probe."""

    name: str
    namespace: str
    status: str
    restarts: int = 0
    node: str | None = None
    ready: bool = False

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class PodRecord:
    name: str
    namespace: str
    deployment: str
    status: str
    first_seen: datetime
    last_seen: datetime
    restarts: int = 0
    node: str | None = None
    status_history: list[dict[str, Any]] = field(default_factory=list)
    is_deleted: bool = False
    deleted_at: datetime | None = None
    replaced_by: str | None = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def add_history(self, status: str, timestamp: datetime, event: str) -> None:
        self.status_history.append({"status": status, "timestamp": timestamp.isoformat(), "event": event})

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "deployment": self.deployment,
            "status": self.status,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "restarts": self.restarts,
            "node": self.node,
            "status_history": list(self.status_history),
            "is_deleted": self.is_deleted,
            "deleted_at": _iso(self.deleted_at),
            "replaced_by": self.replaced_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PodRecord:
        return cls(
            name=str(data["name"]),
            namespace=str(data["namespace"]),
            deployment=str(data.get("deployment") or data["name"]),
            status=str(data.get("status", "Unknown")),
            first_seen=_parse_ts(data["first_seen"]),
            last_seen=_parse_ts(data["last_seen"]),
            restarts=int(data.get("restarts") or 0),
            node=data.get("node"),
            status_history=list(data.get("status_history") or []),
            is_deleted=bool(data.get("is_deleted", False)),
            deleted_at=_parse_ts(data.get("deleted_at")),
            replaced_by=data.get("replaced_by"),
        )


@dataclass(frozen=True)
class LifecycleEvent:
    type: str
    namespace: str
    name: str
    deployment: str
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "key": self.key,
            "namespace": self.namespace,
            "name": self.name,
            "deployment": self.deployment,
            "timestamp": self.timestamp.isoformat(),
            "details": dict(self.details),
        }
