"""Status transition detection."""

from __future__ import annotations

from ..models import Direction, ProbeResult, Status, TransitionEvent


class StatusTransitionDetector:
    """Tracks the last known status per target and reports changes.

    The first observation for a target only establishes the baseline.
    Probes for one target must arrive in timestamp order; nothing is
    reordered here.
    """

    def __init__(self) -> None:
        self._statuses: dict[str, Status] = {}
        self._last_errors: dict[str, str | None] = {}

    def observe(self, target_id: str, result: ProbeResult) -> TransitionEvent | None:
        new_status = Status.UP if result.healthy else Status.DOWN
        last_status = self._statuses.get(target_id, Status.UNKNOWN)

        self._statuses[target_id] = new_status
        self._last_errors[target_id] = result.error

        if last_status == Status.UNKNOWN or last_status == new_status:
            return None

        direction = Direction.UP_TO_DOWN if new_status == Status.DOWN else Direction.DOWN_TO_UP
        return TransitionEvent(
            target_id=target_id,
            direction=direction,
            timestamp=result.timestamp,
            error=result.error,
        )

    def status(self, target_id: str) -> Status:
        return self._statuses.get(target_id, Status.UNKNOWN)

    def last_error(self, target_id: str) -> str | None:
        return self._last_errors.get(target_id)

    def snapshot(self) -> dict[str, Status]:
        return dict(self._statuses)

    def forget(self, target_id: str) -> None:
        self._statuses.pop(target_id, None)
        self._last_errors.pop(target_id, None)
