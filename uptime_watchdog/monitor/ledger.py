"""Downtime ledger: durable history of downtime episodes."""

import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from ..errors import ConflictError, NotFoundError
from ..models import DowntimeRecord, utcnow
from ..storage import JsonFileStore

logger = structlog.get_logger(__name__)


def format_duration(seconds: float) -> str:
    """Format a duration as whole minutes and seconds, e.g. '3m 7s'."""
    seconds = max(0.0, float(seconds))
    minutes = int(seconds // 60)
    return f"{minutes}m {int(seconds % 60)}s"


class DowntimeLedger:
    """Tracks downtime records per target.

    Records are opened on a DOWN transition and closed on the matching UP
    transition. Closing sets end_time; records are never removed. Every
    mutation is written to disk before the call returns.
    """

    def __init__(self, path: Path | str):
        self.store = JsonFileStore(path)
        self._records: List[DowntimeRecord] = []
        self._load()

    def _load(self):
        raw = self.store.load(default={"records": []}) or {}
        for item in raw.get("records", []):
            try:
                self._records.append(DowntimeRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Skipping unreadable downtime record", error=str(e))

        open_count = sum(1 for r in self._records if r.is_open)
        logger.info("Loaded downtime history", records=len(self._records), open_records=open_count)

    def _save(self):
        self.store.save({"records": [r.to_dict() for r in self._records]})

    def open_record(self, target_id: str) -> Optional[DowntimeRecord]:
        """Return the open record for a target, if any."""
        for record in reversed(self._records):
            if record.target_id == target_id and record.is_open:
                return record
        return None

    def get(self, record_id: str) -> Optional[DowntimeRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def on_down(self, target_id: str, timestamp: datetime, cause: Optional[str] = None) -> str:
        """Open a downtime record and return its id."""
        existing = self.open_record(target_id)
        if existing is not None:
            raise ConflictError(target_id, existing.id)

        record_id = f"{target_id}_{timestamp.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"
        record = DowntimeRecord(id=record_id, target_id=target_id, start_time=timestamp, cause=cause)
        self._records.append(record)
        try:
            self._save()
        except OSError:
            self._records.remove(record)
            raise

        logger.info("Opened downtime record", record_id=record_id, target_id=target_id, cause=cause)
        return record_id

    def on_up(self, target_id: str, timestamp: datetime) -> str:
        """Close the open record for a target and return the formatted duration."""
        record = self.open_record(target_id)
        if record is None:
            raise NotFoundError(target_id)

        elapsed = (timestamp - record.start_time).total_seconds()
        record.end_time = timestamp
        record.duration_seconds = elapsed
        record.duration = format_duration(elapsed)
        try:
            self._save()
        except OSError:
            record.end_time = None
            record.duration_seconds = None
            record.duration = None
            raise

        logger.info("Closed downtime record",
                   record_id=record.id,
                   target_id=target_id,
                   duration=record.duration)
        return record.duration

    def mark_alert_sent(self, record_id: str) -> bool:
        """Flag a record as alerted. Returns False if it was already flagged."""
        record = self.get(record_id)
        if record is None:
            raise NotFoundError(record_id)
        if record.alert_sent:
            return False
        record.alert_sent = True
        try:
            self._save()
        except OSError as e:
            # the in-memory flag still guards this episode
            logger.error("Failed to persist alert flag", record_id=record_id, error=str(e))
        return True

    def history(
        self,
        target_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[DowntimeRecord]:
        """Records newest first, optionally filtered by target."""
        records = [r for r in self._records if target_id is None or r.target_id == target_id]
        records.sort(key=lambda r: r.start_time, reverse=True)
        return records[:limit] if limit is not None else records

    def open_duration(self, target_id: str, now: Optional[datetime] = None) -> Optional[str]:
        record = self.open_record(target_id)
        if record is None:
            return None
        now = now or utcnow()
        return format_duration((now - record.start_time).total_seconds())

    def get_statistics(self, days_back: int = 30) -> Dict[str, Any]:
        """Outage counts and downtime totals per target over a period."""
        cutoff = utcnow() - timedelta(days=days_back)
        recent = [r for r in self._records if r.start_time >= cutoff]

        per_target: Dict[str, Dict[str, Any]] = {}
        for record in recent:
            stats = per_target.setdefault(record.target_id, {
                "outages": 0,
                "open": 0,
                "total_downtime_seconds": 0.0,
            })
            stats["outages"] += 1
            if record.is_open:
                stats["open"] += 1
            else:
                stats["total_downtime_seconds"] += record.duration_seconds or 0.0

        return {
            "period_days": days_back,
            "total_outages": len(recent),
            "open_outages": sum(1 for r in recent if r.is_open),
            "targets": per_target,
        }
