"""Down and recovery alerts with one-alert-per-episode deduplication."""

from __future__ import annotations

from typing import Any

import structlog

from ..config import AlertGroup, TargetConfig
from ..errors import NotificationFailed
from ..models import DowntimeRecord, utcnow
from ..notifications import Notifier
from .ledger import DowntimeLedger

logger = structlog.get_logger(__name__)


def _target_label(target: TargetConfig) -> str:
    return {"database": "Database", "url": "URL", "cluster": "Cluster"}.get(target.kind, "Target")


def _target_location(target: Any) -> str | None:
    return getattr(target, "url", None) or getattr(target, "dsn", None)


def build_down_message(target: TargetConfig, group: AlertGroup, cause: str | None) -> str:
    lines = [
        f"{_target_label(target)} is DOWN 🔴",
        f"Name: {target.name}",
    ]
    location = _target_location(target)
    if location and target.kind == "url":
        lines.append(f"URL: {location}")
    lines.append(f"Alert time: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}")
    if cause:
        lines.append(f"Error: {str(cause)[:500]}")
    lines.append(f"Alert group: {group.name or group.id}")
    lines.append("You will receive another alert when it is back online.")
    return "\n".join(lines)


def build_up_message(target: TargetConfig, group: AlertGroup, duration: str) -> str:
    lines = [
        f"{_target_label(target)} is back ONLINE 🟢",
        f"Name: {target.name}",
    ]
    location = _target_location(target)
    if location and target.kind == "url":
        lines.append(f"URL: {location}")
    lines.append(f"Recovery time: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}")
    lines.append(f"Total downtime: {duration}")
    lines.append(f"Alert group: {group.name or group.id}")
    return "\n".join(lines)


class AlertDispatcher:
    """Sends alerts for transitions through a Notifier.

    Alerting is optional: a missing, disabled or empty alert group makes every
    call return False. Delivery errors are logged and reported as False; they
    never reach the monitoring loop.
    """

    def __init__(
        self,
        notifier: Notifier,
        alert_groups: list[AlertGroup],
        ledger: DowntimeLedger | None = None,
        subject_prefix: str = "Uptime WatchDog",
    ):
        self.notifier = notifier
        self.ledger = ledger
        self.subject_prefix = subject_prefix
        self._groups = {g.id: g for g in alert_groups}
        # Targets whose down alert was already attempted in the current episode.
        self._down_alerted: set[str] = set()

    def resolve_group(self, group_id: str | None) -> AlertGroup | None:
        if not group_id:
            return None
        group = self._groups.get(group_id)
        if group is None or not group.enabled or not group.emails:
            return None
        return group

    async def on_down(
        self,
        target: TargetConfig,
        cause: str | None,
        record: DowntimeRecord | None = None,
    ) -> bool:
        group = self.resolve_group(target.alert_group_id)
        if group is None:
            logger.info("No alert group configured, skipping down alert", target_id=target.id)
            return False

        if record is not None:
            if record.alert_sent:
                logger.info("Down alert already sent for episode", target_id=target.id, record_id=record.id)
                return False
            if self.ledger is not None:
                self.ledger.mark_alert_sent(record.id)
            else:
                record.alert_sent = True
        elif target.id in self._down_alerted:
            logger.info("Down alert already sent for episode", target_id=target.id)
            return False
        self._down_alerted.add(target.id)

        subject = f"🚨 {self.subject_prefix}: {_target_label(target)} DOWN - {target.name}"
        return await self._deliver(group, subject, build_down_message(target, group, cause), target.id)

    async def on_up(
        self,
        target: TargetConfig,
        duration: str,
        record: DowntimeRecord | None = None,
    ) -> bool:
        group = self.resolve_group(target.alert_group_id)
        try:
            if group is None:
                logger.info("No alert group configured, skipping recovery alert", target_id=target.id)
                return False
            subject = f"✅ {self.subject_prefix}: {_target_label(target)} RESOLVED - {target.name}"
            return await self._deliver(group, subject, build_up_message(target, group, duration), target.id)
        finally:
            self._down_alerted.discard(target.id)

    async def send_to_group(self, group_id: str | None, subject: str, body: str, source: str = "") -> bool:
        """Send an ad-hoc alert to a group, with the same failure policy."""
        group = self.resolve_group(group_id)
        if group is None:
            logger.info("No alert group configured, skipping alert", source=source, subject=subject)
            return False
        return await self._deliver(group, f"{self.subject_prefix}: {subject}", body, source)

    async def _deliver(self, group: AlertGroup, subject: str, body: str, source: str) -> bool:
        try:
            sent = await self.notifier.send(list(group.emails), subject, body)
            if not sent:
                raise NotificationFailed(f"Notifier reported failure for group {group.id}")
        except Exception as e:
            logger.error("Failed to deliver alert", source=source, group_id=group.id, error=str(e))
            return False

        logger.info("Alert delivered", source=source, group_id=group.id, subject=subject)
        return True
