"""Coordinator wiring probes, monitors, recovery and the pod reconciler."""

import asyncio
from typing import Any, Dict, List, Optional

import structlog

from ..config import ClusterTarget, DatabaseTarget, TargetConfig, UrlTarget, WatchdogConfig
from ..errors import ConfigurationError
from ..models import ProbeResult, Status
from ..monitor import AlertDispatcher, DowntimeLedger, StatusTransitionDetector, TargetMonitor
from ..notifications import Notifier, TelegramNotifier
from ..pods import PodLifecycleReconciler, PodMonitor
from ..probes import ClusterProbe, DatabaseProbe, HttpProbe, Probe, driver_connect_factory
from ..recovery import ActionRunner, DatabaseAutoRecovery
from .job_scheduler import JobScheduler


logger = structlog.get_logger(__name__)

POD_JOB_ID = "pod_reconcile"


def check_job_id(target_id: str) -> str:
    return f"check_{target_id}"


class WatchdogCoordinator:
    """Owns every service object and schedules one job per monitor.

    Collaborators can be injected for tests; anything left out is built
    from the configuration.
    """

    def __init__(
        self,
        config: WatchdogConfig,
        notifier: Optional[Notifier] = None,
        http_probe: Optional[Probe] = None,
        database_probe: Optional[Probe] = None,
        cluster_probe: Optional[ClusterProbe] = None,
        action_runner: Optional[ActionRunner] = None,
        sleep=asyncio.sleep,
    ):
        self.config = config
        data = config.data_path

        self.scheduler = JobScheduler()
        self.notifier = notifier or TelegramNotifier(config.notifier.telegram_bot_token)
        self.detector = StatusTransitionDetector()
        self.ledger = DowntimeLedger(data / "downtime_history.json")
        self.dispatcher = AlertDispatcher(
            self.notifier,
            config.alert_groups,
            ledger=self.ledger,
            subject_prefix=config.notifier.subject_prefix,
        )
        self.http_probe = http_probe or HttpProbe()
        self._probes: List[Probe] = [self.http_probe]

        self.monitors: Dict[str, TargetMonitor] = {}
        self.url_targets: Dict[str, UrlTarget] = {}
        self.recovery: Optional[DatabaseAutoRecovery] = None
        self.pod_monitor: Optional[PodMonitor] = None

        if config.database is not None and config.database.enabled:
            self._setup_database(config.database, database_probe, action_runner, sleep)

        for url in config.urls:
            self.url_targets[url.id] = url
            if url.enabled:
                self._add_monitor(url, self.http_probe)

        if config.cluster is not None and config.cluster.enabled:
            self._setup_cluster(config.cluster, cluster_probe)

        logger.info("Watchdog coordinator initialized",
                   monitors=sorted(self.monitors),
                   recovery=self.recovery is not None,
                   pods=self.pod_monitor is not None)

    def _setup_database(self, target: DatabaseTarget, probe, action_runner, sleep) -> None:
        if probe is None:
            try:
                probe = DatabaseProbe(driver_connect_factory(target))
            except ConfigurationError as e:
                logger.warning("Database not configured, skipping database monitoring", error=str(e))
                return
            self._probes.append(probe)

        monitor = self._add_monitor(target, probe)
        data = self.config.data_path
        self.recovery = DatabaseAutoRecovery(
            self.config.recovery,
            action_runner or ActionRunner(self.config.actions),
            monitor.verify,
            state_path=data / "recovery_state.json",
            log_path=data / "recovery_log.jsonl",
            sleep=sleep,
        )
        monitor.add_down_listener(self.recovery.on_database_down)

    def _setup_cluster(self, target: ClusterTarget, probe: Optional[ClusterProbe]) -> None:
        reconciler = PodLifecycleReconciler(
            self.config.data_path / "pod_history.json",
            grace_seconds=target.grace_seconds,
            retention_hours=target.retention_hours,
        )
        self.pod_monitor = PodMonitor(target, probe or ClusterProbe(), reconciler, self.dispatcher)

    def _add_monitor(self, target: TargetConfig, probe: Probe) -> TargetMonitor:
        monitor = TargetMonitor(
            target,
            probe,
            self.detector,
            self.ledger,
            self.dispatcher,
            recent_checks_limit=self.config.recent_checks_limit,
        )
        self.monitors[target.id] = monitor
        return monitor

    def _schedule_monitor(self, monitor: TargetMonitor) -> None:
        self.scheduler.add_interval_job(
            job_id=check_job_id(monitor.target_id),
            func=monitor.check,
            seconds=monitor.target.interval_seconds,
            description=f"{monitor.target.kind} check for {monitor.target.name}",
        )

    async def start(self):
        """Start the scheduler and register one job per monitor."""
        await self.scheduler.start()
        for monitor in self.monitors.values():
            self._schedule_monitor(monitor)
        if self.pod_monitor is not None:
            self.scheduler.add_interval_job(
                job_id=POD_JOB_ID,
                func=self.pod_monitor.poll,
                seconds=self.pod_monitor.target.interval_seconds,
                description=f"Pod reconciliation for {self.pod_monitor.target.name}",
            )
        logger.info("Watchdog coordinator started", jobs=len(self.scheduler.jobs))

    async def stop(self):
        """Stop scheduling and release probe resources."""
        await self.scheduler.stop()
        for probe in self._probes:
            try:
                await probe.close()
            except Exception as e:
                logger.warning("Failed to close probe", probe=type(probe).__name__, error=str(e))
        logger.info("Watchdog coordinator stopped")

    async def run_check_now(self, target_id: str) -> Optional[ProbeResult]:
        """Check one target outside its schedule."""
        monitor = self.monitors.get(target_id)
        if monitor is None:
            raise ConfigurationError(f"Target {target_id!r} is not monitored")
        logger.info("Running manual check", target_id=target_id)
        return await monitor.check()

    def add_url_target(self, target: UrlTarget) -> TargetMonitor:
        """Start monitoring a URL at runtime."""
        taken = set(self.monitors) | set(self.url_targets)
        if self.pod_monitor is not None:
            taken.add(self.pod_monitor.target_id)
        if target.id in taken:
            raise ConfigurationError(f"Target id {target.id!r} already exists")

        self.url_targets[target.id] = target
        monitor = self._add_monitor(target, self.http_probe)
        if self.scheduler.running:
            self._schedule_monitor(monitor)
        logger.info("URL target added", target_id=target.id, url=target.url)
        return monitor

    def remove_target(self, target_id: str) -> bool:
        """Stop monitoring a target and forget its in-memory status."""
        monitor = self.monitors.pop(target_id, None)
        self.url_targets.pop(target_id, None)
        if monitor is None:
            logger.warning("Target not found", target_id=target_id)
            return False

        if check_job_id(target_id) in self.scheduler.jobs:
            self.scheduler.remove_job(check_job_id(target_id))
        self.detector.forget(target_id)
        logger.info("Target removed", target_id=target_id)
        return True

    def get_url_statistics(self) -> Dict[str, int]:
        urls = list(self.url_targets.values())
        statuses = [self.detector.status(u.id) for u in urls if u.id in self.monitors]
        return {
            "total_urls": len(urls),
            "enabled_urls": sum(1 for u in urls if u.enabled),
            "monitored_urls": sum(1 for u in urls if u.id in self.monitors),
            "up_urls": sum(1 for s in statuses if s == Status.UP),
            "down_urls": sum(1 for s in statuses if s == Status.DOWN),
        }

    def get_system_status(self) -> Dict[str, Any]:
        """Get comprehensive system status."""
        return {
            "scheduler": self.scheduler.get_scheduler_status(),
            "jobs": self.scheduler.list_jobs(),
            "targets": {tid: m.get_status() for tid, m in self.monitors.items()},
            "url_statistics": self.get_url_statistics(),
            "recovery": self.recovery.get_status() if self.recovery else None,
            "pods": self.pod_monitor.get_status() if self.pod_monitor else None,
        }
