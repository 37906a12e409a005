"""Configuration management for the watchdog."""

import os
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from pydantic import BaseModel, Field, model_validator


class TargetConfig(BaseModel):
    """Fields shared by every monitored target."""
    id: str = Field(description="Stable target identifier")
    name: str = Field(default="", description="Display name used in alerts")
    interval_seconds: int = Field(default=60, ge=1, description="Poll interval in seconds")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Hard probe timeout in seconds")
    alert_group_id: Optional[str] = Field(default=None, description="Alert group notified on transitions")
    enabled: bool = Field(default=True, description="Whether the target is monitored")

    @model_validator(mode="after")
    def _timeout_below_interval(self):
        if self.timeout_seconds >= self.interval_seconds:
            raise ValueError(
                f"{self.id}: timeout_seconds ({self.timeout_seconds}) must be shorter than "
                f"interval_seconds ({self.interval_seconds})"
            )
        if not self.name:
            self.name = self.id
        return self

    @property
    def kind(self) -> str:
        return "target"


class DatabaseTarget(TargetConfig):
    """Relational database checked with a liveness query."""
    id: str = Field(default="database", description="Stable target identifier")
    driver: str = Field(default="oracledb", description="DB-API 2.0 module used to connect")
    dsn: Optional[str] = Field(default=None, description="Connection string passed to driver.connect")
    connect_kwargs: Dict[str, Any] = Field(default_factory=dict, description="Extra keyword arguments for connect")
    liveness_query: str = Field(default="SELECT 1 FROM DUAL", description="Query proving the database answers")

    @property
    def kind(self) -> str:
        return "database"


class UrlTarget(TargetConfig):
    """HTTP endpoint checked for an expected status code."""
    url: str = Field(description="URL to request")
    method: str = Field(default="GET", description="HTTP method")
    expected_status: int = Field(default=200, description="Status code that counts as healthy")
    timeout_seconds: float = Field(default=5.0, gt=0, description="Hard probe timeout in seconds")

    @property
    def kind(self) -> str:
        return "url"


class ClusterTarget(TargetConfig):
    """Kubernetes cluster whose pods are reconciled every poll."""
    id: str = Field(default="cluster", description="Stable target identifier")
    kubeconfig: Optional[str] = Field(default=None, description="Path to kubeconfig file")
    context: Optional[str] = Field(default=None, description="kubectl context to use")
    kubectl_path: str = Field(default="kubectl", description="kubectl executable")
    namespaces: list[str] = Field(default_factory=list, description="Namespaces to watch (empty = all)")
    interval_seconds: int = Field(default=15, ge=1, description="Poll interval in seconds")
    grace_seconds: float = Field(default=60.0, ge=0, description="Absence before a pod is marked deleted")
    retention_hours: float = Field(default=24.0, gt=0, description="How long tombstones are kept")
    excluded_statuses: list[str] = Field(
        default_factory=lambda: ["Succeeded", "Completed"],
        description="Pod statuses ignored by the reconciler",
    )
    mass_disappearance_threshold: int = Field(
        default=3, ge=1, description="Deleted pods in one namespace and pass that trigger an alert"
    )
    workload_alerts: bool = Field(default=True, description="Alert on pod restarts and failure statuses")
    failure_statuses: list[str] = Field(
        default_factory=lambda: [
            "CrashLoopBackOff",
            "Error",
            "OOMKilled",
            "ImagePullBackOff",
            "ErrImagePull",
            "CreateContainerConfigError",
            "Failed",
        ],
        description="Pod statuses reported as workload failures",
    )

    @property
    def kind(self) -> str:
        return "cluster"


class AlertGroup(BaseModel):
    """Named set of alert recipients."""
    id: str
    name: str = ""
    emails: list[str] = Field(default_factory=list, description="Recipient addresses or chat ids")
    enabled: bool = True


class NotifierConfig(BaseModel):
    """Alert transport configuration."""
    telegram_bot_token: Optional[str] = Field(default=None, description="Telegram bot token")
    subject_prefix: str = Field(default="Uptime WatchDog", description="Prefix for alert subjects")


class ActionConfig(BaseModel):
    """External command registered under a stable name."""
    command: list[str] | str = Field(description="Command (argv list, or a string when shell is true)")
    cwd: Optional[str] = Field(default=None, description="Working directory")
    timeout_seconds: float = Field(default=300.0, gt=0, description="Execution timeout")
    shell: bool = Field(default=False, description="Run through the shell")
    env: Dict[str, str] = Field(default_factory=dict, description="Extra environment variables")


class RecoveryConfig(BaseModel):
    """Database auto-recovery settings."""
    enabled: bool = Field(default=False, description="Initial enablement when no saved state exists")
    max_attempts: int = Field(default=3, ge=1, description="Attempts before manual reset is required")
    trigger_delay_seconds: float = Field(default=10.0, ge=0, description="Delay after DOWN before recovering")
    quiescence_seconds: float = Field(default=15.0, ge=0, description="Wait after stopping the workload")
    restart_pause_seconds: float = Field(default=10.0, ge=0, description="Wait between database stop and start")
    settle_seconds: float = Field(default=20.0, ge=0, description="Wait after restart before verifying")
    stop_workload_action: str = Field(default="Stop Pods")
    start_workload_action: str = Field(default="Start Pods")
    stop_database_action: str = Field(default="Stop Database")
    start_database_action: str = Field(default="Start Database")
    reset_attempts_on_partial_success: bool = Field(default=True)
    log_size: int = Field(default=50, ge=1, description="Entries kept in memory for display")


class ApiConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)


class WatchdogConfig(BaseModel):
    """Main configuration for the watchdog."""

    log_level: str = Field(default="INFO", description="Logging level")
    data_directory: str = Field(default="data", description="Directory for persisted state")
    recent_checks_limit: int = Field(default=100, ge=1, description="Probe results kept per target")

    database: Optional[DatabaseTarget] = Field(default=None, description="Monitored database")
    urls: list[UrlTarget] = Field(default_factory=list, description="Monitored URLs")
    cluster: Optional[ClusterTarget] = Field(default=None, description="Monitored cluster")

    alert_groups: list[AlertGroup] = Field(default_factory=list)
    notifier: NotifierConfig = Field(default_factory=NotifierConfig)
    actions: Dict[str, ActionConfig] = Field(default_factory=dict, description="Actions keyed by exact name")
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @model_validator(mode="after")
    def _unique_target_ids(self):
        ids = [t.id for t in self.targets()]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate target ids: {', '.join(duplicates)}")
        return self

    def targets(self) -> list[TargetConfig]:
        found: list[TargetConfig] = []
        if self.database is not None:
            found.append(self.database)
        found.extend(self.urls)
        if self.cluster is not None:
            found.append(self.cluster)
        return found

    @property
    def data_path(self) -> Path:
        return Path(self.data_directory)


def load_config(config_path: Optional[str] = None) -> WatchdogConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("WATCHDOG_CONFIG", "config/watchdog.yaml")

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

    env_overrides = {
        "log_level": os.getenv("LOG_LEVEL"),
        "data_directory": os.getenv("WATCHDOG_DATA_DIR"),
    }
    for key, value in env_overrides.items():
        if value is not None:
            config_data[key] = value

    token = os.getenv("TELEGRAM_BOT_TOKEN")
    if token:
        config_data.setdefault("notifier", {})["telegram_bot_token"] = token

    dsn = os.getenv("DB_DSN")
    if dsn and isinstance(config_data.get("database"), dict):
        config_data["database"]["dsn"] = dsn

    port = os.getenv("WATCHDOG_API_PORT")
    if port:
        config_data.setdefault("api", {})["port"] = int(port)

    return WatchdogConfig(**config_data)
