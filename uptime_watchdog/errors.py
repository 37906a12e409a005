"""Error taxonomy for the watchdog engine."""


class WatchdogError(Exception):
    """Base class for all watchdog errors."""


class ConfigurationError(WatchdogError):
    """A target, alert group or action is not configured."""


class ProbeError(WatchdogError):
    """A probe could not be executed against its target."""


class LedgerError(WatchdogError):
    """Downtime ledger invariant violation."""


class ConflictError(LedgerError):
    """An open downtime record already exists for the target."""

    def __init__(self, target_id: str, record_id: str):
        super().__init__(f"Open downtime record {record_id} already exists for {target_id}")
        self.target_id = target_id
        self.record_id = record_id


class NotFoundError(LedgerError):
    """No open downtime record exists for the target."""

    def __init__(self, target_id: str):
        super().__init__(f"No open downtime record for {target_id}")
        self.target_id = target_id


class ActionError(WatchdogError):
    """Base class for external action failures."""

    def __init__(self, action_name: str, message: str):
        super().__init__(message)
        self.action_name = action_name


class ActionNotFound(ActionError):
    """No action is registered under the requested name."""

    def __init__(self, action_name: str):
        super().__init__(
            action_name,
            f'Action "{action_name}" not found. Please configure an action named exactly "{action_name}".',
        )


class ActionFailed(ActionError):
    """The action exists but its execution failed."""

    def __init__(self, action_name: str, error: str | None):
        super().__init__(action_name, f'Action "{action_name}" failed: {error or "unknown error"}')
        self.error = error


class NotificationFailed(WatchdogError):
    """An alert could not be delivered."""
