"""Main entry point for the uptime watchdog."""

import logging
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from uptime_watchdog.config import load_config
from uptime_watchdog.errors import ConfigurationError
from uptime_watchdog.scheduler import WatchdogCoordinator


def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    level_no = getattr(logging, level.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)


def create_app(coordinator: Optional[WatchdogCoordinator] = None) -> FastAPI:
    """Build the status API around a coordinator.

    Without a coordinator one is created from the configuration on startup.
    """
    app = FastAPI(title="Uptime WatchDog", version="0.1.0")
    app.state.coordinator = coordinator

    def _coordinator() -> Optional[WatchdogCoordinator]:
        return app.state.coordinator

    def _not_ready() -> JSONResponse:
        return JSONResponse(content={"error": "System not initialized"}, status_code=503)

    @app.on_event("startup")
    async def startup_event():
        """Start monitoring on startup."""
        if app.state.coordinator is None:
            app.state.coordinator = WatchdogCoordinator(load_config())
        await app.state.coordinator.start()
        logger.info("Uptime watchdog started")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown."""
        if app.state.coordinator is not None:
            await app.state.coordinator.stop()
        logger.info("Uptime watchdog stopped")

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "healthy", "service": "uptime-watchdog"}

    @app.get("/status")
    async def get_status():
        """Get system status."""
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        return coordinator.get_system_status()

    @app.get("/targets/{target_id}")
    async def get_target(target_id: str):
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        monitor = coordinator.monitors.get(target_id)
        if monitor is None:
            return JSONResponse(content={"error": "Target not found"}, status_code=404)
        return monitor.get_status()

    @app.post("/targets/{target_id}/check")
    async def check_target(target_id: str):
        """Run one check outside the schedule."""
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        try:
            result = await coordinator.run_check_now(target_id)
        except ConfigurationError as e:
            return JSONResponse(content={"error": str(e)}, status_code=404)
        if result is None:
            return JSONResponse(content={"error": "Check already in progress"}, status_code=409)
        return result.to_dict()

    @app.get("/downtime")
    async def get_downtime(target_id: Optional[str] = None, limit: int = 50):
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        return {
            "records": [r.to_dict() for r in coordinator.ledger.history(target_id, limit)],
            "statistics": coordinator.ledger.get_statistics(),
        }

    @app.get("/recovery")
    async def get_recovery():
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        if coordinator.recovery is None:
            return JSONResponse(content={"error": "Database recovery not configured"}, status_code=404)
        return coordinator.recovery.get_status()

    @app.post("/recovery/enable")
    async def enable_recovery():
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        if coordinator.recovery is None:
            return JSONResponse(content={"error": "Database recovery not configured"}, status_code=404)
        coordinator.recovery.set_enabled(True)
        return coordinator.recovery.get_status()

    @app.post("/recovery/disable")
    async def disable_recovery():
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        if coordinator.recovery is None:
            return JSONResponse(content={"error": "Database recovery not configured"}, status_code=404)
        coordinator.recovery.set_enabled(False)
        return coordinator.recovery.get_status()

    @app.post("/recovery/reset")
    async def reset_recovery():
        """Clear the attempt counter after manual intervention."""
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        if coordinator.recovery is None:
            return JSONResponse(content={"error": "Database recovery not configured"}, status_code=404)
        coordinator.recovery.reset()
        return coordinator.recovery.get_status()

    @app.post("/recovery/run")
    async def run_recovery():
        """Start a recovery sequence without waiting for its outcome."""
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        if coordinator.recovery is None:
            return JSONResponse(content={"error": "Database recovery not configured"}, status_code=404)
        task = coordinator.recovery.trigger(reason="manual run", delay=0)
        if task is None:
            return JSONResponse(
                content={"message": "Recovery not started", "state": coordinator.recovery.get_status()},
                status_code=409,
            )
        return {"message": "Recovery started", "status": "running"}

    @app.get("/pods")
    async def get_pods():
        """Current pods, one per deployment."""
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        if coordinator.pod_monitor is None:
            return JSONResponse(content={"error": "Cluster monitoring not configured"}, status_code=404)
        return {"pods": coordinator.pod_monitor.reconciler.current_view()}

    @app.get("/pods/stats")
    async def get_pod_stats():
        coordinator = _coordinator()
        if coordinator is None:
            return _not_ready()
        if coordinator.pod_monitor is None:
            return JSONResponse(content={"error": "Cluster monitoring not configured"}, status_code=404)
        return coordinator.pod_monitor.get_status()

    return app


def main():
    """Start the web server with the monitors running."""
    config = load_config()
    configure_logging(config.log_level)
    logger.info("Starting uptime watchdog", host=config.api.host, port=config.api.port)

    app = create_app(WatchdogCoordinator(config))
    uvicorn.run(
        app,
        host=config.api.host,
        port=config.api.port,
        reload=False,
        log_level=config.log_level.lower()
    )


if __name__ == "__main__":
    main()
