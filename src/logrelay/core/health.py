"""
Health checker implementation for monitoring relay dependencies.

Performs readiness checks for:
- Required settings present
- Checkpoint store writable
- Relay service running
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..config import get_settings
from .checkpoint import FileCheckpointStore
from .relay_service import RelayService

logger = structlog.get_logger(__name__)


@dataclass
class HealthCheck:
    """Individual health check result."""
    name: str
    status: str  # "healthy", "unhealthy"
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    last_check: float = field(default_factory=time.time)

    @classmethod
    def result(cls, name: str, healthy: bool, message: str, **details: Any) -> "HealthCheck":
        return cls(name=name, status="healthy" if healthy else "unhealthy", message=message, details=details)


@dataclass
class HealthStatus:
    """Overall health status."""
    is_healthy: bool
    checks: Dict[str, HealthCheck]
    failed_checks: List[str]
    timestamp: float


class HealthChecker:
    """
    Readiness checker for LogRelay.

    Monitors:
    - Settings (every required setting configured)
    - Checkpoint store (root directory writable)
    - Relay service (started, last run outcome)
    """

    def __init__(self, relay_service: Optional[RelayService] = None) -> None:
        self.relay_service = relay_service

        logger.info("Health Checker initialized")

    async def check_all(self) -> HealthStatus:
        """Run every check off the event loop and combine the results."""
        probes: Dict[str, Callable[[], HealthCheck]] = {
            "settings": self._check_settings,
            "checkpoint_store": self._check_checkpoint_store,
            "relay_service": self._check_relay_service,
        }
        outcomes = await asyncio.gather(
            *(asyncio.to_thread(probe) for probe in probes.values()),
            return_exceptions=True,
        )

        checks: Dict[str, HealthCheck] = {}
        for name, outcome in zip(probes, outcomes):
            if isinstance(outcome, HealthCheck):
                checks[name] = outcome
            else:
                logger.warning("Health check raised", check=name, error=str(outcome))
                checks[name] = HealthCheck.result(
                    name, False, f"Check failed: {outcome}", error_type=type(outcome).__name__
                )

        failed = [name for name, check in checks.items() if check.status != "healthy"]
        return HealthStatus(
            is_healthy=not failed,
            checks=checks,
            failed_checks=failed,
            timestamp=time.time(),
        )

    def _check_settings(self) -> HealthCheck:
        """Judge the settings the relay service runs with, not just the global ones."""
        settings = self.relay_service.settings_provider() if self.relay_service else get_settings()
        missing = settings.missing_settings()
        if missing:
            return HealthCheck.result("settings", False, "Missing settings: " + ", ".join(missing), missing=missing)
        return HealthCheck.result("settings", True, "Settings complete")

    def _check_checkpoint_store(self) -> HealthCheck:
        """Checkpoint store exists and, for the file store, its root accepts writes."""
        store = self.relay_service.checkpoint_store if self.relay_service else None

        if store is None:
            return HealthCheck.result("checkpoint_store", False, "Checkpoint store not initialized")

        if not isinstance(store, FileCheckpointStore):
            return HealthCheck.result("checkpoint_store", True, "Checkpoint store OK", type=type(store).__name__)

        if not store.is_writable():
            return HealthCheck.result(
                "checkpoint_store", False, "Checkpoint directory not writable", path=str(store.root_path)
            )
        return HealthCheck.result(
            "checkpoint_store", True, "Checkpoint store OK", path=str(store.path), exists=store.path.exists()
        )

    def _check_relay_service(self) -> HealthCheck:
        if not self.relay_service:
            return HealthCheck.result("relay_service", False, "Relay service not available")

        healthy = self.relay_service.is_healthy()
        return HealthCheck.result(
            "relay_service",
            healthy,
            "Relay service is running" if healthy else "Relay service is not running",
            **self.relay_service.status(),
        )


# Global health checker instance
_health_checker: Optional[HealthChecker] = None


def get_health_checker(relay_service: Optional[RelayService] = None) -> HealthChecker:
    """Get or create global health checker instance."""
    global _health_checker

    if _health_checker is None:
        _health_checker = HealthChecker(relay_service)

    return _health_checker
