"""
Background service owning the relay's process-lifetime resources.

Manages the shared HTTP session and token cache, serializes runs, and
optionally triggers runs on a fixed interval.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

import aiohttp
import structlog

from ..config import PipelineConfig, Settings, get_settings
from .auth import ClientCredentials, OAuthTokenClient, TokenCache
from .checkpoint import CheckpointStore, get_checkpoint_store
from .dispatcher import WebhookDispatcher
from .exceptions import LogRelayException
from .metrics import MetricsCollector
from .pipeline import LogRelayPipeline, RunResult
from .source import LogSourceClient

logger = structlog.get_logger(__name__)


class RelayService:
    """
    Runs the log relay pipeline on demand or on a schedule.

    Features:
    - One aiohttp session with a per-call timeout
    - One token cache shared by every run
    - At most one run at a time within this process
    """

    def __init__(
        self,
        settings_provider: Callable[[], Settings] = get_settings,
        checkpoint_store: Optional[CheckpointStore] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.settings_provider = settings_provider
        self.checkpoint_store = checkpoint_store
        self.metrics = metrics
        self.session: Optional[aiohttp.ClientSession] = None
        self.token_cache: Optional[TokenCache] = None
        self.last_result: Optional[RunResult] = None
        self.last_error: Optional[str] = None
        self._run_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False

        logger.info("Relay Service initialized")

    async def start(self) -> None:
        """Start the relay service."""
        if self._running:
            return

        settings = self.settings_provider()
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=settings.http_timeout_seconds)
        )
        self.token_cache = TokenCache(
            OAuthTokenClient(self.session).acquire,
            max_entries=settings.token_cache.max_entries,
            ttl_seconds=settings.token_cache.ttl_seconds,
            metrics=self.metrics,
        )
        if self.checkpoint_store is None:
            self.checkpoint_store = get_checkpoint_store(settings.checkpoint)

        self._running = True
        if settings.schedule_interval_seconds > 0:
            self._task = asyncio.create_task(self._run_schedule_loop(settings.schedule_interval_seconds))

        logger.info(
            "Relay Service started",
            schedule_interval_seconds=settings.schedule_interval_seconds or None,
        )

    async def stop(self) -> None:
        """Stop the relay service."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self.session:
            await self.session.close()
            self.session = None

        logger.info("Relay Service stopped")

    def build_pipeline(self, config: PipelineConfig) -> LogRelayPipeline:
        """Assemble a pipeline for one run from the shared resources."""
        if not self.session or not self.token_cache or not self.checkpoint_store:
            raise RuntimeError("Relay Service not started")

        source_credentials = ClientCredentials(
            token_url=config.source_token_url,
            audience=config.source_audience,
            client_id=config.source_client_id,
            client_secret=config.source_client_secret,
        )
        return LogRelayPipeline(
            config=config,
            source=LogSourceClient(self.session, config.source_base_url, source_credentials, self.token_cache),
            dispatcher=WebhookDispatcher(self.session, metrics=self.metrics),
            checkpoint_store=self.checkpoint_store,
            token_cache=self.token_cache,
            metrics=self.metrics,
        )

    async def trigger_run(self) -> RunResult:
        """
        Validate settings and execute one run.

        Raises:
            ConfigurationError: before any component runs, if settings are missing
            LogRelayException: stage or checkpoint failure of the run
        """
        try:
            config = PipelineConfig.from_settings(self.settings_provider())
            async with self._run_lock:
                result = await self.build_pipeline(config).run()
        except LogRelayException as e:
            self.last_error = f"{e.error_code}: {e}"
            raise

        self.last_result = result
        self.last_error = None
        return result

    async def _run_schedule_loop(self, interval_seconds: int) -> None:
        """Main schedule loop."""
        while self._running:
            try:
                result = await self.trigger_run()
                logger.info(
                    "Scheduled run completed",
                    records_fetched=result.records_fetched,
                    events_delivered=result.events_delivered,
                )
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Scheduled run failed", error=str(e), error_type=type(e).__name__)

            await asyncio.sleep(interval_seconds)

    def is_healthy(self) -> bool:
        """Check if the relay service is running."""
        return self._running and self.session is not None

    def status(self) -> Dict[str, Any]:
        """Summary of the last run for readiness details."""
        return {
            "running": self._running,
            "run_in_progress": self._run_lock.locked(),
            "last_cursor": self.last_result.cursor if self.last_result else None,
            "last_error": self.last_error,
        }


# Global service instance
_relay_service: Optional[RelayService] = None


def get_relay_service(metrics: Optional[MetricsCollector] = None) -> RelayService:
    """Get or create global relay service instance."""
    global _relay_service

    if _relay_service is None:
        _relay_service = RelayService(metrics=metrics)

    return _relay_service
