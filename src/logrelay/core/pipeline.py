"""
Checkpointed extract-filter-deliver pipeline.

One run:
1. Load checkpoint
2. Fetch pages after the cursor until the source returns an empty page
3. Filter and project records
4. Resolve the webhook bearer token (only when webhook auth is configured)
5. Deliver payloads to the webhook
6. Commit the new cursor, or roll back to the pre-run cursor on any failure
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol

import structlog

from ..config import PipelineConfig
from ..models.log_record import Checkpoint, DeliveryPayload, LogRecord
from .auth import ClientCredentials, TokenCache
from .checkpoint import CheckpointStore
from .exceptions import CheckpointStoreError
from .filtering import filter_records
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)


class RunState(str, Enum):
    """Pipeline run states."""

    IDLE = "idle"
    LOADING_CHECKPOINT = "loading_checkpoint"
    FETCHING = "fetching"
    FILTERING = "filtering"
    RESOLVING_AUTH = "resolving_auth"
    DELIVERING = "delivering"
    COMMITTING = "committing"
    ROLLING_BACK = "rolling_back"
    DONE = "done"
    FAILED = "failed"


class LogSource(Protocol):
    async def fetch_page(self, cursor: Optional[str], page_size: int) -> List[LogRecord]: ...


class Dispatcher(Protocol):
    async def deliver(
        self,
        payloads: List[DeliveryPayload],
        url: str,
        headers: Optional[Dict[str, str]] = None,
        concurrency: int = 5,
    ) -> int: ...


@dataclass
class RunContext:
    """Transient state of one run."""
    cursor: Optional[str]
    records: List[LogRecord] = field(default_factory=list)
    auth_headers: Optional[Dict[str, str]] = None
    pages_fetched: int = 0


@dataclass
class RunResult:
    """Outcome of a committed run."""
    start_cursor: Optional[str]
    cursor: Optional[str]
    records_fetched: int
    events_delivered: int
    pages_fetched: int
    duration_seconds: float


class LogRelayPipeline:
    """
    Runs the pipeline once per call to run().

    Delivery is at-least-once: a failed run writes back the pre-run cursor
    so the next run repeats the same window, including payloads that were
    already delivered before the failure.
    """

    def __init__(
        self,
        config: PipelineConfig,
        source: LogSource,
        dispatcher: Dispatcher,
        checkpoint_store: CheckpointStore,
        token_cache: Optional[TokenCache] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        self.source = source
        self.dispatcher = dispatcher
        self.checkpoint_store = checkpoint_store
        self.token_cache = token_cache
        self.metrics = metrics
        self.state = RunState.IDLE

    def _transition(self, state: RunState) -> None:
        logger.debug("Pipeline state", state=state.value, previous=self.state.value)
        self.state = state

    async def run(self) -> RunResult:
        """
        Execute one run.

        Raises:
            CheckpointStoreError: checkpoint could not be read, or not written
                after the run (committed or rolled back)
            AuthAcquisitionError, SourceFetchError, DeliveryError: the stage
                failure, raised after the checkpoint was rolled back
        """
        start = time.time()

        self._transition(RunState.LOADING_CHECKPOINT)
        try:
            checkpoint = await self.checkpoint_store.load()
        except CheckpointStoreError:
            self._finish("checkpoint_error", start)
            raise

        start_cursor = checkpoint.cursor if checkpoint else None
        context = RunContext(cursor=start_cursor)
        logger.info("Starting run", cursor=start_cursor or "start")

        try:
            await self._fetch_all(context)

            self._transition(RunState.FILTERING)
            payloads = filter_records(
                context.records,
                type_allow_list=self.config.type_allow_list,
                endpoint_allow_list=self.config.endpoint_allow_list,
            )
            logger.info(
                "Filtered records",
                records=len(context.records),
                payloads=len(payloads),
                endpoints=self.config.endpoint_allow_list or "all",
            )

            if self.config.webhook_auth_enabled:
                self._transition(RunState.RESOLVING_AUTH)
                context.auth_headers = await self._resolve_webhook_auth()

            delivered = 0
            if payloads:
                self._transition(RunState.DELIVERING)
                delivered = await self.dispatcher.deliver(
                    payloads,
                    self.config.webhook_url,
                    headers=context.auth_headers,
                    concurrency=self.config.concurrency,
                )
        except Exception as e:
            logger.error(
                "Job failed",
                state=self.state.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._rollback(start_cursor, e, start)
            raise

        self._transition(RunState.COMMITTING)
        try:
            await self.checkpoint_store.save(
                Checkpoint(cursor=context.cursor, last_run_event_count=len(payloads))
            )
        except CheckpointStoreError:
            logger.error("Error storing checkpoint", cursor=context.cursor)
            self._finish("checkpoint_error", start)
            raise

        if self.metrics:
            self.metrics.record_commit(len(payloads))

        duration = self._finish("success", start)
        logger.info(
            "Job complete",
            start_cursor=start_cursor or "start",
            cursor=context.cursor,
            records_fetched=len(context.records),
            events_delivered=delivered,
            duration_seconds=round(duration, 3),
        )

        return RunResult(
            start_cursor=start_cursor,
            cursor=context.cursor,
            records_fetched=len(context.records),
            events_delivered=delivered,
            pages_fetched=context.pages_fetched,
            duration_seconds=duration,
        )

    async def _fetch_all(self, context: RunContext) -> None:
        """Page through the source until it returns an empty page."""
        self._transition(RunState.FETCHING)

        while True:
            page = await self.source.fetch_page(context.cursor, self.config.page_size)
            context.pages_fetched += 1
            if self.metrics:
                self.metrics.record_page(len(page))

            if not page:
                break

            context.records.extend(page)
            context.cursor = page[-1].id
            logger.info(
                "Fetched log page",
                page_records=len(page),
                total_records=len(context.records),
                cursor=context.cursor,
            )

    async def _resolve_webhook_auth(self) -> Dict[str, str]:
        if self.token_cache is None:
            raise RuntimeError("Webhook auth configured but no token cache given")

        credentials = ClientCredentials(
            token_url=self.config.source_token_url,
            audience=self.config.webhook_auth_audience or "",
            client_id=self.config.webhook_auth_client_id or "",
            client_secret=self.config.webhook_auth_client_secret or "",
        )
        token = await self.token_cache.get_token(credentials.cache_key, credentials)
        return {"Authorization": f"Bearer {token}"}

    async def _rollback(self, start_cursor: Optional[str], cause: Exception, start: float) -> None:
        """Write back the pre-run cursor so the next run repeats this window."""
        self._transition(RunState.ROLLING_BACK)
        try:
            await self.checkpoint_store.save(Checkpoint(cursor=start_cursor, last_run_event_count=0))
        except CheckpointStoreError as store_error:
            logger.error("Error storing start checkpoint", cursor=start_cursor)
            self._finish("checkpoint_error", start)
            raise store_error from cause

        logger.info("Checkpoint rolled back", cursor=start_cursor or "start")
        self._finish("failure", start)

    def _finish(self, outcome: str, start: float) -> float:
        duration = time.time() - start
        self._transition(RunState.DONE if outcome == "success" else RunState.FAILED)
        if self.metrics:
            self.metrics.record_run(outcome, duration)
        return duration
