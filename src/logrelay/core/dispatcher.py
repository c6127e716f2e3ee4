"""
Webhook delivery dispatcher.

Features:
- One JSON POST per payload
- Bounded number of requests in flight
- Stops admitting new requests on the first failure
- No retries; a failed batch is retried by the next run
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

import aiohttp
import structlog

from ..models.log_record import DeliveryPayload
from .exceptions import DeliveryError
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 5


@dataclass
class DeliveryFailure:
    """First failed delivery of a batch."""
    index: int
    message: str
    status_code: Optional[int] = None


class WebhookDispatcher:
    """
    Delivers payloads to a webhook with at most `concurrency` requests in flight.

    Delivery order across workers is not guaranteed.
    """

    def __init__(self, session: aiohttp.ClientSession, metrics: Optional[MetricsCollector] = None) -> None:
        self.session = session
        self.metrics = metrics

    async def deliver(
        self,
        payloads: Sequence[DeliveryPayload],
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> int:
        """
        POST every payload to url.

        Returns:
            Number of payloads delivered

        Raises:
            DeliveryError: carrying the first failure
        """
        if not payloads:
            return 0

        concurrency = max(1, concurrency)
        logger.info(
            "Sending to webhook",
            url=url,
            payloads_count=len(payloads),
            concurrent_calls=concurrency,
        )

        queue: Iterator[Any] = iter(enumerate(payloads))
        failures: List[DeliveryFailure] = []
        delivered = 0

        async def worker() -> None:
            nonlocal delivered
            # next() on a shared iterator hands each payload to exactly one worker
            while not failures:
                item = next(queue, None)
                if item is None:
                    return
                index, payload = item
                failure = await self._send(index, payload, url, headers)
                if failure is not None:
                    failures.append(failure)
                    return
                delivered += 1

        workers = [asyncio.create_task(worker()) for _ in range(min(concurrency, len(payloads)))]
        await asyncio.gather(*workers)

        if failures:
            first = failures[0]
            raise DeliveryError(
                first.message,
                details={
                    "url": url,
                    "payload_index": first.index,
                    "status_code": first.status_code,
                    "delivered": delivered,
                    "total": len(payloads),
                },
            )

        logger.info("Upload complete", delivered=delivered)
        return delivered

    async def _send(
        self,
        index: int,
        payload: DeliveryPayload,
        url: str,
        headers: Optional[Mapping[str, str]],
    ) -> Optional[DeliveryFailure]:
        """POST one payload. Returns None on success, the failure otherwise."""
        start = time.time()
        status_code: Optional[int] = None
        request_headers: Dict[str, str] = dict(headers or {})

        try:
            async with self.session.post(
                url,
                json=payload.model_dump(mode="json"),
                headers=request_headers,
            ) as response:
                status_code = response.status
                if not str(status_code).startswith("2"):
                    body = await response.text()
                    logger.error(
                        "Unexpected response while sending request",
                        status=status_code,
                        body=body[:500],
                        payload_index=index,
                    )
                    return DeliveryFailure(index, "Unexpected response from webhook", status_code)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Error sending request", error=str(e) or type(e).__name__, payload_index=index)
            return DeliveryFailure(index, f"Webhook unreachable: {type(e).__name__}")
        finally:
            if self.metrics:
                self.metrics.record_webhook_request(status_code, time.time() - start)

        return None
