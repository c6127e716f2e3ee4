"""
Tests for webhook delivery.

Tests bounded concurrency, stop-on-first-failure and request shape.
"""

import asyncio
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import aiohttp
import pytest
from prometheus_client import CollectorRegistry

from logrelay.core.dispatcher import DeliveryFailure, WebhookDispatcher
from logrelay.core.exceptions import DeliveryError
from logrelay.core.metrics import MetricsCollector
from logrelay.models.log_record import DeliveryPayload

URL = "https://hooks.example.com"


def payloads(count: int) -> List[DeliveryPayload]:
    return [
        DeliveryPayload(
            date=f"2025-09-22T10:00:{i:02d}.000Z",
            request={"method": "post", "path": f"/api/v2/users/{i}"},
            response={"statusCode": 201},
        )
        for i in range(count)
    ]


async def settle() -> None:
    """Let every runnable task reach its next await."""
    for _ in range(10):
        await asyncio.sleep(0)


class GatedSend:
    """
    Stand-in for WebhookDispatcher._send.

    Each send blocks until its gate is released, so the test decides when
    every request completes.
    """

    def __init__(self, fail_on: Optional[int] = None) -> None:
        self.fail_on = fail_on
        self.gates: Dict[int, asyncio.Event] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.started: List[int] = []

    async def __call__(self, index, payload, url, headers) -> Optional[DeliveryFailure]:
        self.started.append(index)
        gate = self.gates[index] = asyncio.Event()
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await gate.wait()
        finally:
            self.in_flight -= 1
        if index == self.fail_on:
            return DeliveryFailure(index, "Unexpected response from webhook", 500)
        return None

    def waiting(self) -> List[int]:
        return sorted(index for index, gate in self.gates.items() if not gate.is_set())

    def release(self, index: int) -> None:
        self.gates[index].set()


def gated_dispatcher(send: GatedSend) -> WebhookDispatcher:
    dispatcher = WebhookDispatcher(MagicMock())
    dispatcher._send = send
    return dispatcher


class TestConcurrency:
    """Test the in-flight bound."""

    @pytest.mark.asyncio
    async def test_never_exceeds_bound(self) -> None:
        """Test 10 blocked sends at concurrency 2 never have more than 2 in flight."""

        send = GatedSend()
        task = asyncio.create_task(gated_dispatcher(send).deliver(payloads(10), URL, concurrency=2))

        await settle()
        assert send.waiting() == [0, 1]

        while send.waiting():
            assert send.in_flight <= 2
            send.release(send.waiting()[0])
            await settle()

        assert await task == 10
        assert send.max_in_flight == 2
        assert sorted(send.started) == list(range(10))

    @pytest.mark.asyncio
    async def test_bound_larger_than_batch(self) -> None:
        send = GatedSend()
        task = asyncio.create_task(gated_dispatcher(send).deliver(payloads(3), URL, concurrency=50))

        await settle()
        assert send.waiting() == [0, 1, 2]
        for index in range(3):
            send.release(index)

        assert await task == 3
        assert send.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_empty_batch(self) -> None:
        """Test nothing is sent for an empty batch."""

        send = GatedSend()

        assert await gated_dispatcher(send).deliver([], URL) == 0
        assert send.started == []


class TestFailure:
    """Test stop-on-first-failure."""

    @pytest.mark.asyncio
    async def test_no_new_requests_after_failure(self) -> None:
        """Test sequential delivery stops at the failing payload."""

        send = GatedSend(fail_on=2)
        task = asyncio.create_task(gated_dispatcher(send).deliver(payloads(10), URL, concurrency=1))

        for index in range(3):
            await settle()
            assert send.waiting() == [index]
            send.release(index)

        with pytest.raises(DeliveryError) as exc_info:
            await task

        assert send.started == [0, 1, 2]
        error = exc_info.value
        assert error.error_code == "delivery_error"
        assert error.details["payload_index"] == 2
        assert error.details["delivered"] == 2
        assert error.details["total"] == 10

    @pytest.mark.asyncio
    async def test_in_flight_requests_allowed_to_finish(self) -> None:
        """Test requests already sent are not cancelled and nothing new starts."""

        send = GatedSend(fail_on=0)
        task = asyncio.create_task(gated_dispatcher(send).deliver(payloads(10), URL, concurrency=3))

        await settle()
        assert send.waiting() == [0, 1, 2]
        send.release(0)
        await settle()

        assert not task.done()
        assert send.waiting() == [1, 2]
        assert sorted(send.started) == [0, 1, 2]

        send.release(1)
        send.release(2)
        with pytest.raises(DeliveryError):
            await task

        assert send.in_flight == 0
        assert sorted(send.started) == [0, 1, 2]


class TestHttpDelivery:
    """Test delivery against the fake webhook."""

    @pytest.mark.asyncio
    async def test_posts_json_payloads(self, fake_api, http_session: aiohttp.ClientSession) -> None:
        """Test each payload is POSTed as JSON with the given headers."""

        dispatcher = WebhookDispatcher(http_session)
        batch = payloads(3)

        delivered = await dispatcher.deliver(
            batch,
            fake_api.webhook_url,
            headers={"Authorization": "Bearer hook-token"},
        )

        assert delivered == 3
        assert sorted(fake_api.webhook_bodies, key=lambda b: b["date"]) == [p.model_dump() for p in batch]
        assert all(h["Authorization"] == "Bearer hook-token" for h in fake_api.webhook_headers)
        assert all(h["Content-Type"].startswith("application/json") for h in fake_api.webhook_headers)

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self, fake_api, http_session: aiohttp.ClientSession) -> None:
        """Test a 500 from the webhook raises DeliveryError."""

        fake_api.webhook_fail_on = {1}
        dispatcher = WebhookDispatcher(http_session)

        with pytest.raises(DeliveryError, match="Unexpected response from webhook") as exc_info:
            await dispatcher.deliver(payloads(3), fake_api.webhook_url, concurrency=1)

        assert exc_info.value.details["status_code"] == 500
        assert len(fake_api.webhook_bodies) == 2

    @pytest.mark.asyncio
    async def test_unreachable_webhook(self, http_session: aiohttp.ClientSession) -> None:
        dispatcher = WebhookDispatcher(http_session)

        with pytest.raises(DeliveryError, match="unreachable"):
            await dispatcher.deliver(payloads(1), "http://127.0.0.1:1/webhook")

    @pytest.mark.asyncio
    async def test_request_metrics(self, fake_api, http_session: aiohttp.ClientSession) -> None:
        """Test webhook requests and delivered events are counted."""

        registry = CollectorRegistry()
        fake_api.webhook_fail_on = {2}
        dispatcher = WebhookDispatcher(http_session, metrics=MetricsCollector(registry))

        with pytest.raises(DeliveryError):
            await dispatcher.deliver(payloads(5), fake_api.webhook_url, concurrency=1)

        assert registry.get_sample_value("logrelay_webhook_requests_total", {"status_code": "204"}) == 2
        assert registry.get_sample_value("logrelay_webhook_requests_total", {"status_code": "500"}) == 1
        assert registry.get_sample_value("logrelay_events_delivered_total") == 2
