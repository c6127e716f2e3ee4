"""
Tests for the bearer token cache.

Tests single-flight acquisition, TTL expiry, LRU eviction and failure handling.
"""

import asyncio
from typing import List
from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry

from logrelay.core.auth import ClientCredentials, TokenCache
from logrelay.core.exceptions import AuthAcquisitionError
from logrelay.core.metrics import MetricsCollector


def credentials(audience: str = "https://hooks.example.com") -> ClientCredentials:
    return ClientCredentials(
        token_url="https://tenant.example.com/oauth/token",
        audience=audience,
        client_id="client",
        client_secret="secret",
    )


class CountingLoader:
    """Loader returning token-{n} and counting calls."""

    def __init__(self) -> None:
        self.calls: List[ClientCredentials] = []
        self.release = asyncio.Event()
        self.release.set()

    async def __call__(self, creds: ClientCredentials) -> str:
        self.calls.append(creds)
        await self.release.wait()
        return f"token-{len(self.calls)}"


class TestTokenCache:
    """Test the TokenCache implementation."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self) -> None:
        """Test the second lookup is served from the cache."""

        loader = CountingLoader()
        cache = TokenCache(loader)
        assert await cache.get_token("k", credentials()) == "token-1"
        assert await cache.get_token("k", credentials()) == "token-1"
        assert len(loader.calls) == 1

    @pytest.mark.asyncio
    async def test_single_flight(self) -> None:
        """Test 5 concurrent lookups for one key trigger one acquisition."""

        loader = CountingLoader()
        loader.release.clear()
        cache = TokenCache(loader)

        tasks = [asyncio.create_task(cache.get_token("k", credentials())) for _ in range(5)]
        await asyncio.sleep(0.01)
        loader.release.set()
        tokens = await asyncio.gather(*tasks)

        assert len(loader.calls) == 1
        assert tokens == ["token-1"] * 5

    @pytest.mark.asyncio
    async def test_distinct_keys_load_separately(self) -> None:
        """Test different keys each get their own acquisition."""

        loader = CountingLoader()
        cache = TokenCache(loader)
        await asyncio.gather(
            cache.get_token("a", credentials("a")),
            cache.get_token("b", credentials("b")),
        )
        assert len(loader.calls) == 2
        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_expired_entry_reacquired(self) -> None:
        """Test an entry older than the TTL is acquired again."""

        loader = CountingLoader()
        cache = TokenCache(loader, ttl_seconds=3600)

        with patch("time.time") as mock_time:
            mock_time.return_value = 1000.0
            assert await cache.get_token("k", credentials()) == "token-1"

            mock_time.return_value = 1000.0 + 3599
            assert await cache.get_token("k", credentials()) == "token-1"

            mock_time.return_value = 1000.0 + 3600
            assert await cache.get_token("k", credentials()) == "token-2"

        assert len(loader.calls) == 2

    @pytest.mark.asyncio
    async def test_lru_eviction(self) -> None:
        """Test the least-recently-used entry is evicted at capacity."""

        loader = CountingLoader()
        cache = TokenCache(loader, max_entries=2)

        await cache.get_token("a", credentials())
        await cache.get_token("b", credentials())
        # Touch a so b becomes least recently used
        await cache.get_token("a", credentials())
        await cache.get_token("c", credentials())

        assert list(cache.entries) == ["a", "c"]
        assert len(loader.calls) == 3

        await cache.get_token("b", credentials())
        assert len(loader.calls) == 4

    @pytest.mark.asyncio
    async def test_failure_not_cached(self) -> None:
        """Test a failed acquisition surfaces and the next lookup retries."""

        calls = 0

        async def flaky(creds: ClientCredentials) -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise AuthAcquisitionError("Token endpoint returned status 401")
            return "good"

        cache = TokenCache(flaky)
        with pytest.raises(AuthAcquisitionError):
            await cache.get_token("k", credentials())
        assert len(cache) == 0

        assert await cache.get_token("k", credentials()) == "good"
        assert calls == 2

    @pytest.mark.asyncio
    async def test_failure_shared_by_coalesced_waiters(self) -> None:
        """Test every waiter of a failed acquisition sees the error."""

        release = asyncio.Event()

        async def failing(creds: ClientCredentials) -> str:
            await release.wait()
            raise AuthAcquisitionError("denied")

        cache = TokenCache(failing)
        tasks = [asyncio.create_task(cache.get_token("k", credentials())) for _ in range(3)]
        await asyncio.sleep(0.01)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, AuthAcquisitionError) for r in results)

    @pytest.mark.asyncio
    async def test_unexpected_loader_error_wrapped(self) -> None:
        """Test non-auth loader errors surface as AuthAcquisitionError."""

        async def broken(creds: ClientCredentials) -> str:
            raise KeyError("access_token")

        cache = TokenCache(broken)
        with pytest.raises(AuthAcquisitionError) as exc_info:
            await cache.get_token("k", credentials())
        assert isinstance(exc_info.value.__cause__, KeyError)

    @pytest.mark.asyncio
    async def test_lookup_metrics(self) -> None:
        """Test hits, misses and coalesced lookups are counted."""

        registry = CollectorRegistry()
        loader = CountingLoader()
        loader.release.clear()
        cache = TokenCache(loader, metrics=MetricsCollector(registry))

        tasks = [asyncio.create_task(cache.get_token("k", credentials())) for _ in range(3)]
        await asyncio.sleep(0.01)
        loader.release.set()
        await asyncio.gather(*tasks)
        await cache.get_token("k", credentials())

        def count(result: str) -> float:
            value = registry.get_sample_value("logrelay_token_cache_lookups_total", {"result": result})
            return value or 0.0

        assert count("miss") == 1
        assert count("coalesced") == 2
        assert count("hit") == 1


class TestClientCredentials:
    """Test credential handling."""

    def test_secret_not_in_repr(self) -> None:
        assert "secret" not in repr(credentials()).replace("client_secret", "")
        assert "***" in repr(credentials())

    def test_cache_key_includes_audience(self) -> None:
        assert credentials("a").cache_key != credentials("b").cache_key
        assert credentials("a").cache_key.startswith("https://tenant.example.com/oauth/token")
