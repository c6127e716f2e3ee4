"""
Bearer token acquisition and caching.

OAuthTokenClient performs the client-credentials exchange. TokenCache memoizes
tokens per cache key with LRU capacity and time-based expiry, and coalesces
concurrent lookups for the same key onto one in-flight acquisition.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
import structlog

from .exceptions import AuthAcquisitionError
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

TokenLoader = Callable[["ClientCredentials"], Awaitable[str]]


@dataclass(frozen=True)
class ClientCredentials:
    """Client-credentials grant parameters."""
    token_url: str
    audience: str
    client_id: str
    client_secret: str

    @property
    def cache_key(self) -> str:
        """Token endpoint URL qualified by audience."""
        return f"{self.token_url}#{self.audience}"

    def __repr__(self) -> str:
        return (
            f"ClientCredentials(token_url={self.token_url!r}, audience={self.audience!r}, "
            f"client_id={self.client_id!r}, client_secret='***')"
        )


@dataclass
class CachedToken:
    """A token held by the cache."""
    key: str
    token: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class OAuthTokenClient:
    """
    Client-credentials token client.

    POSTs {audience, grant_type, client_id, client_secret} to the token URL
    and returns the access_token of the JSON response.
    """

    def __init__(self, session: aiohttp.ClientSession) -> None:
        self.session = session

    async def acquire(self, credentials: ClientCredentials) -> str:
        body = {
            "audience": credentials.audience,
            "grant_type": "client_credentials",
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
        }
        details = {"token_url": credentials.token_url, "audience": credentials.audience}

        try:
            async with self.session.post(credentials.token_url, json=body) as response:
                if response.status // 100 != 2:
                    logger.error(
                        "Token endpoint rejected request",
                        token_url=credentials.token_url,
                        status=response.status,
                    )
                    raise AuthAcquisitionError(
                        f"Token endpoint returned status {response.status}",
                        details={**details, "status_code": response.status},
                    )
                payload: Any = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.error("Token endpoint unreachable", token_url=credentials.token_url, error=str(e))
            raise AuthAcquisitionError(
                f"Token endpoint unreachable: {type(e).__name__}",
                details=details,
            ) from e
        except asyncio.TimeoutError as e:
            logger.error("Token endpoint timed out", token_url=credentials.token_url)
            raise AuthAcquisitionError("Token endpoint timed out", details=details) from e
        except ValueError as e:
            raise AuthAcquisitionError("Token endpoint returned malformed JSON", details=details) from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthAcquisitionError("Token endpoint response has no access_token", details=details)

        return token


class TokenCache:
    """
    Process-lifetime bearer token cache.

    - Bounded size, least-recently-used entry evicted first
    - Entries expire ttl_seconds after acquisition
    - Single-flight: one acquisition per key per miss window
    - Failed acquisitions are not cached
    """

    def __init__(
        self,
        loader: TokenLoader,
        max_entries: int = 100,
        ttl_seconds: float = 3600,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.loader = loader
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics
        self.entries: "OrderedDict[str, CachedToken]" = OrderedDict()
        self._inflight: Dict[str, "asyncio.Task[str]"] = {}
        self.lock = asyncio.Lock()

    async def get_token(self, key: str, credentials: ClientCredentials) -> str:
        """
        Return the cached token for key, acquiring it on a miss.

        Raises:
            AuthAcquisitionError: if acquisition fails
        """
        async with self.lock:
            entry = self.entries.get(key)
            if entry is not None:
                if not entry.is_expired(time.time()):
                    self.entries.move_to_end(key)
                    self._record_lookup("hit")
                    return entry.token
                del self.entries[key]
                logger.debug("Cached token expired", key=key)

            task = self._inflight.get(key)
            if task is None:
                self._record_lookup("miss")
                task = asyncio.create_task(self._load(key, credentials))
                self._inflight[key] = task
            else:
                self._record_lookup("coalesced")

        # Waiters cancelled mid-flight must not cancel the shared acquisition
        return await asyncio.shield(task)

    async def _load(self, key: str, credentials: ClientCredentials) -> str:
        try:
            try:
                token = await self.loader(credentials)
            except AuthAcquisitionError:
                raise
            except Exception as e:
                raise AuthAcquisitionError(f"Token acquisition failed: {type(e).__name__}") from e

            async with self.lock:
                self.entries[key] = CachedToken(
                    key=key,
                    token=token,
                    expires_at=time.time() + self.ttl_seconds,
                )
                self.entries.move_to_end(key)
                while len(self.entries) > self.max_entries:
                    evicted, _ = self.entries.popitem(last=False)
                    logger.debug("Evicted cached token", key=evicted)

            logger.info("Acquired bearer token", key=key, ttl_seconds=self.ttl_seconds)
            return token
        finally:
            self._inflight.pop(key, None)

    def __len__(self) -> int:
        return len(self.entries)

    def _record_lookup(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_token_lookup(result)

