"""
Management API log source client.

Fetches one page of log records after a cursor, ascending by date.
"""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
import structlog
from pydantic import ValidationError

from ..config import MAX_PAGE_SIZE
from ..models.log_record import LogRecord
from .auth import ClientCredentials, TokenCache
from .exceptions import SourceFetchError

logger = structlog.get_logger(__name__)


class LogSourceClient:
    """
    Cursor-paginated client for GET /api/v2/logs.

    The management API bearer token comes from the shared token cache, so
    repeated pages within its TTL reuse one token.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        credentials: ClientCredentials,
        token_cache: TokenCache,
    ) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.token_cache = token_cache

    @property
    def logs_url(self) -> str:
        return f"{self.base_url}/api/v2/logs"

    async def fetch_page(self, cursor: Optional[str], page_size: int) -> List[LogRecord]:
        """
        Fetch records strictly after cursor, oldest first.

        Args:
            cursor: Id of the last record already seen, None for the start of history
            page_size: Requested page size, clamped to 100

        Returns:
            Ordered records, empty when the source has nothing newer

        Raises:
            SourceFetchError: on transport error, non-2xx or malformed body
            AuthAcquisitionError: if the management API token cannot be obtained
        """
        take = max(1, min(page_size, MAX_PAGE_SIZE))
        params: Dict[str, Any] = {
            "take": take,
            "sort": "date:1",
            "per_page": take,
        }
        if cursor is not None:
            params["from"] = cursor

        token = await self.token_cache.get_token(self.credentials.cache_key, self.credentials)
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        details = {"url": self.logs_url, "cursor": cursor}

        logger.debug("Fetching log page", cursor=cursor or "start", take=take)

        try:
            async with self.session.get(self.logs_url, params=params, headers=headers) as response:
                if response.status // 100 != 2:
                    error_text = await response.text()
                    logger.error(
                        "Log source returned error",
                        status=response.status,
                        error=error_text[:500],
                    )
                    raise SourceFetchError(
                        f"Log source returned status {response.status}",
                        details={**details, "status_code": response.status},
                    )
                body = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.error("Error getting logs", cursor=cursor, error=str(e))
            raise SourceFetchError(f"Log source unreachable: {type(e).__name__}", details=details) from e
        except asyncio.TimeoutError as e:
            logger.error("Log source timed out", cursor=cursor)
            raise SourceFetchError("Log source timed out", details=details) from e
        except ValueError as e:
            raise SourceFetchError("Log source returned malformed JSON", details=details) from e

        if not isinstance(body, list):
            raise SourceFetchError(
                "Log source returned a non-array body",
                details={**details, "body_type": type(body).__name__},
            )

        try:
            return [LogRecord.model_validate(item) for item in body]
        except ValidationError as e:
            raise SourceFetchError(
                "Log source returned malformed records",
                details={**details, "errors": e.error_count()},
            ) from e
