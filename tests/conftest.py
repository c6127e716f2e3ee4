"""
Pytest configuration and shared fixtures.

Contains common test fixtures and setup for all test modules, including a
fake management API / token endpoint / webhook served by aiohttp's test server.
"""

from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Dict, Generator, List, Optional, Set
from unittest.mock import patch

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from fastapi.testclient import TestClient

from logrelay.config import get_settings, reload_settings
from logrelay.models.log_record import LogRecord

MGMT_TOKEN = "mgmt-token"


def build_raw_record(
    index: int,
    log_type: str = "sapi",
    path: Optional[str] = "/api/v2/users/123",
) -> Dict[str, Any]:
    """Raw log record in the management API wire format."""
    request: Dict[str, Any] = {"method": "patch"}
    if path is not None:
        request["path"] = path
    return {
        "_id": f"log_{index:05d}",
        "date": f"2025-09-22T10:{index // 60 % 60:02d}:{index % 60:02d}.000Z",
        "type": log_type,
        "details": {
            "request": request,
            "response": {"statusCode": 200},
        },
    }


@pytest.fixture
def make_record() -> Callable[..., LogRecord]:
    """Factory for LogRecord instances."""
    def _make(index: int, log_type: str = "sapi", path: Optional[str] = "/api/v2/users/123") -> LogRecord:
        return LogRecord.model_validate(build_raw_record(index, log_type, path))
    return _make


class FakeApi:
    """
    In-process stand-in for the management API, its token endpoint and a webhook.

    - GET /api/v2/logs pages through `records` after the `from` cursor
    - POST /oauth/token issues `token-for-{audience}` (management audience gets MGMT_TOKEN)
    - POST /webhook records bodies; indexes in `webhook_fail_on` answer 500
    """

    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []
        self.log_requests: List[Dict[str, str]] = []
        self.token_requests: List[Dict[str, Any]] = []
        self.webhook_bodies: List[Dict[str, Any]] = []
        self.webhook_headers: List[Dict[str, str]] = []
        self.webhook_fail_on: Set[int] = set()
        self.logs_status = 200
        self.token_status = 200
        self.token_body: Optional[Dict[str, Any]] = None
        self.base_url = ""

        self.app = web.Application()
        self.app.router.add_get("/api/v2/logs", self._logs)
        self.app.router.add_post("/oauth/token", self._token)
        self.app.router.add_post("/webhook", self._webhook)

    @property
    def webhook_url(self) -> str:
        return f"{self.base_url}/webhook"

    async def _logs(self, request: web.Request) -> web.Response:
        self.log_requests.append(dict(request.query))
        if request.headers.get("Authorization") != f"Bearer {MGMT_TOKEN}":
            return web.json_response({"message": "Unauthorized"}, status=401)
        if self.logs_status != 200:
            return web.json_response({"message": "boom"}, status=self.logs_status)

        take = int(request.query["take"])
        cursor = request.query.get("from")
        start = 0
        if cursor is not None:
            ids = [record["_id"] for record in self.records]
            start = ids.index(cursor) + 1
        return web.json_response(self.records[start:start + take])

    async def _token(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.token_requests.append(body)
        if self.token_status != 200:
            return web.json_response({"error": "access_denied"}, status=self.token_status)
        if self.token_body is not None:
            return web.json_response(self.token_body)
        if body["audience"].endswith("/api/v2/"):
            return web.json_response({"access_token": MGMT_TOKEN, "token_type": "Bearer"})
        return web.json_response({"access_token": f"token-for-{body['audience']}", "token_type": "Bearer"})

    async def _webhook(self, request: web.Request) -> web.Response:
        index = len(self.webhook_bodies)
        self.webhook_bodies.append(await request.json())
        self.webhook_headers.append(dict(request.headers))
        if index in self.webhook_fail_on:
            return web.Response(status=500, text="webhook down")
        return web.Response(status=204)


@pytest_asyncio.fixture
async def fake_api() -> AsyncGenerator[FakeApi, None]:
    """Running fake API server."""
    api = FakeApi()
    server = TestServer(api.app)
    await server.start_server()
    api.base_url = f"http://{server.host}:{server.port}"
    try:
        yield api
    finally:
        await server.close()


@pytest_asyncio.fixture
async def http_session() -> AsyncGenerator[aiohttp.ClientSession, None]:
    """Client session with a short timeout."""
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=5)) as session:
        yield session


@pytest.fixture
def relay_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Dict[str, str]:
    """Environment with every required setting, checkpoint under tmp_path."""
    env = {
        "LOGRELAY_SOURCE_DOMAIN": "tenant.example.com",
        "LOGRELAY_SOURCE_CLIENT_ID": "source-client",
        "LOGRELAY_SOURCE_CLIENT_SECRET": "source-secret",
        "LOGRELAY_WEBHOOK_URL": "https://hooks.example.com/audit",
        "LOGRELAY_CHECKPOINT_ROOT_PATH": str(tmp_path / "checkpoints"),
        "LOGRELAY_LOG_LEVEL": "DEBUG",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


def _reset_globals() -> None:
    import logrelay.core.checkpoint as checkpoint_module
    import logrelay.core.health as health_module
    import logrelay.core.relay_service as relay_service_module

    checkpoint_module._checkpoint_store = None
    health_module._health_checker = None
    relay_service_module._relay_service = None


@pytest.fixture
def test_client(relay_env: Dict[str, str]) -> Generator[TestClient, None, None]:
    """FastAPI test client with test configuration."""
    from logrelay.main import create_app

    _reset_globals()

    # Ignore any config.yaml on disk
    with patch('logrelay.config.load_config_file') as mock_load:
        mock_load.return_value = {}
        reload_settings()

        with TestClient(create_app()) as client:
            yield client

    _reset_globals()
    get_settings.cache_clear()
