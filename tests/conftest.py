"""
Shared test fixtures for the Design Gateway tests.

Provides fake clocks, in-memory storage, a routable httpx.MockTransport
standing in for every upstream API, a fully wired gateway, and a FastAPI
TestClient bound to that gateway.
"""

import os
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
import pytest
from fastapi.testclient import TestClient

# Set test environment before importing app modules
os.environ.update(
    {
        "APP_ENV": "test",
        "LOG_LEVEL": "DEBUG",
    }
)

from design_gateway.config import Settings, reset_settings  # noqa: E402
from design_gateway.gateway import ResourceGateway, create_gateway  # noqa: E402
from design_gateway.utils.storage import MemoryStorage  # noqa: E402

FIGMA_TOKEN = "figd_" + "a1B2c3D4e5F6g7H8i9J0"
GITHUB_TOKEN = "ghp_" + "A1b2C3d4E5f6G7h8I9j0K1l2M3n4O5p6Q7r8"
OPENAI_KEY = "sk-" + "proj" + "x" * 40
GROQ_KEY = "gsk_" + "y" * 40

FIGMA_API = "https://api.figma.com/v1"
OPENAI_API = "https://api.openai.com/v1"
GROQ_API = "https://api.groq.com/openai/v1"
GITHUB_API = "https://api.github.com"


class FakeClock:
    """Manually advanced clock; call it to read the current time in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


RouteResult = Union[Tuple[int, Any, Dict[str, str]], Exception]


class MockUpstream:
    """
    Routes requests by method and full URL (query ignored) to canned responses.

    Unrouted requests get a 404 so a missing stub fails loudly. Every request
    is recorded for assertions.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], RouteResult] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        status: int = 200,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.routes[(method.upper(), url)] = (status, json, headers or {})

    def fail(self, method: str, url: str, exc: Exception) -> None:
        self.routes[(method.upper(), url)] = exc

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        route = self.routes.get((request.method, url))
        if route is None:
            return httpx.Response(404, json={"message": f"No stub for {url}"})
        if isinstance(route, Exception):
            raise route
        status, body, headers = route
        if body is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls_to(self, url_fragment: str) -> List[httpx.Request]:
        return [r for r in self.requests if url_fragment in str(r.url)]


@pytest.fixture(autouse=True)
def clean_settings():
    """Reset the global settings singleton around every test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1000.0)


@pytest.fixture
def wall_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def settings() -> Settings:
    """Test settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        app_env="test",
        log_level="DEBUG",
        api_rate_limit_max_requests=3,
        api_rate_limit_window_ms=1000,
        export_rate_limit_max_requests=2,
        export_rate_limit_window_ms=60_000,
    )


@pytest.fixture
def upstream() -> MockUpstream:
    return MockUpstream()


@pytest.fixture
async def gateway(settings, storage, upstream, clock, wall_clock) -> ResourceGateway:
    gw = create_gateway(
        settings,
        storage=storage,
        transport=upstream.transport,
        monotonic_clock=clock,
        wall_clock=wall_clock,
    )
    yield gw
    await gw.close()


@pytest.fixture
def sync_gateway(settings, storage, upstream, clock, wall_clock) -> ResourceGateway:
    """Gateway for TestClient-based tests (no async fixture teardown)."""
    return create_gateway(
        settings,
        storage=storage,
        transport=upstream.transport,
        monotonic_clock=clock,
        wall_clock=wall_clock,
    )


@pytest.fixture
def test_client(settings, sync_gateway):
    """FastAPI TestClient wired to the mocked gateway."""
    from design_gateway.app import create_app

    app = create_app(settings, sync_gateway)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def figma_token() -> str:
    return FIGMA_TOKEN


@pytest.fixture
def github_token() -> str:
    return GITHUB_TOKEN


@pytest.fixture
def openai_key() -> str:
    return OPENAI_KEY


@pytest.fixture
def groq_key() -> str:
    return GROQ_KEY
