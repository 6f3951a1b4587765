"""
Shared fixtures: a controllable clock, a throwaway SQLite database and
API clients backed by httpx.MockTransport.
"""

from typing import Callable

import httpx
import pytest
import pytest_asyncio

from marketfeed.datastore import Database
from marketfeed.services.cache import CacheStore
from marketfeed.services.client import ApiClient
from marketfeed.settings import ApiConfig, Settings

API_URL = "https://api.test"
POLICY_ID = "a" * 56
ASSET_NAME = "534e454b"


class FakeClock:
    """Callable clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings.model_validate(
        {
            "CHARLI3_API_URL": API_URL,
            "CHARLI3_BEARER_TOKEN": "test-token",
            "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path}/marketfeed.db",
        }
    )


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path}/cache.db")
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def cache(database, clock) -> CacheStore:
    return CacheStore(database, clock=clock)


@pytest_asyncio.fixture
async def make_client(settings):
    """Build ApiClients whose requests are answered by handler."""
    clients: list[ApiClient] = []

    def factory(handler: Callable, config: ApiConfig | None = None) -> ApiClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = ApiClient(config or ApiConfig(settings), http_client=http_client)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()


def symbol_info(*rows: tuple[str, str, str]) -> dict:
    """Columnar symbol_info payload from (pair, ticker, currency) rows."""
    return {
        "s": "ok",
        "symbol": [pair for pair, _, _ in rows],
        "ticker": [ticker for _, ticker, _ in rows],
        "currency": [currency for _, _, currency in rows],
        "base-currency": ["" for _ in rows],
    }
