"""
Test configuration for StoryGuard.

Provides an in-memory Redis (fakeredis), a controllable clock, fault-injecting
clients and sample articles shared by the unit tests.
"""

# Standard library imports
from typing import AsyncGenerator

# Third-party imports
import fakeredis
import pytest
import pytest_asyncio

# Local imports
from storyguard.config import DedupSettings
from storyguard.dedup import DedupEngine, RecencyCache
from storyguard.protocols import Article

from tests.helpers.fakes import BrokenRedis, FakeClock

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


# ============================================================================
# Clock and Store Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    """Isolated in-memory Redis per test."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def cache(redis_client) -> RecencyCache:
    return RecencyCache(redis_client)


@pytest.fixture
def broken_cache() -> RecencyCache:
    return RecencyCache(BrokenRedis(), operation_timeout=0.5)


@pytest.fixture
def settings() -> DedupSettings:
    return DedupSettings()


@pytest.fixture
def engine(cache, settings, clock) -> DedupEngine:
    return DedupEngine(cache, settings=settings, source_priority={"CoinDesk": 1, "Decrypt": 2}, clock=clock)


@pytest.fixture
def broken_engine(broken_cache, settings, clock) -> DedupEngine:
    return DedupEngine(broken_cache, settings=settings, clock=clock)


# ============================================================================
# Sample Articles
# ============================================================================


@pytest.fixture
def sec_article() -> Article:
    return Article(
        title="SEC fines exchange",
        description="Regulator fines Binance exchange millions",
        url="https://www.coindesk.com/policy/sec-fines-binance",
        source="CoinDesk",
    )


@pytest.fixture
def sec_rephrased() -> Article:
    """Same story from another outlet; shares 5 of 6 distinct terms."""
    return Article(
        title="Binance exchange fined by SEC",
        description="SEC regulator fines Binance exchange",
        url="https://decrypt.co/binance-fined-by-sec",
        source="Decrypt",
    )


@pytest.fixture
def upgrade_article() -> Article:
    return Article(
        title="Arbitrum rollup ships mainnet upgrade",
        description="The Layer-2 network activated its upgrade on mainnet.",
        url="https://theblock.co/arbitrum-mainnet-upgrade",
        source="TheBlock",
    )
