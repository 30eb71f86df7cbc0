import pytest

from impactey.services.cache import CacheStore, MemoryStore
from impactey.services.rate import (
    CATALOG_SOURCE,
    ESG_SOURCE,
    NEWS_SOURCE,
    QuotaRule,
    QuotaTracker,
)

from mocks import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def quota(clock):
    return QuotaTracker({
        ESG_SOURCE: QuotaRule(100, 60),
        NEWS_SOURCE: QuotaRule(100, 86400),
        CATALOG_SOURCE: QuotaRule(4, 3600),
    }, clock=clock)


@pytest.fixture
def esg_cache(store, clock):
    return CacheStore(store, "esg", clock=clock)


@pytest.fixture
def catalog_cache(store, clock):
    return CacheStore(store, "catalog", clock=clock)
