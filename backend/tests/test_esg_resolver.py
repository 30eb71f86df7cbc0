import asyncio

import httpx
import pytest

from impactey.models.records import SourceTier
from impactey.services.cache import CacheStore
from impactey.services.curated import CuratedDataset
from impactey.services.esg import ESGResolver, normalize_symbol
from impactey.services.fmp_client import FmpClient
from impactey.services.rate import ESG_SOURCE, QuotaRule, QuotaTracker
from impactey.services.synthetic import SCORE_CEIL, SCORE_FLOOR, synthetic_impact_metrics, synthetic_scores

from mocks import MockClient, MockResponse, record

ESG_PATH = "/esg-environmental-social-governance/"


def _esg_row(symbol, esg=72.0, env=80.0, soc=65.0, gov=70.0):
    return [{"symbol": symbol, "esgScore": esg, "environmentScore": env,
             "socialScore": soc, "governanceScore": gov, "date": "2024-06-30"}]


class _Directory:
    def __init__(self, *records):
        self.by_symbol = {r.symbol: r for r in records}

    def get_by_symbol(self, symbol):
        return self.by_symbol.get(symbol)


@pytest.fixture(scope="module")
def curated():
    return CuratedDataset.load()


def _resolver(client, curated, cache, quota, clock, api_key="k", catalog=None, **kw):
    return ESGResolver(FmpClient(api_key, client=client), curated, cache, quota, catalog, clock=clock, **kw)


@pytest.mark.asyncio
async def test_unknown_symbol_with_failing_upstream_gets_synthetic(curated, esg_cache, quota, clock):
    client = MockClient({ESG_PATH: httpx.ConnectError("down")})
    res = _resolver(client, curated, esg_cache, quota, clock)
    rec = await res.resolve("UNKNOWNTICKER123")
    assert rec.source_tier == SourceTier.synthetic
    for v in (rec.overall, rec.environmental, rec.social, rec.governance):
        assert SCORE_FLOOR <= v <= SCORE_CEIL
        assert round(v, 1) == v
    assert rec.company_name == "UNKNOWNTICKER123"


class _CrashingSource:
    enabled = True

    async def esg_scores(self, symbol):
        raise RuntimeError("decoder blew up")


@pytest.mark.asyncio
async def test_unexpected_source_error_falls_through_tiers(curated, esg_cache, quota, clock):
    res = ESGResolver(_CrashingSource(), curated, esg_cache, quota, clock=clock)
    assert (await res.resolve("UNKNOWNTICKER123")).source_tier == SourceTier.synthetic
    assert (await res.resolve("MSFT")).source_tier == SourceTier.curated
    out = await res.resolve_many(["KO", "ZZZQ"])
    assert [r.source_tier for r in out] == [SourceTier.curated, SourceTier.synthetic]


@pytest.mark.asyncio
async def test_synthetic_scores_deterministic_across_instances(curated, store, quota, clock):
    a = _resolver(MockClient(), curated, CacheStore(store, "esg", clock=clock), quota, clock, api_key="")
    first = await a.resolve("ZZZQ")
    store.blobs.clear()
    b = _resolver(MockClient(), curated, CacheStore(store, "esg", clock=clock), quota, clock, api_key="")
    second = await b.resolve("zzzq")
    assert first.model_dump(exclude={"resolved_at"}) == second.model_dump(exclude={"resolved_at"})
    assert {k: getattr(first, k) for k in ("overall", "environmental", "social", "governance")} == synthetic_scores("ZZZQ")


def test_synthetic_dimensions_are_independent():
    s = synthetic_scores("ABCD")
    assert len(set(s.values())) > 1
    assert synthetic_impact_metrics("ABCD") == synthetic_impact_metrics("abcd")


@pytest.mark.asyncio
async def test_live_scores_are_rescaled_to_ten(curated, esg_cache, quota, clock):
    client = MockClient({ESG_PATH: MockResponse(_esg_row("NVDA"))})
    rec = await _resolver(client, curated, esg_cache, quota, clock).resolve("nvda")
    assert rec.source_tier == SourceTier.live
    assert (rec.overall, rec.environmental, rec.social, rec.governance) == (7.2, 8.0, 6.5, 7.0)
    assert client.params[0]["apikey"] == "k"


@pytest.mark.asyncio
async def test_live_hit_for_curated_symbol_keeps_curated_metadata(curated, esg_cache, quota, clock):
    client = MockClient({ESG_PATH: MockResponse(_esg_row("TSLA", 55, 60, 50, 45))})
    rec = await _resolver(client, curated, esg_cache, quota, clock).resolve("TSLA")
    assert rec.source_tier == SourceTier.live
    assert rec.overall == 5.5
    assert rec.company_name == "Tesla"
    assert rec.sector == "Clean Technology"
    assert rec.detail is not None and len(rec.detail.controversies) == 3


@pytest.mark.asyncio
async def test_live_name_comes_from_catalog(curated, esg_cache, quota, clock):
    directory = _Directory(record("NVDA", "NVIDIA Corporation", 900.0))
    client = MockClient({ESG_PATH: MockResponse(_esg_row("NVDA"))})
    rec = await _resolver(client, curated, esg_cache, quota, clock, catalog=directory).resolve("NVDA")
    assert rec.company_name == "NVIDIA Corporation"


@pytest.mark.asyncio
async def test_empty_live_payload_falls_to_curated(curated, esg_cache, quota, clock):
    client = MockClient({ESG_PATH: MockResponse([])})
    rec = await _resolver(client, curated, esg_cache, quota, clock).resolve("MSFT")
    assert rec.source_tier == SourceTier.curated
    assert (rec.overall, rec.environmental, rec.social, rec.governance) == (8.2, 8.2, 7.9, 8.5)
    assert rec.detail.summary


@pytest.mark.asyncio
async def test_schema_mismatch_is_tier_failure(curated, esg_cache, quota, clock):
    client = MockClient({ESG_PATH: MockResponse([{"symbol": "KO", "esgScore": "n/a"}])})
    rec = await _resolver(client, curated, esg_cache, quota, clock).resolve("KO")
    assert rec.source_tier == SourceTier.curated
    assert rec.company_name == "Coca-Cola"
    assert rec.detail is None


@pytest.mark.asyncio
async def test_out_of_range_live_scores_are_rejected(curated, esg_cache, quota, clock):
    client = MockClient({ESG_PATH: MockResponse(_esg_row("ZZZA", esg=150.0))})
    rec = await _resolver(client, curated, esg_cache, quota, clock).resolve("ZZZA")
    assert rec.source_tier == SourceTier.synthetic


@pytest.mark.asyncio
async def test_profile_wins_over_score_only_entry(curated, esg_cache, quota, clock):
    rec = await _resolver(MockClient(), curated, esg_cache, quota, clock, api_key="").resolve("XOM")
    assert rec.overall == 4.4
    assert rec.detail is not None


@pytest.mark.asyncio
async def test_curated_profile_without_metrics_gets_hashed_metrics(curated, esg_cache, quota, clock):
    rec = await _resolver(MockClient(), curated, esg_cache, quota, clock, api_key="").resolve("UL")
    assert rec.detail.impact_metrics == synthetic_impact_metrics("UL")


@pytest.mark.asyncio
async def test_quota_exhaustion_skips_live_tier(curated, esg_cache, clock):
    quota = QuotaTracker({ESG_SOURCE: QuotaRule(1, 60)}, clock=clock)
    client = MockClient({ESG_PATH: MockResponse(_esg_row("X"))})
    res = _resolver(client, curated, esg_cache, quota, clock)
    assert (await res.resolve("AAAA")).source_tier == SourceTier.live
    assert (await res.resolve("BBBB")).source_tier == SourceTier.synthetic
    assert client.count(ESG_PATH) == 1


@pytest.mark.asyncio
async def test_rate_limit_throttles_source(curated, esg_cache, quota, clock):
    client = MockClient({ESG_PATH: MockResponse({}, 429)})
    res = _resolver(client, curated, esg_cache, quota, clock, throttle_s=60)
    assert (await res.resolve("AAAA")).source_tier == SourceTier.synthetic
    assert not quota.can_call(ESG_SOURCE)
    assert (await res.resolve("BBBB")).source_tier == SourceTier.synthetic
    assert client.count(ESG_PATH) == 1
    clock.advance(60)
    assert quota.can_call(ESG_SOURCE)


@pytest.mark.asyncio
async def test_cached_record_returned_until_ttl(curated, esg_cache, quota, clock):
    client = MockClient({ESG_PATH: MockResponse(_esg_row("NVDA"))})
    res = _resolver(client, curated, esg_cache, quota, clock, live_ttl_s=300)
    first = await res.resolve("NVDA")

    clock.advance(299)
    again = await res.resolve("NVDA")
    assert again == first
    assert client.count(ESG_PATH) == 1

    clock.advance(2)
    await res.resolve("NVDA")
    assert client.count(ESG_PATH) == 2


@pytest.mark.asyncio
async def test_synthetic_ttl_is_short(curated, esg_cache, quota, clock):
    res = _resolver(MockClient(), curated, esg_cache, quota, clock, api_key="", synthetic_ttl_s=120)
    first = await res.resolve("QQQQ")
    clock.advance(121)
    second = await res.resolve("QQQQ")
    assert second.resolved_at > first.resolved_at


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", ["", "   ", "not a ticker", "$AAPL", "A" * 25])
async def test_invalid_symbols_resolve_to_none(curated, esg_cache, quota, clock, bad):
    client = MockClient()
    assert await _resolver(client, curated, esg_cache, quota, clock).resolve(bad) is None
    assert client.requests == []


@pytest.mark.parametrize("sym,expected", [
    (" brk.b ", "BRK.B"), ("^GSPC", "^GSPC"), ("EURUSD=X", "EURUSD=X"), ("RDS-A", "RDS-A"),
])
def test_normalize_symbol(sym, expected):
    assert normalize_symbol(sym) == expected


@pytest.mark.asyncio
async def test_resolve_many_dedupes_keeps_order_and_drops_invalid(curated, esg_cache, quota, clock):
    res = _resolver(MockClient(), curated, esg_cache, quota, clock, api_key="")
    out = await res.resolve_many(["msft", "TSLA", "", "MSFT", "bad symbol", "ZZZQ"])
    assert [r.symbol for r in out] == ["MSFT", "TSLA", "ZZZQ"]


@pytest.mark.asyncio
async def test_resolve_many_respects_concurrency_bound(curated, esg_cache, quota, clock):
    active = 0
    peak = 0

    class SlowClient(MockClient):
        async def get(self, url, **kwargs):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return MockResponse([])

    res = _resolver(SlowClient(), curated, esg_cache, quota, clock, max_concurrency=2)
    out = await res.resolve_many([f"S{i}" for i in range(6)])
    assert len(out) == 6
    assert peak <= 2


@pytest.mark.asyncio
async def test_clear_cache_and_stats(curated, esg_cache, quota, clock):
    res = _resolver(MockClient(), curated, esg_cache, quota, clock, api_key="")
    await res.resolve("MSFT")
    await res.resolve("TSLA")
    assert res.cache_stats()["live_entries"] == 2
    res.clear_cache("msft")
    assert res.cache_stats()["live_entries"] == 1
    res.clear_cache()
    assert res.cache_stats()["live_entries"] == 0
    assert res.cache_stats()["quota"]["limit"] == 100
