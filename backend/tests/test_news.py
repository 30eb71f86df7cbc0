import httpx
import pytest

from impactey.models.records import NewsArticle
from impactey.services.news_client import GNEWS_URL, NewsClient, annotate, load_fallback
from impactey.services.rate import NEWS_SOURCE, QuotaRule, QuotaTracker

from mocks import MockClient, MockResponse


def _art(title, url, published="2024-12-01T00:00:00Z", description=""):
    return {"title": title, "description": description, "content": "", "url": url,
            "image": None, "publishedAt": published, "source": {"name": "Wire", "url": "https://wire.test"}}


FALLBACK = [
    NewsArticle(**_art("Greenwashing probe widens", "https://f.test/1", description="fund labels")),
    NewsArticle(**_art("Net zero targets", "https://f.test/2")),
    NewsArticle(**_art("Board diversity report", "https://f.test/3")),
    NewsArticle(**_art("Water stewardship", "https://f.test/4")),
    NewsArticle(**_art("Carbon markets", "https://f.test/5")),
    NewsArticle(**_art("Supply chain audits", "https://f.test/6")),
]


def _news(client, quota, clock, api_key="tok", fallback=FALLBACK):
    return NewsClient(api_key, quota, client=client, fallback=fallback, clock=clock)


@pytest.mark.asyncio
async def test_search_hits_gnews_with_token(quota, clock):
    body = {"totalArticles": 1, "articles": [_art("Tesla ESG", "https://n.test/a")]}
    client = MockClient({"gnews.io": MockResponse(body)})
    feed = await _news(client, quota, clock).search("Tesla ESG", 5, country="us", date_from="2024-01-01")
    assert feed.source == "api"
    assert [a.url for a in feed.articles] == ["https://n.test/a"]
    assert client.requests == [GNEWS_URL]
    params = client.params[0]
    assert params["token"] == "tok"
    assert params["q"] == "Tesla ESG"
    assert params["max"] == 5
    assert params["country"] == "us"
    assert params["from"] == "2024-01-01"
    assert "to" not in params


@pytest.mark.asyncio
async def test_missing_key_serves_filtered_fallback(quota, clock):
    client = MockClient()
    feed = await _news(client, quota, clock, api_key="").search("greenwashing")
    assert client.requests == []
    assert feed.source == "fallback"
    assert [a.url for a in feed.articles] == ["https://f.test/1"]


@pytest.mark.asyncio
async def test_fallback_without_matches_returns_first_five(quota, clock):
    feed = await _news(MockClient(), quota, clock, api_key="").search("zzzz nothing", 20)
    assert feed.source == "fallback"
    assert len(feed.articles) == 5


@pytest.mark.asyncio
async def test_fallback_without_matches_respects_smaller_max(quota, clock):
    feed = await _news(MockClient(), quota, clock, api_key="").search("zzzz", 2)
    assert len(feed.articles) == 2


@pytest.mark.asyncio
async def test_upstream_failure_uses_fallback(quota, clock):
    client = MockClient({"gnews.io": httpx.ReadTimeout("slow")})
    feed = await _news(client, quota, clock).search("net zero")
    assert feed.source == "fallback"
    assert feed.articles[0].url == "https://f.test/2"
    assert feed.notice


@pytest.mark.asyncio
async def test_malformed_payload_uses_fallback(quota, clock):
    client = MockClient({"gnews.io": MockResponse({"unexpected": True})})
    feed = await _news(client, quota, clock).search("board")
    assert feed.source == "fallback"


@pytest.mark.asyncio
async def test_no_fallback_means_error(quota, clock):
    feed = await _news(MockClient(), quota, clock, api_key="", fallback=[]).search("anything")
    assert feed.source == "error"
    assert feed.articles == []


@pytest.mark.asyncio
async def test_quota_refusal_skips_upstream(clock):
    quota = QuotaTracker({NEWS_SOURCE: QuotaRule(1, 86400)}, clock=clock)
    body = {"totalArticles": 0, "articles": []}
    client = MockClient({"gnews.io": MockResponse(body)})
    news = _news(client, quota, clock)
    assert (await news.search("a")).source == "api"
    assert (await news.search("b")).source == "fallback"
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_rate_limit_throttles_news(quota, clock):
    client = MockClient({"gnews.io": MockResponse({}, 429, headers={"Retry-After": "30"})})
    news = _news(client, quota, clock)
    assert (await news.search("a")).source == "fallback"
    assert not quota.can_call(NEWS_SOURCE)
    clock.advance(30)
    assert quota.can_call(NEWS_SOURCE)


@pytest.mark.asyncio
async def test_company_news_merges_dedupes_and_sorts(quota, clock):
    class TwoQueryClient(MockClient):
        async def get(self, url, **kwargs):
            await super().get(url, **kwargs)
            q = kwargs["params"]["q"]
            if q.endswith("ESG"):
                arts = [_art("old", "https://n.test/1", "2024-01-01T00:00:00Z"),
                        _art("shared", "https://n.test/2", "2024-03-01T00:00:00Z")]
            else:
                arts = [_art("shared", "https://n.test/2", "2024-03-01T00:00:00Z"),
                        _art("new", "https://n.test/3", "2024-06-01T00:00:00Z")]
            return MockResponse({"totalArticles": len(arts), "articles": arts})

    client = TwoQueryClient()
    feed = await _news(client, quota, clock).company_news("Tesla", "TSLA", max_articles=10)
    assert feed.source == "api"
    assert [a.url for a in feed.articles] == ["https://n.test/3", "https://n.test/2", "https://n.test/1"]
    assert sorted(p["q"] for p in client.params) == ['"Tesla" ESG', '"Tesla" sustainability']
    assert all(p["max"] == 5 for p in client.params)


@pytest.mark.asyncio
async def test_general_news_rotates_hourly(quota, clock):
    client = MockClient({"gnews.io": MockResponse({"totalArticles": 0, "articles": []})})
    news = _news(client, quota, clock)
    await news.general_news()
    clock.advance(3600)
    await news.general_news()
    assert client.params[0]["q"] != client.params[1]["q"]


def test_annotate_pairs_analysis():
    out = annotate([FALLBACK[0]])
    assert out[0].article.url == "https://f.test/1"
    assert out[0].analysis.severity == "medium"


def test_bundled_fallback_loads():
    arts = load_fallback()
    assert len(arts) >= 5
    assert all(a.url for a in arts)


@pytest.mark.asyncio
async def test_recent_news_bounds_by_days(quota, clock):
    client = MockClient({"gnews.io": MockResponse({"totalArticles": 0, "articles": []})})
    await _news(client, quota, clock).recent_news("Unilever", days=7, max_articles=3)
    # clock starts at 2023-11-14T22:13:20Z
    assert client.params[0]["from"] == "2023-11-07"
    assert client.params[0]["max"] == 3
