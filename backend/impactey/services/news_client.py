from __future__ import annotations

import asyncio
import json
import math
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from impactey.models.records import AnalyzedArticle, GNewsResponse, NewsArticle, NewsFeed
from impactey.services import controversy
from impactey.services.rate import NEWS_SOURCE, QuotaTracker
from impactey.services.upstream import JsonHttpClient, UpstreamError

GNEWS_URL = "https://gnews.io/api/v4/search"
FALLBACK_PATH = Path(__file__).resolve().parents[1] / "assets" / "fallback_news.json"

GENERAL_QUERIES = [
    "ESG investing",
    "sustainability reporting",
    "net zero emissions",
    "greenwashing",
    "ESG regulation",
]


def load_fallback(path: Path = FALLBACK_PATH) -> List[NewsArticle]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return [NewsArticle.model_validate(a) for a in raw.get("articles", [])]
    except (OSError, ValueError, ValidationError) as e:
        logger.warning(f"fallback news unavailable ({path}): {e}")
        return []


def _published_ts(article: NewsArticle) -> float:
    try:
        return datetime.fromisoformat(article.publishedAt.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


class NewsClient(JsonHttpClient):
    """
    GNews search with a bundled offline feed.
    search() never raises: quota refusal, a missing key or any upstream failure
    serves the fallback articles instead.
    """
    source = "gnews"
    key_param = "token"

    def __init__(self,
                 api_key: str,
                 quota: QuotaTracker,
                 timeout_s: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None,
                 fallback: Optional[List[NewsArticle]] = None,
                 throttle_s: float = 60.0,
                 clock: Callable[[], float] = time.time):
        super().__init__(api_key, timeout_s=timeout_s, client=client)
        self.quota = quota
        self.fallback = load_fallback() if fallback is None else list(fallback)
        self.throttle_s = throttle_s
        self.clock = clock

    def _fallback_feed(self, query: str, max_articles: int, reason: str) -> NewsFeed:
        if not self.fallback:
            return NewsFeed(articles=[], source="error", notice=reason)
        terms = [t.strip('"').lower() for t in query.split() if t.strip('"')]
        matched = [
            a for a in self.fallback
            if any(t in a.title.lower() or t in a.description.lower() for t in terms)
        ][:max_articles]
        if not matched:
            matched = self.fallback[:min(max_articles, 5)]
        return NewsFeed(articles=matched, source="fallback", notice=reason)

    async def search(self,
                     query: str,
                     max_articles: int = 20,
                     lang: str = "en",
                     country: Optional[str] = None,
                     date_from: Optional[str] = None,
                     date_to: Optional[str] = None,
                     sortby: str = "publishedAt") -> NewsFeed:
        q = (query or "").strip()
        if not q:
            return NewsFeed(articles=[], source="error", notice="empty query")
        if not self.enabled:
            return self._fallback_feed(q, max_articles, "news API key not configured")
        if not self.quota.try_acquire(NEWS_SOURCE):
            return self._fallback_feed(q, max_articles, "news quota exhausted")

        params: Dict[str, Any] = {"q": q, "lang": lang, "max": max_articles, "sortby": sortby}
        if country:
            params["country"] = country
        if date_from:
            params["from"] = date_from
        if date_to:
            params["to"] = date_to

        try:
            payload = await self._get_json(GNEWS_URL, params)
            body = GNewsResponse.model_validate(payload)
        except UpstreamError as e:
            if e.is_rate_limit:
                self.quota.throttle(NEWS_SOURCE, e.retry_after or self.throttle_s)
            return self._fallback_feed(q, max_articles, str(e))
        except ValidationError as e:
            logger.warning(f"gnews: malformed payload for '{q}': {e.error_count()} errors")
            return self._fallback_feed(q, max_articles, "malformed news payload")

        logger.info(f"gnews: {len(body.articles)} articles for '{q}'")
        return NewsFeed(articles=body.articles, source="api")

    async def company_news(self, company_name: str, ticker: Optional[str] = None, max_articles: int = 15) -> NewsFeed:
        name = (company_name or ticker or "").strip()
        if not name:
            return NewsFeed(articles=[], source="error", notice="no company name")
        per_query = math.ceil(max_articles / 2)
        queries = [f'"{name}" ESG', f'"{name}" sustainability']
        results = await asyncio.gather(*(self.search(q, per_query) for q in queries), return_exceptions=True)

        seen = set()
        merged: List[NewsArticle] = []
        source, notice = "error", None
        for r in results:
            if isinstance(r, BaseException):
                logger.error(f"company news query failed for {name}: {r!r}")
                continue
            if source == "error":
                source, notice = r.source, r.notice
            for a in r.articles:
                if a.url not in seen:
                    seen.add(a.url)
                    merged.append(a)
        merged.sort(key=_published_ts, reverse=True)
        return NewsFeed(articles=merged[:max_articles], source=source, notice=notice)

    async def general_news(self, max_articles: int = 20) -> NewsFeed:
        # rotate the topic hourly
        q = GENERAL_QUERIES[int(self.clock() // 3600) % len(GENERAL_QUERIES)]
        return await self.search(q, max_articles)

    async def recent_news(self, query: str, days: int = 7, max_articles: int = 10) -> NewsFeed:
        since = datetime.fromtimestamp(self.clock(), tz=timezone.utc) - timedelta(days=days)
        return await self.search(query, max_articles, date_from=since.strftime("%Y-%m-%d"))


def annotate(articles: List[NewsArticle]) -> List[AnalyzedArticle]:
    return [AnalyzedArticle(article=a, analysis=controversy.analyze_article(a)) for a in articles]
