# backend/impactey/core/services.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from loguru import logger

from impactey.core.settings import Settings
from impactey.services.cache import CacheStore, JsonFileStore, KeyValueStore
from impactey.services.catalog import InstrumentCatalog
from impactey.services.curated import CuratedDataset
from impactey.services.esg import ESGResolver
from impactey.services.fmp_client import FmpClient
from impactey.services.news_client import NewsClient
from impactey.services.portfolio import PortfolioAnalyzer
from impactey.services.ranking import MainstreamPolicy
from impactey.services.rate import CATALOG_SOURCE, ESG_SOURCE, NEWS_SOURCE, QuotaRule, QuotaTracker


@dataclass
class Services:
    settings: Settings
    quota: QuotaTracker
    fmp: FmpClient
    news: NewsClient
    curated: CuratedDataset
    catalog: InstrumentCatalog
    resolver: ESGResolver
    portfolio: PortfolioAnalyzer

    async def close(self) -> None:
        await self.catalog.shutdown()
        await self.fmp.close()
        await self.news.close()


def build_services(settings: Settings,
                   store: Optional[KeyValueStore] = None,
                   fmp: Optional[FmpClient] = None,
                   news: Optional[NewsClient] = None,
                   curated: Optional[CuratedDataset] = None) -> Services:
    """Wire every component once per process. Tests pass their own store/clients."""
    store = store or JsonFileStore(settings.cache_dir)
    quota = QuotaTracker({
        ESG_SOURCE: QuotaRule(settings.esg_quota_limit, settings.esg_quota_window_s),
        NEWS_SOURCE: QuotaRule(settings.news_quota_limit, settings.news_quota_window_s),
        CATALOG_SOURCE: QuotaRule(settings.catalog_quota_limit, settings.catalog_quota_window_s),
    })
    fmp = fmp or FmpClient(settings.fmp_api_key, timeout_s=settings.http_timeout_s)
    news = news or NewsClient(settings.gnews_api_key, quota,
                              timeout_s=settings.http_timeout_s, throttle_s=settings.throttle_s)
    curated = curated or CuratedDataset.load()

    catalog = InstrumentCatalog(
        fmp,
        CacheStore(store, "catalog"),
        quota,
        ttl_s=settings.catalog_ttl_s,
        retention_s=settings.catalog_retention_s,
        retry_s=settings.catalog_retry_s,
        min_expected_equities=settings.min_expected_equities,
        min_expected_funds=settings.min_expected_funds,
        policy=MainstreamPolicy(min_price=settings.min_price),
        search_limit=settings.search_limit,
    )
    resolver = ESGResolver(
        fmp,
        curated,
        CacheStore(store, "esg"),
        quota,
        catalog,
        live_ttl_s=settings.esg_live_ttl_s,
        curated_ttl_s=settings.esg_curated_ttl_s,
        synthetic_ttl_s=settings.esg_synthetic_ttl_s,
        throttle_s=settings.throttle_s,
        max_concurrency=settings.resolve_concurrency,
    )
    logger.info(
        f"services ready: fmp key {'present' if fmp.enabled else 'missing'}, "
        f"gnews key {'present' if news.enabled else 'missing'}, {len(curated)} curated tickers"
    )
    return Services(
        settings=settings,
        quota=quota,
        fmp=fmp,
        news=news,
        curated=curated,
        catalog=catalog,
        resolver=resolver,
        portfolio=PortfolioAnalyzer(resolver),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
