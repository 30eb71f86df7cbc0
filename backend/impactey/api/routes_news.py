from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from impactey.core.services import Services, get_services
from impactey.models.records import NewsArticle, NewsFeed
from impactey.services import controversy
from impactey.services.esg import normalize_symbol
from impactey.services.news_client import annotate

router = APIRouter()


class AnalyzeInput(BaseModel):
    texts: List[str] = Field(default_factory=list)
    articles: List[NewsArticle] = Field(default_factory=list)
    min_severity: str = "medium"


def _feed_body(feed: NewsFeed, analyze: bool) -> Dict[str, Any]:
    body = feed.model_dump(mode="json")
    if analyze:
        analyzed = annotate(feed.articles)
        body["analyses"] = [a.analysis.model_dump() for a in analyzed]
        body["stats"] = controversy.controversy_stats([a.analysis for a in analyzed])
    return body


@router.get("/search")
async def news_search(
    q: str = Query(..., min_length=1),
    max: int = Query(20, ge=1, le=100),
    lang: str = "en",
    country: Optional[str] = None,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    sortby: str = Query("publishedAt", pattern="^(publishedAt|relevance)$"),
    analyze: bool = False,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    feed = await services.news.search(q, max, lang=lang, country=country,
                                      date_from=date_from, date_to=date_to, sortby=sortby)
    return _feed_body(feed, analyze)


@router.get("/general")
async def news_general(
    max: int = Query(20, ge=1, le=100),
    analyze: bool = False,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return _feed_body(await services.news.general_news(max), analyze)


@router.get("/recent")
async def news_recent(
    q: str = Query(..., min_length=1),
    days: int = Query(7, ge=1, le=30),
    max: int = Query(10, ge=1, le=100),
    analyze: bool = False,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return _feed_body(await services.news.recent_news(q, days, max), analyze)


@router.get("/company/{symbol}")
async def news_for_company(
    symbol: str,
    max: int = Query(15, ge=1, le=50),
    analyze: bool = True,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    sym = normalize_symbol(symbol)
    if sym is None:
        raise HTTPException(status_code=404, detail=f"invalid symbol: {symbol}")
    entry = services.curated.get(sym)
    rec = services.catalog.get_by_symbol(sym)
    name = entry.name if entry else (rec.name if rec else sym)
    body = _feed_body(await services.news.company_news(name, sym, max), analyze)
    body["company"] = name
    return body


@router.post("/analyze")
def analyze_news(payload: AnalyzeInput) -> Dict[str, Any]:
    text_results = controversy.analyze_batch(payload.texts)
    article_results = [controversy.analyze_article(a) for a in payload.articles]
    return {
        "texts": [r.model_dump() for r in text_results],
        "articles": [r.model_dump() for r in article_results],
        "flagged": [
            a.model_dump() for a in
            controversy.filter_by_controversy(payload.articles, article_results, payload.min_severity)
        ],
        "stats": controversy.controversy_stats(text_results + article_results),
    }
