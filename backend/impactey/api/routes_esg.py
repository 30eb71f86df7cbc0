from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field

from impactey.core.services import Services, get_services
from impactey.models.records import UnifiedESGRecord

router = APIRouter()

CURATED_FIELDS = {"symbol", "name", "sector", "overall", "environmental", "social", "governance"}


class BatchInput(BaseModel):
    symbols: List[str] = Field(default_factory=list, max_length=200)


@router.get("/cache/stats")
def esg_cache_stats(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return services.resolver.cache_stats()


@router.delete("/cache")
def clear_esg_cache(symbol: Optional[str] = None, services: Services = Depends(get_services)) -> Dict[str, Any]:
    services.resolver.clear_cache(symbol)
    return {"cleared": symbol.upper() if symbol else "all"}


@router.get("/curated")
def curated_universe(
    sector: Optional[str] = None,
    q: Optional[str] = None,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    entries = services.curated.search(q or "")
    if sector:
        in_sector = {e.symbol for e in services.curated.by_sector(sector)}
        entries = [e for e in entries if e.symbol in in_sector]
    items = [
        {**e.model_dump(include=CURATED_FIELDS), "profile": e.is_profile}
        for e in sorted(entries, key=lambda e: e.symbol)
    ]
    return {"count": len(items), "items": items}


@router.post("/batch",response_model=List[UnifiedESGRecord])
async def esg_batch(payload: BatchInput, services: Services = Depends(get_services)):
    records = await services.resolver.resolve_many(payload.symbols)
    logger.info(f"ESG batch: {len(payload.symbols)} requested -> {len(records)} resolved")
    return records


@router.get("/{symbol}", response_model=UnifiedESGRecord)
async def esg_for_symbol(symbol: str, services: Services = Depends(get_services)):
    rec = await services.resolver.resolve(symbol)
    if rec is None:
        raise HTTPException(status_code=404, detail=f"invalid symbol: {symbol}")
    return rec
