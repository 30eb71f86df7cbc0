from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from loguru import logger

from impactey.core.services import Services, get_services
from impactey.models.records import CatalogStatus, InstrumentKind, InstrumentRecord
from impactey.services.debounce import SearchDebouncer

router = APIRouter()


@router.get("/search")
def search_instruments(
    q: str = Query("", description="Ticker or company name fragment"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    results = services.catalog.search(q, limit)
    logger.info(f"Search '{q}' -> {len(results)} instruments")
    return {"query": q, "results": [r.model_dump(mode="json") for r in results], "total": len(results)}


@router.get("/status")
def catalog_status(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return services.catalog.stats()


@router.get("/list")
def list_instruments(
    kind: Optional[InstrumentKind] = None,
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    recs = services.catalog.instruments(kind)
    return {
        "total": len(recs),
        "items": [r.model_dump(mode="json") for r in recs[offset:offset + limit]],
    }


@router.post("/refresh")
async def refresh_catalog(invalidate: bool = False, services: Services = Depends(get_services)) -> Dict[str, Any]:
    if invalidate:
        await services.catalog.invalidate()
    else:
        await services.catalog.refresh()
    return services.catalog.stats()


@router.get("/{symbol}", response_model=InstrumentRecord)
def get_instrument(symbol: str, services: Services = Depends(get_services)) -> InstrumentRecord:
    rec = services.catalog.get_by_symbol(symbol)
    if rec is None:
        raise HTTPException(status_code=404, detail=f"instrument {symbol.upper()} not found")
    return rec


def _parse_query(raw: str, default_limit: int) -> Tuple[str, int]:
    """Accepts either a bare query string or {"query": ..., "limit": ...}."""
    try:
        msg = json.loads(raw)
    except ValueError:
        return raw, default_limit
    if isinstance(msg, dict):
        try:
            limit = int(msg.get("limit") or default_limit)
        except (TypeError, ValueError):
            limit = default_limit
        return str(msg.get("query") or ""), limit
    return str(msg), default_limit


@router.websocket("/ws")
async def instruments_ws(ws: WebSocket):
    """Typeahead: every message reschedules the search; only the settled query is answered."""
    services: Services = ws.app.state.services
    await ws.accept()
    outbox: asyncio.Queue = asyncio.Queue()

    def on_result(query: str, results: List[InstrumentRecord]) -> None:
        outbox.put_nowait({
            "type": "results",
            "query": query,
            "results": [r.model_dump(mode="json") for r in results],
        })

    def on_status(status: CatalogStatus) -> None:
        outbox.put_nowait({"type": "status", **status.model_dump(mode="json")})

    debouncer = SearchDebouncer(services.catalog.search, services.settings.search_debounce_s, on_result)
    unsubscribe = services.catalog.subscribe(on_status)

    async def pump():
        while True:
            await ws.send_json(await outbox.get())

    sender = asyncio.create_task(pump())
    try:
        while True:
            query, limit = _parse_query(await ws.receive_text(), services.settings.search_limit)
            debouncer.schedule(query, limit)
    except WebSocketDisconnect:
        logger.info("instruments ws: client disconnected")
    finally:
        unsubscribe()
        debouncer.cancel()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
