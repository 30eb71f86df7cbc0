from __future__ import annotations

import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from impactey.models.records import FmpEsgRow, InstrumentRecord, SourceTier, UnifiedESGRecord
from impactey.services.cache import CacheStore
from impactey.services.curated import CuratedDataset, CuratedEntry
from impactey.services.rate import ESG_SOURCE, QuotaTracker
from impactey.services.synthetic import synthetic_scores
from impactey.services.upstream import UpstreamError

SYMBOL_RE = re.compile(r"^[A-Z0-9^][A-Z0-9.\-=^]{0,19}$")


class EsgSource(Protocol):
    enabled: bool

    async def esg_scores(self, symbol: str) -> List[FmpEsgRow]: ...


class SymbolDirectory(Protocol):
    def get_by_symbol(self, symbol: str) -> Optional[InstrumentRecord]: ...


def normalize_symbol(symbol: Optional[str]) -> Optional[str]:
    sym = (symbol or "").strip().upper()
    if not sym or not SYMBOL_RE.match(sym):
        return None
    return sym


def _to_ten_scale(row: FmpEsgRow) -> Dict[str, float]:
    raw = {
        "overall": row.esgScore,
        "environmental": row.environmentScore,
        "social": row.socialScore,
        "governance": row.governanceScore,
    }
    for k, v in raw.items():
        if not 0.0 <= v <= 100.0:
            raise UpstreamError("fmp", f"esg: {k} score {v} out of range")
    # FMP reports 0-100; older rows already on 0-10
    div = 10.0 if max(raw.values()) > 10.0 else 1.0
    return {k: round(v / div, 1) for k, v in raw.items()}


class ESGResolver:
    """
    Resolves a ticker to one UnifiedESGRecord, trying in order:
    cache -> live (FMP) -> curated dataset -> synthetic.
    The synthetic tier always answers, so any valid symbol resolves.
    """
    def __init__(self,
                 source: EsgSource,
                 curated: CuratedDataset,
                 cache: CacheStore,
                 quota: QuotaTracker,
                 catalog: Optional[SymbolDirectory] = None,
                 *,
                 live_ttl_s: float = 300.0,
                 curated_ttl_s: float = 3600.0,
                 synthetic_ttl_s: float = 120.0,
                 throttle_s: float = 60.0,
                 max_concurrency: int = 6,
                 clock: Callable[[], float] = time.time):
        self.source = source
        self.curated = curated
        self.cache = cache
        self.quota = quota
        self.catalog = catalog
        self.live_ttl_s = live_ttl_s
        self.curated_ttl_s = curated_ttl_s
        self.synthetic_ttl_s = synthetic_ttl_s
        self.throttle_s = throttle_s
        self.max_concurrency = max(1, max_concurrency)
        self.clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def _catalog_name(self, sym: str) -> Optional[str]:
        if self.catalog is None:
            return None
        rec = self.catalog.get_by_symbol(sym)
        return rec.name if rec else None

    # ---------------- tiers ----------------
    def _from_cache(self, sym: str) -> Optional[UnifiedESGRecord]:
        payload = self.cache.get(sym)
        if payload is None:
            return None
        try:
            return UnifiedESGRecord.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"esg cache entry for {sym} unreadable, ignoring: {e.error_count()} errors")
            return None

    async def _from_live(self, sym: str) -> Optional[UnifiedESGRecord]:
        if not getattr(self.source, "enabled", False):
            return None
        if not self.quota.try_acquire(ESG_SOURCE):
            logger.info(f"esg live tier skipped for {sym}: quota exhausted")
            return None
        try:
            rows = await self.source.esg_scores(sym)
            if not rows:
                logger.info(f"esg live tier: no data for {sym}")
                return None
            scores = _to_ten_scale(rows[0])
        except UpstreamError as e:
            if e.is_rate_limit:
                self.quota.throttle(ESG_SOURCE, e.retry_after or self.throttle_s)
            logger.warning(f"esg live tier failed for {sym}: {e}")
            return None
        except Exception as e:
            logger.exception(f"esg live tier crashed for {sym}: {e}")
            return None

        entry = self.curated.get(sym)
        return UnifiedESGRecord(
            symbol=sym,
            company_name=entry.name if entry else (self._catalog_name(sym) or sym),
            sector=entry.sector if entry else "Unknown",
            source_tier=SourceTier.live,
            resolved_at=self._now(),
            detail=entry.detail() if entry else None,
            **scores,
        )

    def _from_curated(self, sym: str) -> Optional[UnifiedESGRecord]:
        entry: Optional[CuratedEntry] = self.curated.get(sym)
        if entry is None:
            return None
        return UnifiedESGRecord(
            symbol=sym,
            company_name=entry.name,
            sector=entry.sector,
            overall=entry.overall,
            environmental=entry.environmental,
            social=entry.social,
            governance=entry.governance,
            source_tier=SourceTier.curated,
            resolved_at=self._now(),
            detail=entry.detail(),
        )

    def _from_synthetic(self, sym: str) -> UnifiedESGRecord:
        return UnifiedESGRecord(
            symbol=sym,
            company_name=self._catalog_name(sym) or sym,
            source_tier=SourceTier.synthetic,
            resolved_at=self._now(),
            **synthetic_scores(sym),
        )

    def _ttl(self, tier: SourceTier) -> float:
        if tier == SourceTier.live:
            return self.live_ttl_s
        if tier == SourceTier.curated:
            return self.curated_ttl_s
        return self.synthetic_ttl_s

    # ---------------- public ----------------
    async def resolve(self, symbol: str) -> Optional[UnifiedESGRecord]:
        sym = normalize_symbol(symbol)
        if sym is None:
            logger.debug(f"esg: rejecting invalid symbol {symbol!r}")
            return None

        cached = self._from_cache(sym)
        if cached is not None:
            return cached

        rec = await self._from_live(sym)
        if rec is None:
            rec = self._from_curated(sym)
        if rec is None:
            rec = self._from_synthetic(sym)

        self.cache.set(sym, rec.model_dump(mode="json"), self._ttl(rec.source_tier))
        logger.info(f"esg: {sym} resolved from {rec.source_tier.value} tier (overall {rec.overall})")
        return rec

    async def resolve_many(self, symbols: List[str]) -> List[UnifiedESGRecord]:
        unique: List[str] = []
        seen = set()
        for s in symbols:
            sym = normalize_symbol(s)
            if sym and sym not in seen:
                seen.add(sym)
                unique.append(sym)
        if not unique:
            return []

        sem = asyncio.Semaphore(self.max_concurrency)

        async def one(sym: str) -> Optional[UnifiedESGRecord]:
            async with sem:
                return await self.resolve(sym)

        results = await asyncio.gather(*(one(s) for s in unique), return_exceptions=True)
        out: List[UnifiedESGRecord] = []
        for sym, r in zip(unique, results):
            if isinstance(r, BaseException):
                logger.error(f"esg: resolve crashed for {sym}: {r!r}")
            elif r is not None:
                out.append(r)
        return out

    def clear_cache(self, symbol: Optional[str] = None) -> None:
        if symbol is None:
            self.cache.clear_all()
            logger.info("esg: cache cleared")
            return
        sym = normalize_symbol(symbol)
        if sym:
            self.cache.clear(sym)

    def cache_stats(self) -> Dict[str, Any]:
        stats = self.cache.stats()
        stats["quota"] = self.quota.status().get(ESG_SOURCE)
        return stats
