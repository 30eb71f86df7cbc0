from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from loguru import logger
from pydantic import ValidationError

from impactey.models.records import CatalogStatus, InstrumentKind, InstrumentRecord
from impactey.services import ranking
from impactey.services.cache import CacheStore
from impactey.services.rate import CATALOG_SOURCE, QuotaTracker

PERSIST_KEY = "instruments"

Listener = Callable[[CatalogStatus], None]


class InstrumentSource(Protocol):
    enabled: bool

    async def stock_list(self) -> List[InstrumentRecord]: ...

    async def etf_list(self) -> List[InstrumentRecord]: ...


@dataclass(frozen=True)
class _Snapshot:
    equities: Tuple[InstrumentRecord, ...] = ()
    funds: Tuple[InstrumentRecord, ...] = ()
    fetched_at: Optional[float] = None
    by_symbol: Dict[str, InstrumentRecord] = field(default_factory=dict)

    @classmethod
    def build(cls, equities, funds, fetched_at: Optional[float]) -> "_Snapshot":
        index: Dict[str, InstrumentRecord] = {}
        for rec in (*equities, *funds):
            index.setdefault(rec.symbol.upper(), rec)  # equities win on duplicate symbols
        return cls(tuple(equities), tuple(funds), fetched_at, index)

    @property
    def records(self) -> List[InstrumentRecord]:
        return list(self.by_symbol.values())


class InstrumentCatalog:
    """
    Holds the instrument universe as an immutable snapshot that is swapped in one
    assignment; readers holding the previous snapshot are never affected.
    refresh() never raises and never runs twice concurrently.
    """
    def __init__(self,
                 source: InstrumentSource,
                 cache: CacheStore,
                 quota: QuotaTracker,
                 *,
                 ttl_s: float = 24 * 3600,
                 retention_s: float = 7 * 24 * 3600,
                 retry_s: float = 60.0,
                 min_expected_equities: int = 20000,
                 min_expected_funds: int = 1000,
                 policy: ranking.MainstreamPolicy = ranking.DEFAULT_POLICY,
                 search_limit: int = 50,
                 clock: Callable[[], float] = time.time):
        self.source = source
        self.cache = cache
        self.quota = quota
        self.ttl_s = ttl_s
        self.retention_s = retention_s
        self.retry_s = retry_s
        self.min_expected_equities = min_expected_equities
        self.min_expected_funds = min_expected_funds
        self.policy = policy
        self.search_limit = search_limit
        self.clock = clock

        self._snap = _Snapshot()
        self._loading = False
        self._error: Optional[str] = None
        self._warnings: List[str] = []
        self._last_attempt: Optional[float] = None
        self._inflight: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []

    # ---------------- observers ----------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self) -> None:
        status = self.status()
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.exception(f"catalog listener failed: {e}")

    # ---------------- state ----------------
    def status(self) -> CatalogStatus:
        snap = self._snap
        exchanges: Dict[str, int] = {}
        for kind, recs in ((InstrumentKind.equity, snap.equities), (InstrumentKind.fund, snap.funds)):
            exchanges[kind.value] = len({r.exchange_short_name for r in recs})
        return CatalogStatus(
            is_loading=self._loading,
            last_fetched=datetime.fromtimestamp(snap.fetched_at, tz=timezone.utc) if snap.fetched_at else None,
            error=self._error,
            warnings=list(self._warnings),
            equity_count=len(snap.equities),
            fund_count=len(snap.funds),
            exchanges=exchanges,
        )

    def stats(self) -> Dict[str, Any]:
        snap = self._snap
        main_eq = sum(1 for r in snap.equities if ranking.is_mainstream(r, self.policy))
        main_funds = sum(1 for r in snap.funds if ranking.is_mainstream(r, self.policy))
        out = self.status().model_dump(mode="json")
        out.update({
            "total": len(snap.by_symbol),
            "mainstream_equities": main_eq,
            "mainstream_funds": main_funds,
            "stale": self.is_stale(),
        })
        return out

    def instruments(self, kind: Optional[InstrumentKind] = None) -> List[InstrumentRecord]:
        snap = self._snap
        if kind == InstrumentKind.equity:
            return list(snap.equities)
        if kind == InstrumentKind.fund:
            return list(snap.funds)
        return snap.records

    def get_by_symbol(self, symbol: str) -> Optional[InstrumentRecord]:
        if not symbol:
            return None
        return self._snap.by_symbol.get(symbol.strip().upper())

    def is_stale(self) -> bool:
        fetched = self._snap.fetched_at
        return fetched is None or (self.clock() - fetched) >= self.ttl_s

    # ---------------- persistence ----------------
    def load_persisted(self) -> bool:
        payload = self.cache.get(PERSIST_KEY)
        if not payload:
            return False
        try:
            equities = [InstrumentRecord.model_validate(r) for r in payload.get("equities", [])]
            funds = [InstrumentRecord.model_validate(r) for r in payload.get("funds", [])]
            fetched_at = payload.get("fetched_at")
            fetched_at = float(fetched_at) if fetched_at is not None else None
        except (ValidationError, AttributeError, TypeError, ValueError) as e:
            logger.warning(f"catalog: persisted snapshot unusable, ignoring: {e}")
            return False
        self._snap = _Snapshot.build(equities, funds, fetched_at)
        logger.info(f"catalog: loaded {len(equities)} equities + {len(funds)} funds from cache")
        self._emit()
        return True

    def _persist(self, snap: _Snapshot) -> None:
        self.cache.set(PERSIST_KEY, {
            "fetched_at": snap.fetched_at,
            "equities": [r.model_dump(mode="json") for r in snap.equities],
            "funds": [r.model_dump(mode="json") for r in snap.funds],
        }, self.retention_s, check=False)

    # ---------------- refresh ----------------
    def _start(self) -> asyncio.Task:
        task = self._inflight
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._refresh())
            self._inflight = task
        else:
            logger.info("catalog refresh already in progress; joining it")
        return task

    async def refresh(self) -> None:
        await asyncio.shield(self._start())

    async def invalidate(self) -> None:
        """Drop the persisted snapshot and refetch (in-memory data is kept until the swap)."""
        self.cache.clear(PERSIST_KEY)
        await self.refresh()

    async def shutdown(self) -> None:
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    def ensure_fresh(self) -> bool:
        """Kick a background refresh when stale. Never blocks; returns True if one was scheduled."""
        if not self.is_stale():
            return False
        if self._inflight is not None and not self._inflight.done():
            return False
        if self._error and self._last_attempt is not None and self.clock() - self._last_attempt < self.retry_s:
            return False
        try:
            self._start()
        except RuntimeError:
            logger.debug("catalog: no running loop, background refresh skipped")
            return False
        return True

    async def _refresh(self) -> None:
        self._last_attempt = self.clock()
        if not getattr(self.source, "enabled", True):
            self._error = "instrument source not configured (FMP_API_KEY missing)"
            logger.warning(f"catalog: {self._error}")
            self._emit()
            return
        if not self.quota.try_acquire(CATALOG_SOURCE):
            self._error = "catalog refresh quota exhausted; serving cached data"
            self._emit()
            return

        self._loading = True
        self._error = None
        self._emit()
        t0 = time.monotonic()
        try:
            eq_res, fund_res = await asyncio.gather(
                self.source.stock_list(), self.source.etf_list(), return_exceptions=True
            )
            prev = self._snap
            errors: List[str] = []
            warnings: List[str] = []

            equities = prev.equities
            if isinstance(eq_res, BaseException):
                errors.append(f"equities: {eq_res}")
            else:
                equities = tuple(eq_res)
                if len(equities) < self.min_expected_equities:
                    warnings.append(f"low equity count: expected {self.min_expected_equities}+, got {len(equities)}")

            funds = prev.funds
            if isinstance(fund_res, BaseException):
                errors.append(f"funds: {fund_res}")
            else:
                funds = tuple(fund_res)
                if len(funds) < self.min_expected_funds:
                    warnings.append(f"low fund count: expected {self.min_expected_funds}+, got {len(funds)}")

            fetched_at = prev.fetched_at if errors else self.clock()
            if len(errors) < 2:
                snap = _Snapshot.build(equities, funds, fetched_at)
                self._snap = snap  # atomic swap
                self._persist(snap)

            for w in warnings:
                logger.warning(f"catalog data quality: {w}")
            self._warnings = warnings
            if errors:
                self._error = "; ".join(errors)
                logger.error(f"catalog refresh failed ({self._error}); keeping previous data for failed parts")
            logger.info(
                f"catalog refresh done in {(time.monotonic() - t0) * 1000:.0f}ms: "
                f"{len(self._snap.equities)} equities, {len(self._snap.funds)} funds"
            )
        except Exception as e:
            logger.exception(f"catalog refresh crashed: {e}")
            self._error = str(e) or e.__class__.__name__
        finally:
            self._loading = False
            self._emit()

    # ---------------- search ----------------
    def search(self, query: str, limit: Optional[int] = None) -> List[InstrumentRecord]:
        if not (query or "").strip():
            return []
        self.ensure_fresh()
        snap = self._snap
        if not snap.by_symbol:
            logger.warning("catalog: no instrument data available for search")
            return []
        return ranking.search(snap.by_symbol.values(), query, self.search_limit if limit is None else limit, self.policy)
