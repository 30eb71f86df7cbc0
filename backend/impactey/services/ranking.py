from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Tuple

from impactey.models.records import InstrumentKind, InstrumentRecord

# =============================================================================
# Mainstream policy
# =============================================================================
MAJOR_EXCHANGES: FrozenSet[str] = frozenset({
    "NYSE", "NASDAQ", "AMEX", "NYSEARCA", "ARCA", "BATS", "CBOE", "ETF",
    "TSX", "LSE", "XETRA", "EURONEXT", "SIX", "ASX", "HKSE", "JPX", "NSE",
})
OTC_EXCHANGES: FrozenSet[str] = frozenset({
    "OTC", "PNK", "OTCQB", "OTCQX", "OTCMKTS", "PINK", "GREY", "EXPM", "OTCBB",
})
TOP_TIER_EXCHANGES: FrozenSet[str] = frozenset({"NYSE", "NASDAQ"})

# leveraged / inverse / derivative / volatility / commodity / currency / crypto
_EXCLUDE_PATTERNS: Tuple[str, ...] = (
    r"\b[2-4]x\b", r"\bultra(pro|short)?\b", r"\bleveraged\b",
    r"\binverse\b", r"\bshort\b(?![\s-]*(term|duration|maturity))", r"\b(bull|bear)\s+(\d+x|shares)\b",
    r"\bdaily\s+(long|short)\b",
    r"\bvolatility\b", r"\bvix\b",
    r"\bfutures?\b", r"\boptions?\s+(income|strategy|overlay)\b", r"\bwarrants?\b", r"\bswaps?\b", r"\betn\b",
    r"\bcommodit(y|ies)\b", r"\boil\s+fund\b", r"\bnatural\s+gas\b",
    r"\bcurrency\b", r"\bcurrencyshares\b", r"\bforex\b",
    r"\bcrypto\w*\b", r"\bbitcoin\b", r"\bethereum\b", r"\bether\s+(etf|trust|fund)\b", r"\bblockchain\b",
)
_EXCLUDE_RE = re.compile("|".join(_EXCLUDE_PATTERNS), re.IGNORECASE)

WELL_KNOWN: FrozenSet[str] = frozenset({
    "AAPL", "MSFT", "AMZN", "GOOGL", "GOOG", "META", "TSLA", "NVDA", "BRK.B", "JPM",
    "JNJ", "V", "MA", "PG", "UNH", "HD", "XOM", "CVX", "KO", "PEP", "WMT", "DIS",
    "NFLX", "CRM", "PFE", "MRK", "ABBV", "BAC", "INTC", "CSCO", "ORCL", "ADBE",
    "NKE", "MCD", "COST", "UL", "IBM", "T", "VZ", "AMD",
})
MAJOR_INDEX_FUNDS: FrozenSet[str] = frozenset({
    "SPY", "VOO", "IVV", "VTI", "QQQ", "DIA", "IWM", "VEA", "VWO", "EFA", "EEM",
    "AGG", "BND", "VIG", "SCHD", "VUG", "VTV", "ESGU", "ESGV", "SUSA", "DSI",
})

SCORE_EXACT = 1000
SCORE_SYMBOL_PREFIX = 500
SCORE_NAME_PREFIX = 200
SCORE_WELL_KNOWN = 150
SCORE_INDEX_FUND = 100
SCORE_TOP_EXCHANGE = 50
SCORE_EQUITY = 10
PRICE_BANDS: Tuple[Tuple[float, int], ...] = ((100.0, 30), (50.0, 20), (10.0, 10))

@dataclass(frozen=True)
class MainstreamPolicy:
    min_price: float = 1.0
    exchanges: FrozenSet[str] = field(default=MAJOR_EXCHANGES)
    otc: FrozenSet[str] = field(default=OTC_EXCHANGES)

DEFAULT_POLICY = MainstreamPolicy()

# =============================================================================
# Filter
# =============================================================================
def is_excluded_product(symbol: str, name: str) -> bool:
    return bool(_EXCLUDE_RE.search(f"{symbol} {name}"))

def is_mainstream(rec: InstrumentRecord, policy: MainstreamPolicy = DEFAULT_POLICY) -> bool:
    ex = (rec.exchange_short_name or "").strip().upper()
    if ex in policy.otc or ex not in policy.exchanges:
        return False
    if rec.price < policy.min_price:
        return False
    return not is_excluded_product(rec.symbol, rec.name)

# =============================================================================
# Scoring
# =============================================================================
def _price_bonus(price: float) -> int:
    for floor, pts in PRICE_BANDS:
        if price > floor:
            return pts
    return 0

def relevance(rec: InstrumentRecord, q: str) -> int:
    """`q` is the lowercased, stripped query."""
    sym = rec.symbol.lower()
    score = 0
    if sym == q:
        score += SCORE_EXACT
    elif sym.startswith(q):
        score += SCORE_SYMBOL_PREFIX
    if rec.name.lower().startswith(q):
        score += SCORE_NAME_PREFIX
    up = rec.symbol.upper()
    if up in WELL_KNOWN:
        score += SCORE_WELL_KNOWN
    if up in MAJOR_INDEX_FUNDS:
        score += SCORE_INDEX_FUND
    if rec.exchange_short_name.upper() in TOP_TIER_EXCHANGES:
        score += SCORE_TOP_EXCHANGE
    if rec.kind == InstrumentKind.equity:
        score += SCORE_EQUITY
    return score + _price_bonus(rec.price)

def search(records: Iterable[InstrumentRecord], query: str, limit: int = 50,
           policy: MainstreamPolicy = DEFAULT_POLICY) -> List[InstrumentRecord]:
    """Filter to mainstream instruments matching `query`, rank, truncate. No I/O, no timing."""
    q = (query or "").strip().lower()
    if not q or limit <= 0:
        return []
    scored: List[Tuple[int, str, InstrumentRecord]] = []
    for rec in records:
        if not rec.symbol or not rec.name:
            continue
        if q not in rec.symbol.lower() and q not in rec.name.lower():
            continue
        if not is_mainstream(rec, policy):
            continue
        scored.append((relevance(rec, q), rec.symbol, rec))
    scored.sort(key=lambda t: (-t[0], t[1]))
    return [r for _, _, r in scored[:limit]]
