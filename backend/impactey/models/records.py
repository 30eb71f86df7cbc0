from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator


class InstrumentKind(str, Enum):
    equity = "equity"
    fund = "fund"


class SourceTier(str, Enum):
    live = "live"
    curated = "curated"
    synthetic = "synthetic"


class InstrumentRecord(BaseModel):
    symbol: str
    name: str
    price: float = 0.0
    exchange: str = "Unknown"
    exchange_short_name: str = "Unknown"
    kind: InstrumentKind = InstrumentKind.equity
    market_cap: Optional[float] = None

    model_config = ConfigDict(frozen=True)


# ---------- upstream payloads (validated at the boundary) ----------

class FmpListingRow(BaseModel):
    # FMP /stock/list and /etf/list rows; price and exchange are often null
    symbol: str = Field(min_length=1)
    name: str = Field(min_length=1)
    price: Optional[float] = None
    exchange: Optional[str] = None
    exchangeShortName: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    def to_record(self, kind: InstrumentKind) -> InstrumentRecord:
        return InstrumentRecord(
            symbol=self.symbol.strip().upper(),
            name=self.name.strip(),
            price=float(self.price or 0.0),
            exchange=self.exchange or "Unknown",
            exchange_short_name=self.exchangeShortName or "Unknown",
            kind=kind,
        )


class FmpEsgRow(BaseModel):
    symbol: str
    esgScore: float
    environmentScore: float
    socialScore: float
    governanceScore: float

    model_config = ConfigDict(extra="ignore")


class NewsSource(BaseModel):
    name: str = ""
    url: str = ""


class NewsArticle(BaseModel):
    title: str = ""
    description: str = ""
    content: str = ""
    url: str
    image: Optional[str] = None
    publishedAt: str = ""
    source: NewsSource = Field(default_factory=NewsSource)

    model_config = ConfigDict(extra="ignore")


class GNewsResponse(BaseModel):
    totalArticles: int = 0
    articles: List[NewsArticle]

    model_config = ConfigDict(extra="ignore")


# ---------- ESG ----------

class Controversy(BaseModel):
    title: str
    year: str
    severity: str  # low | medium | high


class ImpactMetrics(BaseModel):
    carbon_footprint: float
    water_usage: float
    waste_generated: float
    renewable_energy_pct: float
    employee_satisfaction: float
    diversity_score: float
    board_independence: float
    executive_pay_ratio: float


class CuratedDetail(BaseModel):
    summary: str = ""
    controversies: List[Controversy] = Field(default_factory=list)
    impact_metrics: Optional[ImpactMetrics] = None


class UnifiedESGRecord(BaseModel):
    symbol: str
    company_name: str
    sector: str = "Unknown"
    overall: float = Field(ge=0.0, le=10.0)
    environmental: float = Field(ge=0.0, le=10.0)
    social: float = Field(ge=0.0, le=10.0)
    governance: float = Field(ge=0.0, le=10.0)
    source_tier: SourceTier
    resolved_at: datetime
    detail: Optional[CuratedDetail] = None

    model_config = ConfigDict(frozen=True)


# ---------- controversy ----------

class ControversyAnalysis(BaseModel):
    is_controversial: bool
    severity: str  # low | medium | high
    category: str  # environmental | social | governance | general
    confidence: float = Field(ge=0.0, le=1.0)
    keywords: List[str] = Field(default_factory=list)
    summary: str


class AnalyzedArticle(BaseModel):
    article: NewsArticle
    analysis: ControversyAnalysis


class NewsFeed(BaseModel):
    articles: List[NewsArticle] = Field(default_factory=list)
    source: str = "error"  # api | fallback | error
    notice: Optional[str] = None


# ---------- catalog ----------

class CatalogStatus(BaseModel):
    is_loading: bool = False
    last_fetched: Optional[datetime] = None
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    equity_count: int = 0
    fund_count: int = 0
    exchanges: Dict[str, int] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.equity_count + self.fund_count


# ---------- portfolio ----------

class PortfolioHolding(BaseModel):
    ticker: str
    weight: Optional[float] = None

    @field_validator("ticker")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()


class HoldingScore(BaseModel):
    ticker: str
    weight: Optional[float] = None
    company_name: Optional[str] = None
    sector: Optional[str] = None
    esg: Optional[UnifiedESGRecord] = None


class ESGBenchmark(BaseModel):
    name: str
    overall: float
    environmental: float
    social: float
    governance: float
    description: str


class BenchmarkDelta(BaseModel):
    name: str
    overall_delta: float
    environmental_delta: float
    social_delta: float
    governance_delta: float


class PortfolioAnalysis(BaseModel):
    overall: float = 0.0
    environmental: float = 0.0
    social: float = 0.0
    governance: float = 0.0
    total_weight: float = 0.0
    coverage_pct: float = 0.0
    tiers: Dict[str, int] = Field(default_factory=dict)
    holdings: List[HoldingScore] = Field(default_factory=list)
    benchmarks: List[BenchmarkDelta] = Field(default_factory=list)
