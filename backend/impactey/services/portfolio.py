from __future__ import annotations

from collections import Counter
from typing import Dict, List, Optional, Sequence

import numpy as np
from loguru import logger

from impactey.models.records import (
    BenchmarkDelta,
    ESGBenchmark,
    HoldingScore,
    PortfolioAnalysis,
    PortfolioHolding,
    UnifiedESGRecord,
)
from impactey.services.esg import ESGResolver, normalize_symbol

BENCHMARKS: List[ESGBenchmark] = [
    ESGBenchmark(name="MSCI ESG Leaders", overall=7.8, environmental=7.9, social=7.7, governance=7.8,
                 description="Companies with the highest ESG scores in each sector"),
    ESGBenchmark(name="S&P 500 ESG", overall=6.8, environmental=6.5, social=7.0, governance=6.9,
                 description="S&P 500 companies with strong ESG practices"),
    ESGBenchmark(name="FTSE4Good Index", overall=7.5, environmental=7.6, social=7.4, governance=7.5,
                 description="Global index of companies meeting ESG criteria"),
    ESGBenchmark(name="Market Average", overall=5.8, environmental=5.5, social=6.0, governance=5.9,
                 description="Average ESG scores across all public companies"),
]

_DIMS = ("overall", "environmental", "social", "governance")


def compare_to_benchmarks(scores: Dict[str, float],
                          benchmarks: Sequence[ESGBenchmark] = BENCHMARKS) -> List[BenchmarkDelta]:
    return [
        BenchmarkDelta(
            name=b.name,
            overall_delta=round(scores["overall"] - b.overall, 2),
            environmental_delta=round(scores["environmental"] - b.environmental, 2),
            social_delta=round(scores["social"] - b.social, 2),
            governance_delta=round(scores["governance"] - b.governance, 2),
        )
        for b in benchmarks
    ]


def weighted_scores(holdings: Sequence[HoldingScore], use_weights: bool) -> Dict[str, float]:
    """
    Weighted mean of the four scores over covered holdings.
    With use_weights a missing weight counts as 0, otherwise every holding counts 1.
    """
    covered = [h for h in holdings if h.esg is not None]
    if not covered:
        return {d: 0.0 for d in _DIMS}
    w = np.array([(h.weight or 0.0) if use_weights else 1.0 for h in covered], dtype=float)
    total = w.sum()
    if total <= 0:
        return {d: 0.0 for d in _DIMS}
    m = np.array([[getattr(h.esg, d) for d in _DIMS] for h in covered], dtype=float)
    avg = (w @ m) / total
    return {d: round(float(v), 2) for d, v in zip(_DIMS, avg)}


class PortfolioAnalyzer:
    def __init__(self, resolver: ESGResolver, benchmarks: Sequence[ESGBenchmark] = BENCHMARKS):
        self.resolver = resolver
        self.benchmarks = list(benchmarks)

    async def score_holdings(self, holdings: Sequence[PortfolioHolding]) -> List[HoldingScore]:
        resolved = await self.resolver.resolve_many([h.ticker for h in holdings])
        by_symbol: Dict[str, UnifiedESGRecord] = {r.symbol: r for r in resolved}
        out: List[HoldingScore] = []
        for h in holdings:
            sym = normalize_symbol(h.ticker)
            rec: Optional[UnifiedESGRecord] = by_symbol.get(sym) if sym else None
            out.append(HoldingScore(
                ticker=h.ticker,
                weight=h.weight,
                company_name=rec.company_name if rec else None,
                sector=rec.sector if rec else None,
                esg=rec,
            ))
        return out

    async def analyze(self, holdings: Sequence[PortfolioHolding]) -> PortfolioAnalysis:
        scored = await self.score_holdings(holdings)
        # missing (or zero) weights count as 1 for totals and coverage
        total_weight = float(sum(h.weight or 1.0 for h in scored))
        covered_weight = float(sum(h.weight or 1.0 for h in scored if h.esg is not None))
        coverage = covered_weight / total_weight * 100.0 if total_weight else 0.0

        use_weights = any(h.weight is not None for h in scored)
        scores = weighted_scores(scored, use_weights)

        tiers = Counter(h.esg.source_tier.value if h.esg else "unresolved" for h in scored)
        logger.info(
            f"portfolio: {len(scored)} holdings, coverage {coverage:.1f}%, "
            f"overall {scores['overall']} ({dict(tiers)})"
        )
        return PortfolioAnalysis(
            **scores,
            total_weight=total_weight,
            coverage_pct=round(coverage, 2),
            tiers=dict(tiers),
            holdings=scored,
            benchmarks=compare_to_benchmarks(scores, self.benchmarks) if any(h.esg for h in scored) else [],
        )
