"""
Deterministic placeholder ESG data.

Every value is a pure function of (symbol, dimension): SHA-256 of the pair mapped
onto the target range. Same symbol => same numbers, across calls and restarts.
"""
from __future__ import annotations

import hashlib
from typing import Dict, Tuple

from impactey.models.records import ImpactMetrics

SCORE_FLOOR = 2.0
SCORE_CEIL = 8.5
DIMENSIONS = ("overall", "environmental", "social", "governance")

# metric -> (low, high, decimals)
_METRIC_RANGES: Dict[str, Tuple[float, float, int]] = {
    "carbon_footprint": (0.0, 100.0, 1),
    "water_usage": (0.0, 200000.0, 0),
    "waste_generated": (0.0, 50000.0, 0),
    "renewable_energy_pct": (0.0, 100.0, 1),
    "employee_satisfaction": (0.0, 10.0, 1),
    "diversity_score": (0.0, 10.0, 1),
    "board_independence": (0.0, 100.0, 1),
    "executive_pay_ratio": (0.0, 2000.0, 0),
}


def unit_hash(symbol: str, dimension: str) -> float:
    """Stable value in [0, 1) for (symbol, dimension)."""
    key = f"{symbol.strip().upper()}|{dimension}".encode("utf-8")
    digest = hashlib.sha256(key).digest()
    return int.from_bytes(digest[:8], "big") / float(1 << 64)


def _scaled(symbol: str, dimension: str, low: float, high: float, decimals: int) -> float:
    return round(low + (high - low) * unit_hash(symbol, dimension), decimals)


def synthetic_scores(symbol: str) -> Dict[str, float]:
    return {d: _scaled(symbol, f"esg:{d}", SCORE_FLOOR, SCORE_CEIL, 1) for d in DIMENSIONS}


def synthetic_impact_metrics(symbol: str) -> ImpactMetrics:
    return ImpactMetrics(**{
        name: _scaled(symbol, f"impact:{name}", lo, hi, dec)
        for name, (lo, hi, dec) in _METRIC_RANGES.items()
    })
