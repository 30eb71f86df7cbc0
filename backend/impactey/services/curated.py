from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from impactey.models.records import Controversy, CuratedDetail, ImpactMetrics
from impactey.services.synthetic import synthetic_impact_metrics

CURATED_PATH = Path(__file__).resolve().parents[1] / "assets" / "curated_esg.json"


class CuratedEntry(BaseModel):
    symbol: str
    name: str
    sector: str = "Unknown"
    overall: float = Field(ge=0.0, le=10.0)
    environmental: float = Field(ge=0.0, le=10.0)
    social: float = Field(ge=0.0, le=10.0)
    governance: float = Field(ge=0.0, le=10.0)
    # profiles only; score-only entries leave these empty
    summary: Optional[str] = None
    controversies: List[Controversy] = Field(default_factory=list)
    impact_metrics: Optional[ImpactMetrics] = None
    last_updated: Optional[str] = None

    @property
    def is_profile(self) -> bool:
        return self.summary is not None

    def detail(self) -> Optional[CuratedDetail]:
        if not self.is_profile:
            return None
        return CuratedDetail(
            summary=self.summary or "",
            controversies=list(self.controversies),
            impact_metrics=self.impact_metrics or synthetic_impact_metrics(self.symbol),
        )


class CuratedDataset:
    """Small hand-maintained ESG dataset bundled with the package."""

    def __init__(self, entries: List[CuratedEntry]):
        self._by_symbol: Dict[str, CuratedEntry] = {}
        for e in entries:
            sym = e.symbol.strip().upper()
            # detailed profiles take precedence over score-only rows
            if sym not in self._by_symbol or (e.is_profile and not self._by_symbol[sym].is_profile):
                self._by_symbol[sym] = e

    @classmethod
    def load(cls, path: Path = CURATED_PATH) -> "CuratedDataset":
        entries: List[CuratedEntry] = []
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            for p in raw.get("profiles", []):
                entries.append(CuratedEntry.model_validate(p))
            for sym, row in (raw.get("scores") or {}).items():
                entries.append(CuratedEntry.model_validate({"symbol": sym, **row}))
            logger.info(f"Loaded curated ESG dataset: {path} with {len(entries)} rows.")
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed loading curated ESG dataset {path}: {e}")
        return cls(entries)

    def __len__(self) -> int:
        return len(self._by_symbol)

    def get(self, symbol: str) -> Optional[CuratedEntry]:
        return self._by_symbol.get((symbol or "").strip().upper())

    def by_sector(self, sector: str) -> List[CuratedEntry]:
        s = (sector or "").strip().lower()
        return [e for e in self._by_symbol.values() if s in e.sector.lower()]

    def search(self, query: str) -> List[CuratedEntry]:
        q = (query or "").strip().lower()
        if not q:
            return list(self._by_symbol.values())
        return [
            e for e in self._by_symbol.values()
            if q in e.name.lower() or q in e.sector.lower() or q in e.symbol.lower()
        ]
