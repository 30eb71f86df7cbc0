# backend/impactey/services/controversy.py
from __future__ import annotations

from typing import Dict, List, Sequence

from impactey.models.records import ControversyAnalysis, NewsArticle

SEVERITY_KEYWORDS: Dict[str, List[str]] = {
    "high": [
        "lawsuit", "fraud", "scandal", "corruption", "bribery", "violation",
        "illegal", "criminal", "felony", "indictment", "guilty", "convicted",
        "fined", "penalty", "sanctions", "banned", "suspended", "terminated",
    ],
    "medium": [
        "protest", "boycott", "breach", "misconduct", "allegation", "accused",
        "investigation", "probe", "inquiry", "criticism", "controversy", "disputed",
        "questioned", "challenged", "recalled", "warning",
    ],
    "low": [
        "concern", "issue", "problem", "risk", "threat", "challenge",
        "decline", "drop", "fall", "loss", "deficit", "shortfall",
    ],
}

DOMAIN_KEYWORDS: Dict[str, List[str]] = {
    "environmental": [
        "pollution", "contamination", "spill", "leak", "toxic", "emissions",
        "deforestation", "greenwashing", "climate denial", "carbon fraud",
        "environmental damage", "ecosystem destruction", "biodiversity loss",
    ],
    "social": [
        "discrimination", "harassment", "labor violation", "child labor",
        "unsafe working", "human rights", "wage theft", "exploitation",
        "workplace death", "injury", "safety violation", "union busting",
    ],
    "governance": [
        "board misconduct", "executive scandal", "shareholder fraud", "insider trading",
        "conflicts of interest", "governance failure", "transparency issues",
        "accounting fraud", "audit problems",
    ],
}

POSITIVE_KEYWORDS: List[str] = [
    "award", "recognition", "achievement", "milestone", "success", "improvement",
    "progress", "innovation", "leadership", "best practice", "certification",
    "accreditation", "commitment", "pledge", "initiative",
]

WEIGHTS = {"high": 3.0, "medium": 2.0, "low": 1.0, "domain": 1.5, "positive": -1.0}

SEVERITY_ORDER = {"low": 1, "medium": 2, "high": 3}

_SEVERITY_LABELS = {"low": "Minor concerns", "medium": "Moderate issues", "high": "Serious allegations"}
_CATEGORY_LABELS = {
    "environmental": "Environmental",
    "social": "Social",
    "governance": "Governance",
    "general": "General ESG",
}

NO_CONTROVERSY = "No significant controversy indicators detected."


def _hits(text: str, keywords: Sequence[str]) -> List[str]:
    return [k for k in keywords if k in text]


def _category(domain_hits: Dict[str, List[str]]) -> str:
    counts = {d: len(h) for d, h in domain_hits.items()}
    best = max(counts.values(), default=0)
    if best == 0:
        return "general"
    leaders = [d for d in DOMAIN_KEYWORDS if counts[d] == best]
    if len(leaders) == 3:
        return "general"
    return leaders[0]


def _summary(controversial: bool, severity: str, category: str, keywords: List[str]) -> str:
    if not controversial:
        return NO_CONTROVERSY
    head = f"{_SEVERITY_LABELS[severity]} detected in {_CATEGORY_LABELS[category]} context"
    if keywords:
        return f"{head} ({', '.join(keywords[:3])})."
    return f"{head}."


def analyze(text: str) -> ControversyAnalysis:
    """
    Keyword scan of free text (case-insensitive substring matching).

    score = 3*high + 2*medium + 1*low + 1.5*domain - 1*positive
    severity: high if any high hit or score >= 6, medium if any medium hit or
    score >= 3, else low. Controversial iff score >= 1 and positive hits are
    fewer than high + medium hits.
    """
    t = (text or "").lower()
    sev = {s: _hits(t, kws) for s, kws in SEVERITY_KEYWORDS.items()}
    dom = {d: _hits(t, kws) for d, kws in DOMAIN_KEYWORDS.items()}
    pos = _hits(t, POSITIVE_KEYWORDS)

    score = (
        WEIGHTS["high"] * len(sev["high"])
        + WEIGHTS["medium"] * len(sev["medium"])
        + WEIGHTS["low"] * len(sev["low"])
        + WEIGHTS["domain"] * sum(len(h) for h in dom.values())
        + WEIGHTS["positive"] * len(pos)
    )

    if sev["high"] or score >= 6:
        severity = "high"
    elif sev["medium"] or score >= 3:
        severity = "medium"
    else:
        severity = "low"

    category = _category(dom)
    controversial = score >= 1 and len(pos) < len(sev["high"]) + len(sev["medium"])
    keywords = sev["high"] + sev["medium"] + dom["environmental"] + dom["social"] + dom["governance"]

    return ControversyAnalysis(
        is_controversial=controversial,
        severity=severity,
        category=category,
        confidence=min(1.0, max(0.0, score / 10.0)),
        keywords=keywords,
        summary=_summary(controversial, severity, category, keywords),
    )


def analyze_batch(texts: Sequence[str]) -> List[ControversyAnalysis]:
    return [analyze(t) for t in texts]


def analyze_article(article: NewsArticle) -> ControversyAnalysis:
    return analyze(f"{article.title} {article.description}")


def filter_by_controversy(articles: Sequence[NewsArticle],
                          analyses: Sequence[ControversyAnalysis],
                          min_severity: str = "medium") -> List[NewsArticle]:
    floor = SEVERITY_ORDER.get(min_severity, SEVERITY_ORDER["medium"])
    return [
        a for a, r in zip(articles, analyses)
        if r.is_controversial and SEVERITY_ORDER[r.severity] >= floor
    ]


def controversy_stats(analyses: Sequence[ControversyAnalysis]) -> Dict[str, object]:
    total = len(analyses)
    controversial = sum(1 for a in analyses if a.is_controversial)
    return {
        "total": total,
        "controversial": controversial,
        "controversy_rate": (controversial / total * 100.0) if total else 0.0,
        "by_severity": {s: sum(1 for a in analyses if a.severity == s) for s in ("high", "medium", "low")},
        "by_category": {c: sum(1 for a in analyses if a.category == c) for c in _CATEGORY_LABELS},
    }


def has_positive_indicators(text: str) -> bool:
    t = (text or "").lower()
    return any(k in t for k in POSITIVE_KEYWORDS)
