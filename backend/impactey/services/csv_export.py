from io import BytesIO
from typing import Any, Dict, List

import pandas as pd

from impactey.models.records import PortfolioAnalysis

PREFERRED = ["Ticker", "Company", "Sector", "Weight", "Overall", "Environmental",
             "Social", "Governance", "Source", "ResolvedAt"]


def _rows(analysis: PortfolioAnalysis) -> List[Dict[str, Any]]:
    rows = []
    for h in analysis.holdings:
        esg = h.esg
        rows.append({
            "Ticker": h.ticker,
            "Company": h.company_name,
            "Sector": h.sector,
            "Weight": h.weight,
            "Overall": esg.overall if esg else None,
            "Environmental": esg.environmental if esg else None,
            "Social": esg.social if esg else None,
            "Governance": esg.governance if esg else None,
            "Source": esg.source_tier.value if esg else "unresolved",
            "ResolvedAt": esg.resolved_at.isoformat() if esg else None,
        })
    return rows


def to_csv_bytes(analysis: PortfolioAnalysis) -> bytes:
    df = pd.DataFrame(_rows(analysis), columns=PREFERRED)
    bio = BytesIO()
    df.to_csv(bio, index=False)
    return bio.getvalue()
