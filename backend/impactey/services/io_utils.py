# backend/impactey/services/io_utils.py
from __future__ import annotations

import io
import re
from typing import List, Optional, Union

import numpy as np
import pandas as pd
from loguru import logger

from impactey.models.records import PortfolioHolding

# header fragments, matched case-insensitively as substrings
_TICKER_HINTS = ("ticker", "symbol", "stock")
_WEIGHT_HINTS = ("weight", "allocation", "percent", "%")


def _find_column(cols: List[str], hints) -> Optional[str]:
    for c in cols:
        low = str(c).strip().lower()
        if any(h in low for h in hints):
            return c
    return None


def _clean_ticker(v) -> str:
    if v is None or (isinstance(v, float) and np.isnan(v)):
        return ""
    return re.sub(r'["\']', "", str(v)).strip().upper()


def _read_frame(content: Union[bytes, str], filename: str) -> pd.DataFrame:
    raw = content.encode("utf-8") if isinstance(content, str) else content
    try:
        if filename.lower().endswith((".xlsx", ".xls")):
            return pd.read_excel(io.BytesIO(raw), dtype=str)
        return pd.read_csv(io.BytesIO(raw), encoding="utf-8-sig", dtype=str, skipinitialspace=True)
    except (ValueError, UnicodeDecodeError, pd.errors.ParserError) as e:
        logger.exception(f"Failed to read {filename}: {e}")
        raise ValueError(f"could not read {filename}: {e}") from e


def parse_holdings(content: Union[bytes, str], filename: str = "portfolio.csv") -> List[PortfolioHolding]:
    """
    Read a CSV/XLSX holdings file into PortfolioHolding rows.

    The ticker column is the first header containing ticker/symbol/stock; the
    weight column the first containing weight/allocation/percent/%. Quotes and
    '%' are stripped from weights; unparseable weights become None.
    """
    df = _read_frame(content, filename)
    cols = [str(c) for c in df.columns]
    df.columns = cols

    ticker_col = _find_column(cols, _TICKER_HINTS)
    if ticker_col is None:
        raise ValueError("file must contain a ticker/symbol column")
    weight_col = _find_column([c for c in cols if c != ticker_col], _WEIGHT_HINTS)

    tickers = df[ticker_col].map(_clean_ticker)
    if weight_col is not None:
        weights = pd.to_numeric(
            df[weight_col].astype(str).str.replace(r'["%,]', "", regex=True).str.strip(),
            errors="coerce",
        )
    else:
        weights = pd.Series([np.nan] * len(df), index=df.index)

    holdings: List[PortfolioHolding] = []
    for t, w in zip(tickers, weights):
        if not t:
            continue
        holdings.append(PortfolioHolding(ticker=t, weight=None if pd.isna(w) else float(w)))

    logger.info(
        f"Parsed {len(holdings)} holdings from {filename}; "
        f"ticker column '{ticker_col}', weight column {weight_col!r}"
    )
    return holdings
