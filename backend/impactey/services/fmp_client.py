from typing import Any, List

from loguru import logger
from pydantic import ValidationError

from impactey.models.records import FmpEsgRow, FmpListingRow, InstrumentKind, InstrumentRecord
from impactey.services.upstream import JsonHttpClient, UpstreamError

BASE_URL = "https://financialmodelingprep.com/api/v3"
STOCK_LIST_URL = f"{BASE_URL}/stock/list"
ETF_LIST_URL = f"{BASE_URL}/etf/list"
ESG_URL = f"{BASE_URL}/esg-environmental-social-governance"

class FmpClient(JsonHttpClient):
    """
    Financial Modeling Prep: instrument universe (stocks + ETFs) and ESG scores.
    Callers are responsible for quota gating; every failure raises UpstreamError.
    """
    source = "fmp"
    key_param = "apikey"

    def _listing(self, payload: Any, kind: InstrumentKind) -> List[InstrumentRecord]:
        if not isinstance(payload, list):
            raise UpstreamError(self.source, f"{kind.value} list: expected array, got {type(payload).__name__}")
        out: List[InstrumentRecord] = []
        skipped = 0
        for raw in payload:
            try:
                out.append(FmpListingRow.model_validate(raw).to_record(kind))
            except ValidationError:
                skipped += 1
        if skipped:
            logger.debug(f"fmp {kind.value} list: skipped {skipped} malformed rows")
        return out

    async def stock_list(self) -> List[InstrumentRecord]:
        # Shape: [{"symbol","name","price","exchange","exchangeShortName","type"}, ...]
        return self._listing(await self._get_json(STOCK_LIST_URL), InstrumentKind.equity)

    async def etf_list(self) -> List[InstrumentRecord]:
        return self._listing(await self._get_json(ETF_LIST_URL), InstrumentKind.fund)

    async def esg_scores(self, symbol: str) -> List[FmpEsgRow]:
        # Shape: [] or [{"symbol","esgScore","environmentScore","socialScore","governanceScore", ...}]
        payload = await self._get_json(f"{ESG_URL}/{symbol.strip().upper()}")
        if not isinstance(payload, list):
            raise UpstreamError(self.source, "esg: expected array")
        try:
            return [FmpEsgRow.model_validate(r) for r in payload[:1]]
        except ValidationError as e:
            raise UpstreamError(self.source, f"esg: schema mismatch for {symbol}: {e.error_count()} errors") from e
