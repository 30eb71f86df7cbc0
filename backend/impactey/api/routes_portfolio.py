from io import BytesIO
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field

from impactey.core.services import Services, get_services
from impactey.models.records import PortfolioAnalysis, PortfolioHolding
from impactey.services.csv_export import to_csv_bytes
from impactey.services.io_utils import parse_holdings
from impactey.services.portfolio import BENCHMARKS

router = APIRouter()


class PortfolioInput(BaseModel):
    holdings: List[PortfolioHolding] = Field(default_factory=list, max_length=500)


@router.get("/benchmarks")
def list_benchmarks():
    return BENCHMARKS


@router.post("/analyze", response_model=PortfolioAnalysis)
async def analyze_portfolio(payload: PortfolioInput, services: Services = Depends(get_services)):
    return await services.portfolio.analyze(payload.holdings)


@router.post("/analyze-file", response_model=PortfolioAnalysis)
async def analyze_portfolio_file(file: UploadFile = File(...), services: Services = Depends(get_services)):
    try:
        content = await file.read()
        holdings = parse_holdings(content, file.filename or "portfolio.csv")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not holdings:
        raise HTTPException(status_code=400, detail="no holdings found in file")
    logger.info(f"Portfolio file {file.filename}: {len(holdings)} holdings")
    return await services.portfolio.analyze(holdings)


@router.post("/export")
async def export_portfolio(payload: PortfolioInput, services: Services = Depends(get_services)):
    analysis = await services.portfolio.analyze(payload.holdings)
    return StreamingResponse(
        BytesIO(to_csv_bytes(analysis)),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="portfolio_esg.csv"'},
    )
