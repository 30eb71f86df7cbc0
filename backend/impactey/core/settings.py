# backend/impactey/core/settings.py
import os
from pathlib import Path
from pydantic import BaseModel
from dotenv import load_dotenv

# Resolve backend directory and load .env explicitly
BACKEND_DIR = Path(__file__).resolve().parents[2]  # .../backend
load_dotenv(BACKEND_DIR / ".env")  # do NOT set override=True; shell exports still win

class Settings(BaseModel):
    env: str = os.getenv("APP_ENV", "dev")
    port: int = int(os.getenv("PORT", "8000"))

    # upstream credentials (every tier still works without them via synthetic scores)
    fmp_api_key: str = os.getenv("FMP_API_KEY", "")
    gnews_api_key: str = os.getenv("GNEWS_API_KEY", "")
    http_timeout_s: float = float(os.getenv("HTTP_TIMEOUT_S", "10"))

    # persistence
    cache_dir: str = os.getenv("CACHE_DIR", str(BACKEND_DIR / ".cache"))

    # cache TTLs (seconds)
    esg_live_ttl_s: float = float(os.getenv("ESG_LIVE_TTL_S", "300"))
    esg_curated_ttl_s: float = float(os.getenv("ESG_CURATED_TTL_S", "3600"))
    esg_synthetic_ttl_s: float = float(os.getenv("ESG_SYNTHETIC_TTL_S", "120"))
    catalog_ttl_s: float = float(os.getenv("CATALOG_TTL_S", str(24 * 3600)))
    catalog_retention_s: float = float(os.getenv("CATALOG_RETENTION_S", str(7 * 24 * 3600)))
    catalog_retry_s: float = float(os.getenv("CATALOG_RETRY_S", "60"))

    # quotas: calls per window, per upstream source
    esg_quota_limit: int = int(os.getenv("ESG_QUOTA_LIMIT", "100"))
    esg_quota_window_s: float = float(os.getenv("ESG_QUOTA_WINDOW_S", "60"))
    news_quota_limit: int = int(os.getenv("NEWS_QUOTA_LIMIT", "100"))
    news_quota_window_s: float = float(os.getenv("NEWS_QUOTA_WINDOW_S", str(24 * 3600)))
    catalog_quota_limit: int = int(os.getenv("CATALOG_QUOTA_LIMIT", "4"))
    catalog_quota_window_s: float = float(os.getenv("CATALOG_QUOTA_WINDOW_S", "3600"))
    throttle_s: float = float(os.getenv("THROTTLE_S", "60"))

    # search
    min_price: float = float(os.getenv("MIN_PRICE", "1.0"))
    search_limit: int = int(os.getenv("SEARCH_LIMIT", "50"))
    search_debounce_s: float = float(os.getenv("SEARCH_DEBOUNCE_S", "0.3"))

    # resolution fan-out
    resolve_concurrency: int = int(os.getenv("RESOLVE_CONCURRENCY", "6"))

    # catalog data-quality thresholds
    min_expected_equities: int = int(os.getenv("MIN_EXPECTED_EQUITIES", "20000"))
    min_expected_funds: int = int(os.getenv("MIN_EXPECTED_FUNDS", "1000"))

settings = Settings()
