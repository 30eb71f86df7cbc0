# backend/impactey/main.py
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from impactey.core.settings import Settings, settings as default_settings
from impactey.core.services import Services, build_services, get_services
from impactey.api.routes_instruments import router as instruments_router
from impactey.api.routes_esg import router as esg_router
from impactey.api.routes_news import router as news_router
from impactey.api.routes_portfolio import router as portfolio_router


def create_app(settings: Optional[Settings] = None,
               services_factory: Optional[Callable[[Settings], Services]] = None) -> FastAPI:
    settings = settings or default_settings
    factory = services_factory or build_services

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = factory(settings)
        app.state.services = services
        services.catalog.load_persisted()
        services.catalog.ensure_fresh()
        logger.info(f"Impactey ESG engine started (env={settings.env})")
        try:
            yield
        finally:
            await services.close()
            logger.info("Impactey ESG engine stopped")

    app = FastAPI(title="Impactey ESG Engine", version="0.1.0", lifespan=lifespan)

    # CORS for local dev frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(instruments_router, prefix="/instruments", tags=["instruments"])
    app.include_router(esg_router, prefix="/esg", tags=["esg"])
    app.include_router(news_router, prefix="/news", tags=["news"])
    app.include_router(portfolio_router, prefix="/portfolio", tags=["portfolio"])

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    @app.get("/health")
    def health():
        logger.info("Health check ok")
        return {"status": "ok", "env": settings.env}

    @app.get("/config/check")
    def config_check():
        return {
            "fmp_key_present": bool(settings.fmp_api_key),
            "gnews_key_present": bool(settings.gnews_api_key),
            "cache_dir": settings.cache_dir,
        }

    @app.get("/quota")
    def quota(services: Services = Depends(get_services)):
        return services.quota.status()

    return app


app = create_app()
