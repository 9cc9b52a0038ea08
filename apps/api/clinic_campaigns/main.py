"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from sqlalchemy import text

from clinic_campaigns.core.config import settings
from clinic_campaigns.db.session import engine
from clinic_campaigns.routers import internal
from clinic_campaigns.services.campaign_engine import CampaignEngine, build_campaign_engine

logger = logging.getLogger(__name__)


def create_app(campaign_engine: CampaignEngine | None = None) -> FastAPI:
    app = FastAPI(
        title="Clinic Campaigns API",
        description="Campaign execution engine for patient outreach",
        version=settings.VERSION,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
    )
    app.state.campaign_engine = campaign_engine or build_campaign_engine()

    # Internal cron / event-ingest endpoints (protected by X-Internal-Secret)
    app.include_router(internal.router)

    @app.get("/health")
    def health():
        """
        Health check endpoint.

        Verifies database connectivity and returns environment info.
        """
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}

    return app


app = create_app()
