"""FastAPI dependencies."""

from typing import Generator

from fastapi import Header, HTTPException, Request
from sqlalchemy.orm import Session

from clinic_campaigns.core.config import settings
from clinic_campaigns.db.session import SessionLocal
from clinic_campaigns.services.campaign_engine import CampaignEngine


def get_db() -> Generator[Session, None, None]:
    """Yield a database session, closing it after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


def get_campaign_engine(request: Request) -> CampaignEngine:
    """The engine instance attached to the running app."""
    return request.app.state.campaign_engine
