"""SQLAlchemy ORM models."""

from clinic_campaigns.db.models.campaigns import (
    Campaign,
    CampaignSend,
    CampaignStep,
    MessageTemplate,
)
from clinic_campaigns.db.models.jobs import Job
from clinic_campaigns.db.models.tenants import Clinic, Patient

__all__ = [
    "Campaign",
    "CampaignSend",
    "CampaignStep",
    "Clinic",
    "Job",
    "MessageTemplate",
    "Patient",
]
