"""Enum definitions for application constants."""

from clinic_campaigns.db.enums.campaigns import (
    BusinessEvent,
    CampaignSendOrigin,
    CampaignSendStatus,
    CampaignStat,
    CampaignStatus,
    CampaignStepType,
    CampaignTriggerType,
    ConditionOperator,
    MessageChannel,
    PatientStatus,
    RecurrenceFrequency,
)
from clinic_campaigns.db.enums.jobs import JobStatus, JobType

DEFAULT_JOB_STATUS = JobStatus.PENDING
DEFAULT_SEND_STATUS = CampaignSendStatus.PENDING

__all__ = [
    "BusinessEvent",
    "CampaignSendOrigin",
    "CampaignSendStatus",
    "CampaignStat",
    "CampaignStatus",
    "CampaignStepType",
    "CampaignTriggerType",
    "ConditionOperator",
    "DEFAULT_JOB_STATUS",
    "DEFAULT_SEND_STATUS",
    "JobStatus",
    "JobType",
    "MessageChannel",
    "PatientStatus",
    "RecurrenceFrequency",
]
