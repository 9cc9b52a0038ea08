"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of background jobs."""

    CAMPAIGN_EVENT = "campaign_event"  # Deferred business-event dispatch
    CAMPAIGN_DELIVERY_RECEIPT = "campaign_delivery_receipt"


class JobStatus(str, Enum):
    """Status of a background job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
