"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from clinic_campaigns.core.exceptions import UnknownJobTypeError
from clinic_campaigns.db.enums import JobType
from clinic_campaigns.jobs.handlers import campaigns

JobHandler = Callable[[object, object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.CAMPAIGN_EVENT.value: campaigns.process_campaign_event,
    JobType.CAMPAIGN_DELIVERY_RECEIPT.value: campaigns.process_delivery_receipt,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise UnknownJobTypeError(f"Unknown job type: {job_type}")
    return handler
