"""Campaign-related enums."""

from enum import Enum


class CampaignStatus(str, Enum):
    """Lifecycle status of a campaign."""

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class CampaignTriggerType(str, Enum):
    """How a campaign instance is started for a recipient."""

    EVENT = "event"
    SCHEDULED = "scheduled"
    RECURRING = "recurring"


class CampaignStepType(str, Enum):
    """Kinds of workflow steps."""

    SEND = "send"
    WAIT = "wait"
    CONDITION = "condition"
    BRANCH = "branch"


class CampaignSendStatus(str, Enum):
    """Status of a pending action (one step for one recipient)."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class CampaignSendOrigin(str, Enum):
    """What created a pending action."""

    EVENT = "event"  # Run start from a business event
    SCHEDULED = "scheduled"  # Run start from a one-shot scheduled pass
    RECURRING = "recurring"  # Run start from a recurring pass
    WORKFLOW = "workflow"  # Successor enqueued while advancing a run


class MessageChannel(str, Enum):
    """Delivery channels supported by the message sender."""

    SMS = "sms"
    EMAIL = "email"
    PUSH = "push"
    IN_APP = "in_app"


class ConditionOperator(str, Enum):
    """Operators for CONDITION and BRANCH predicates."""

    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    LESS_THAN = "lt"
    GREATER_OR_EQUAL = "gte"
    LESS_OR_EQUAL = "lte"
    CONTAINS = "contains"
    EXISTS = "exists"


class RecurrenceFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class CampaignStat(str, Enum):
    """Counters maintained per campaign."""

    RECIPIENTS = "recipients"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class PatientStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class BusinessEvent(str, Enum):
    """Business events that can trigger campaigns."""

    APPOINTMENT_BOOKED = "appointment.booked"
    APPOINTMENT_CONFIRMED = "appointment.confirmed"
    APPOINTMENT_CANCELLED = "appointment.cancelled"
    APPOINTMENT_COMPLETED = "appointment.completed"
    APPOINTMENT_NO_SHOW = "appointment.no_show"
    APPOINTMENT_REMINDER = "appointment.reminder"
    TREATMENT_STARTED = "treatment.started"
    TREATMENT_PHASE_CHANGED = "treatment.phase_changed"
    TREATMENT_MILESTONE_REACHED = "treatment.milestone_reached"
    TREATMENT_COMPLETED = "treatment.completed"
    PATIENT_CREATED = "patient.created"
    PATIENT_ACTIVATED = "patient.activated"
    PATIENT_BIRTHDAY = "patient.birthday"
    PAYMENT_DUE = "payment.due"
    PAYMENT_OVERDUE = "payment.overdue"
    PAYMENT_RECEIVED = "payment.received"
