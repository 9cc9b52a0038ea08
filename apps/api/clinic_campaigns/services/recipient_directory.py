"""Read-only recipient/tenant attribute store used by the campaign engine."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import closing
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from clinic_campaigns.db.enums import MessageChannel
from clinic_campaigns.db.models import Clinic, MessageTemplate, Patient
from clinic_campaigns.schemas.campaign import (
    AudienceCriteria,
    HasChannelPredicate,
    OptInPredicate,
    StatusInPredicate,
)
from clinic_campaigns.services import audience_service


@dataclass(frozen=True)
class RecipientProfile:
    """Snapshot of the recipient attributes the engine reads."""

    id: UUID
    tenant_id: UUID
    first_name: str
    last_name: str
    status: str
    email: str | None = None
    phone: str | None = None
    push_token: str | None = None
    has_portal_account: bool = False
    opted_in: bool = False
    date_of_birth: date | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def contact_for(self, channel: MessageChannel) -> str | None:
        """Address for a channel, or None when the recipient can't be reached on it."""
        match channel:
            case MessageChannel.SMS:
                return self.phone or None
            case MessageChannel.EMAIL:
                return self.email or None
            case MessageChannel.PUSH:
                return self.push_token or None
            case MessageChannel.IN_APP:
                return str(self.id) if self.has_portal_account else None
        return None

    def has_channel(self, channel: MessageChannel) -> bool:
        return self.contact_for(channel) is not None

    def as_variables(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "status": self.status,
            "date_of_birth": self.date_of_birth.isoformat() if self.date_of_birth else None,
        }


@dataclass(frozen=True)
class TenantProfile:
    id: UUID
    name: str
    phone: str | None = None
    email: str | None = None
    timezone: str | None = None

    def as_variables(self) -> dict[str, Any]:
        return {"name": self.name, "phone": self.phone, "email": self.email}


class RecipientDirectory(Protocol):
    def get_recipient(
        self, db: Session, tenant_id: UUID, recipient_id: UUID
    ) -> RecipientProfile | None: ...

    def get_tenant(self, db: Session, tenant_id: UUID) -> TenantProfile | None: ...

    def iter_candidates(
        self, db: Session, tenant_id: UUID, include: AudienceCriteria | None
    ) -> Iterator[RecipientProfile]: ...

    def list_audience(
        self,
        db: Session,
        tenant_id: UUID,
        include: AudienceCriteria | None,
        exclude: AudienceCriteria | None,
        limit: int,
    ) -> list[RecipientProfile]: ...

    def get_template(
        self, db: Session, tenant_id: UUID, template_id: UUID
    ) -> MessageTemplate | None: ...

    def build_variables(
        self,
        db: Session,
        recipient: RecipientProfile,
        trigger_data: Mapping[str, Any],
    ) -> dict[str, Any]: ...


def _profile_from_patient(patient: Patient) -> RecipientProfile:
    return RecipientProfile(
        id=patient.id,
        tenant_id=patient.clinic_id,
        first_name=patient.first_name,
        last_name=patient.last_name,
        status=patient.status,
        email=patient.email,
        phone=patient.phone,
        push_token=patient.push_token,
        has_portal_account=patient.has_portal_account,
        opted_in=patient.marketing_opt_in,
        date_of_birth=patient.date_of_birth,
    )


def _present(column):
    return and_(column.is_not(None), column != "")


class SqlRecipientDirectory:
    """Default directory backed by the clinics/patients/message_templates tables."""

    def __init__(self, page_size: int = 500) -> None:
        self.page_size = page_size

    def get_recipient(
        self, db: Session, tenant_id: UUID, recipient_id: UUID
    ) -> RecipientProfile | None:
        patient = (
            db.query(Patient)
            .filter(
                Patient.id == recipient_id,
                Patient.clinic_id == tenant_id,
                Patient.deleted_at.is_(None),
            )
            .first()
        )
        return _profile_from_patient(patient) if patient else None

    def get_tenant(self, db: Session, tenant_id: UUID) -> TenantProfile | None:
        clinic = db.query(Clinic).filter(Clinic.id == tenant_id).first()
        if not clinic:
            return None
        return TenantProfile(
            id=clinic.id,
            name=clinic.name,
            phone=clinic.phone,
            email=clinic.email,
            timezone=clinic.timezone,
        )

    def iter_candidates(
        self, db: Session, tenant_id: UUID, include: AudienceCriteria | None
    ) -> Iterator[RecipientProfile]:
        """
        Yield tenant patients, pre-filtered in SQL by the include criteria.

        The SQL filter is only a narrowing pass; callers still run the
        audience evaluator (exclude criteria are applied there).
        """
        conditions = [Patient.clinic_id == tenant_id, Patient.deleted_at.is_(None)]

        for predicate in include.predicates if include is not None else ():
            match predicate:
                case StatusInPredicate(statuses=statuses):
                    conditions.append(or_(*[Patient.status.ilike(status) for status in statuses]))
                case HasChannelPredicate(channel=MessageChannel.SMS):
                    conditions.append(_present(Patient.phone))
                case HasChannelPredicate(channel=MessageChannel.EMAIL):
                    conditions.append(_present(Patient.email))
                case HasChannelPredicate(channel=MessageChannel.PUSH):
                    conditions.append(_present(Patient.push_token))
                case HasChannelPredicate(channel=MessageChannel.IN_APP):
                    conditions.append(Patient.has_portal_account.is_(True))
                case OptInPredicate(opted_in=opted_in):
                    conditions.append(Patient.marketing_opt_in.is_(opted_in))

        result = db.execute(
            select(Patient)
            .where(*conditions)
            .order_by(Patient.created_at, Patient.id)
            .execution_options(yield_per=self.page_size)
        ).scalars()
        try:
            for patient in result:
                yield _profile_from_patient(patient)
        finally:
            result.close()

    def list_audience(
        self,
        db: Session,
        tenant_id: UUID,
        include: AudienceCriteria | None,
        exclude: AudienceCriteria | None,
        limit: int,
    ) -> list[RecipientProfile]:
        """Recipients matching include/exclude, capped at ``limit``."""
        audience: list[RecipientProfile] = []
        with closing(self.iter_candidates(db, tenant_id, include)) as candidates:
            for recipient in candidates:
                if not audience_service.matches(recipient, include, exclude):
                    continue
                audience.append(recipient)
                if len(audience) >= limit:
                    break
        return audience

    def get_template(
        self, db: Session, tenant_id: UUID, template_id: UUID
    ) -> MessageTemplate | None:
        return (
            db.query(MessageTemplate)
            .filter(
                MessageTemplate.id == template_id,
                MessageTemplate.clinic_id == tenant_id,
            )
            .first()
        )

    def build_variables(
        self,
        db: Session,
        recipient: RecipientProfile,
        trigger_data: Mapping[str, Any],
    ) -> dict[str, Any]:
        """
        Merge trigger data, recipient and tenant into one variable bag.

        Trigger data sits at the top level; the patient and clinic keys
        always hold the directory records.
        """
        tenant = self.get_tenant(db, recipient.tenant_id)
        variables: dict[str, Any] = dict(trigger_data)
        variables["patient"] = recipient.as_variables()
        variables["clinic"] = tenant.as_variables() if tenant else {}
        return variables
