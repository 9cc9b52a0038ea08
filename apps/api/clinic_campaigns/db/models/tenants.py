"""SQLAlchemy ORM models for tenants and patients."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from clinic_campaigns.db.base import Base
from clinic_campaigns.db.enums import PatientStatus
from clinic_campaigns.db.types import utcnow


class Clinic(Base):
    """
    A tenant in the multi-tenant system.

    Campaigns, templates, patients and pending actions are all scoped by
    clinic_id.
    """

    __tablename__ = "clinics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Patient(Base):
    """
    Campaign recipient.

    Read-only to the campaign engine; contact fields and the marketing opt-in
    drive audience evaluation and channel availability.
    """

    __tablename__ = "patients"
    __table_args__ = (
        Index("idx_patients_clinic_status", "clinic_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Contact channels
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    push_token: Mapped[str | None] = mapped_column(String(512), nullable=True)
    has_portal_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=PatientStatus.ACTIVE.value, nullable=False
    )  # 'active' | 'inactive' | 'archived'
    marketing_opt_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
