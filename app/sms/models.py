from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Company(Base):
    """Tenant. Every domain table carries a company_id pointing here."""

    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list["User"]] = relationship(back_populates="company", lazy="selectin")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    company: Mapped[Company | None] = relationship(back_populates="users", lazy="selectin")


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Module services record one row per meaningful state change (workflow.transition,
    training.assign, compliance.evaluate, ...). Never updated, never deleted.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_company_created", "company_id", "created_at"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "workflow.transition"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Document"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.sms.modules.personas.models import (  # noqa: E402,F401
    AnonymizationLog,
    Certification,
    Competency,
    ConsentRecord,
    PersonaProfile,
)
from app.sms.modules.dynamic_fields.models import (  # noqa: E402,F401
    FieldDefinition,
    FieldValue,
    FormSubmission,
    FormTemplate,
)
from app.sms.modules.documents.models import (  # noqa: E402,F401
    Document,
    DocumentApproval,
    DocumentLink,
    DocumentReview,
    DocumentTask,
    DocumentWorkflow,
    Notification,
)
from app.sms.modules.training.models import Training, TrainingRecord, TrainingRequirement  # noqa: E402,F401
from app.sms.modules.compliance.models import ComplianceRule, ComplianceViolation  # noqa: E402,F401
from app.sms.modules.incidents.models import Incident, SafetyAudit, SMSRiskAssessment  # noqa: E402,F401
