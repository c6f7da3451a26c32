from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.sms.models import Base

if TYPE_CHECKING:
    from app.sms.modules.personas.models import PersonaProfile


class Training(Base):
    __tablename__ = "trainings"
    __table_args__ = (
        Index("idx_trainings_company_status", "company_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="MANDATORY")  # MANDATORY, SAFETY, CERTIFICATION, OPTIONAL
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")  # ACTIVE, INACTIVE
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    passing_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class TrainingRequirement(Base):
    """Who must take a training, by when, and how often it renews."""

    __tablename__ = "training_requirements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    training_id: Mapped[int] = mapped_column(ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")  # LOW, MEDIUM, HIGH, CRITICAL

    # Eligibility; an empty list means "everyone"
    departments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    positions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    employment_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    locations: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    due_within_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    renewal_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    grace_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prerequisites: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # training ids

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    training: Mapped[Training] = relationship(lazy="selectin")


class TrainingRecord(Base):
    __tablename__ = "training_records"
    __table_args__ = (
        UniqueConstraint("persona_id", "training_id", name="uq_training_records_persona_training"),
        Index("idx_training_records_company_status", "company_id", "status"),
        Index("idx_training_records_compliance", "company_id", "compliance_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    persona_id: Mapped[int] = mapped_column(ForeignKey("persona_profiles.id", ondelete="CASCADE"), nullable=False)
    training_id: Mapped[int] = mapped_column(ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False)
    requirement_id: Mapped[int | None] = mapped_column(
        ForeignKey("training_requirements.id", ondelete="SET NULL"),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ENROLLED")  # ENROLLED, IN_PROGRESS, COMPLETED, FAILED
    compliance_status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")  # PENDING, COMPLIANT, OVERDUE, EXEMPT
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)

    enrollment_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completion_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")
    certificate_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    issued_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    assigned_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    persona: Mapped["PersonaProfile"] = relationship("PersonaProfile", back_populates="training_records", lazy="selectin")
    training: Mapped[Training] = relationship(lazy="selectin")
    requirement: Mapped[TrainingRequirement | None] = relationship(lazy="selectin")
