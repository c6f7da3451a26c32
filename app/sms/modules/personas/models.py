from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.sms.models import Base

if TYPE_CHECKING:
    from app.sms.modules.training.models import TrainingRecord


class PersonaProfile(Base):
    __tablename__ = "persona_profiles"
    __table_args__ = (
        Index("idx_personas_company", "company_id"),
        Index("idx_personas_department", "company_id", "department"),
        Index("idx_personas_status", "company_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    employee_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    national_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    emergency_contact: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Employment
    department: Mapped[str | None] = mapped_column(String(128), nullable=True)
    position: Mapped[str | None] = mapped_column(String(128), nullable=True)
    employment_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # FULL_TIME, PART_TIME, CONTRACT, ...
    location: Mapped[str | None] = mapped_column(String(128), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    manager_id: Mapped[int | None] = mapped_column(ForeignKey("persona_profiles.id", ondelete="SET NULL"), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")  # ACTIVE, INACTIVE, TERMINATED
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # GDPR
    data_processing_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    marketing_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consent_version: Mapped[str | None] = mapped_column(String(16), nullable=True)
    consent_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    data_retention_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    anonymized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    profile_completeness: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Last compliance evaluation snapshot
    compliance_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    compliance_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_compliance_evaluation: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    certifications: Mapped[list["Certification"]] = relationship(
        back_populates="persona",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    competencies: Mapped[list["Competency"]] = relationship(
        back_populates="persona",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    consent_records: Mapped[list["ConsentRecord"]] = relationship(
        back_populates="persona",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ConsentRecord.id",
    )
    training_records: Mapped[list["TrainingRecord"]] = relationship(
        "TrainingRecord",
        back_populates="persona",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ConsentRecord(Base):
    __tablename__ = "consent_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    persona_id: Mapped[int] = mapped_column(ForeignKey("persona_profiles.id", ondelete="CASCADE"), nullable=False)
    consent_type: Mapped[str] = mapped_column(String(32), nullable=False)  # DATA_PROCESSING, MARKETING
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False)
    version: Mapped[str] = mapped_column(String(16), nullable=False, default="1.0")
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    persona: Mapped[PersonaProfile] = relationship(back_populates="consent_records", lazy="selectin")


class Certification(Base):
    __tablename__ = "certifications"
    __table_args__ = (
        Index("idx_certifications_persona", "persona_id"),
        Index("idx_certifications_company_status", "company_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    persona_id: Mapped[int] = mapped_column(ForeignKey("persona_profiles.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="INTERNAL")  # INTERNAL, EXTERNAL, REGULATORY
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    issuing_authority: Mapped[str] = mapped_column(String(255), nullable=False)
    certificate_number: Mapped[str] = mapped_column(String(64), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")  # ACTIVE, EXPIRED, REVOKED
    compliance_level: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_regulatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    training_record_id: Mapped[int | None] = mapped_column(
        ForeignKey("training_records.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    persona: Mapped[PersonaProfile] = relationship(back_populates="certifications", lazy="selectin")


class Competency(Base):
    __tablename__ = "competencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    persona_id: Mapped[int] = mapped_column(ForeignKey("persona_profiles.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    current_level: Mapped[str] = mapped_column(String(32), nullable=False, default="BEGINNER")
    target_level: Mapped[str | None] = mapped_column(String(32), nullable=True)
    assessment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_assessment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    persona: Mapped[PersonaProfile] = relationship(back_populates="competencies", lazy="selectin")


class AnonymizationLog(Base):
    """Kept after a persona is anonymized so the erasure itself stays auditable."""

    __tablename__ = "anonymization_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    original_persona_id: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False, default="FULL_ANONYMIZATION")
    reason: Mapped[str] = mapped_column(String(512), nullable=False)
    fields_anonymized: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    requested_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
