from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.sms.models import Base


class ComplianceRule(Base):
    __tablename__ = "compliance_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # TRAINING, CERTIFICATION, DOCUMENT, CUSTOM
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")  # LOW, MEDIUM, HIGH, CRITICAL

    # required_training / validity_days / required_certifications / required_documents / criteria
    conditions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    departments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    positions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    employment_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    evaluation_frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="MONTHLY")
    grace_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    warning_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class ComplianceViolation(Base):
    __tablename__ = "compliance_violations"
    __table_args__ = (
        Index("idx_violations_persona_status", "persona_id", "status"),
        Index("idx_violations_company_status", "company_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    rule_id: Mapped[int] = mapped_column(ForeignKey("compliance_rules.id", ondelete="CASCADE"), nullable=False)
    persona_id: Mapped[int] = mapped_column(ForeignKey("persona_profiles.id", ondelete="CASCADE"), nullable=False)

    violation_type: Mapped[str] = mapped_column(String(16), nullable=False)  # OVERDUE, MISSING, EXPIRED, INCOMPLETE
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)  # training / certification / doc number / field
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="OPEN")  # OPEN, IN_PROGRESS, RESOLVED, WAIVED
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    resolved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    rule: Mapped[ComplianceRule] = relationship(lazy="selectin")

    @property
    def key(self) -> tuple[int, str, str]:
        return (self.rule_id, self.violation_type, self.subject)
