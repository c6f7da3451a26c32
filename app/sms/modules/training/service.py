from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from app.sms.audit import record_event
from app.sms.errors import NotFoundError
from app.sms.models import User
from app.sms.modules.personas.models import Certification, PersonaProfile
from app.sms.modules.training.models import Training, TrainingRecord, TrainingRequirement
from app.sms.utils import clean_list, clean_str, parse_datetime, pct

logger = logging.getLogger(__name__)

TRAINING_CATEGORIES = ("MANDATORY", "SAFETY", "CERTIFICATION", "OPTIONAL")
PRIORITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
RECORD_STATUSES = ("ENROLLED", "IN_PROGRESS", "COMPLETED", "FAILED")
COMPLIANCE_STATUSES = ("PENDING", "COMPLIANT", "OVERDUE", "EXEMPT")
CERT_ISSUER = "Internal Training System"


@dataclass
class Assignment:
    persona_id: int
    training_id: int
    requirement_id: int | None = None
    due_date: datetime | None = None
    priority: str = "MEDIUM"
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    assigned_date: datetime | None = None


# ---------------------------------------------------------------------------
# Trainings and requirements
# ---------------------------------------------------------------------------


def create_training(s: Session, company_id: int, payload: dict[str, Any], *, user: User | None) -> Training:
    title = clean_str(payload.get("title"))
    if not title:
        raise ValueError("title is required")
    category = (clean_str(payload.get("category")) or "MANDATORY").upper()
    if category not in TRAINING_CATEGORIES:
        raise ValueError(f"category must be one of: {', '.join(TRAINING_CATEGORIES)}")
    passing = payload.get("passing_score")
    t = Training(
        company_id=company_id,
        title=title,
        description=clean_str(payload.get("description")),
        category=category,
        status=(clean_str(payload.get("status")) or "ACTIVE").upper(),
        duration_minutes=int(payload["duration_minutes"]) if payload.get("duration_minutes") else None,
        passing_score=float(passing) if passing not in (None, "") else None,
        created_by_user_id=user.id if user else None,
    )
    s.add(t)
    s.flush()
    record_event(
        s,
        actor=user,
        action="training.create",
        entity_type="Training",
        entity_id=str(t.id),
        company_id=company_id,
        metadata={"title": t.title, "category": t.category},
    )
    return t


def get_training(s: Session, training_id: int) -> Training:
    t = s.get(Training, training_id)
    if not t:
        raise NotFoundError(f"Training {training_id} not found")
    return t


def _default_due_within_days() -> int:
    if has_app_context():
        return int(current_app.config.get("TRAINING_DUE_WITHIN_DAYS") or 30)
    return 30


def create_requirement(s: Session, training: Training, payload: dict[str, Any], *, user: User | None) -> TrainingRequirement:
    priority = (clean_str(payload.get("priority")) or "MEDIUM").upper()
    if priority not in PRIORITIES:
        raise ValueError(f"priority must be one of: {', '.join(PRIORITIES)}")

    def _days(key: str, default: int | None = None) -> int | None:
        v = payload.get(key)
        if v in (None, ""):
            return default
        v = int(v)
        if v < 0:
            raise ValueError(f"{key} cannot be negative")
        return v

    req = TrainingRequirement(
        company_id=training.company_id,
        training_id=training.id,
        name=clean_str(payload.get("name")) or training.title,
        description=clean_str(payload.get("description")),
        is_required=bool(payload.get("is_required", True)),
        priority=priority,
        departments=clean_list(payload.get("departments")),
        positions=clean_list(payload.get("positions")),
        employment_types=[v.upper() for v in clean_list(payload.get("employment_types"))],
        locations=clean_list(payload.get("locations")),
        due_within_days=_days("due_within_days", _default_due_within_days()),
        renewal_period_days=_days("renewal_period_days"),
        grace_period_days=_days("grace_period_days"),
        prerequisites=[int(x) for x in (payload.get("prerequisites") or [])],
        is_active=bool(payload.get("is_active", True)),
    )
    s.add(req)
    s.flush()
    record_event(
        s,
        actor=user,
        action="training.requirement.create",
        entity_type="TrainingRequirement",
        entity_id=str(req.id),
        company_id=training.company_id,
        metadata={"training_id": training.id, "priority": req.priority},
    )
    return req


def list_requirements(s: Session, company_id: int, *, active_only: bool = True) -> list[TrainingRequirement]:
    q = s.query(TrainingRequirement).filter(TrainingRequirement.company_id == company_id)
    if active_only:
        q = q.filter(TrainingRequirement.is_active.is_(True))
    return q.order_by(TrainingRequirement.id.asc()).all()


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


def get_record(s: Session, persona_id: int, training_id: int) -> TrainingRecord | None:
    return (
        s.query(TrainingRecord)
        .filter(TrainingRecord.persona_id == persona_id, TrainingRecord.training_id == training_id)
        .one_or_none()
    )


def assign_training(s: Session, assignment: Assignment, *, user: User | None) -> TrainingRecord:
    """
    Enroll a persona in a training. Assigning twice returns the existing record.
    """
    existing = get_record(s, assignment.persona_id, assignment.training_id)
    if existing is not None:
        logger.warning(
            "Training %s already assigned to persona %s (record %s)",
            assignment.training_id,
            assignment.persona_id,
            existing.id,
        )
        return existing

    training = s.get(Training, assignment.training_id)
    if training is None:
        raise NotFoundError(f"Training {assignment.training_id} not found")
    persona = s.get(PersonaProfile, assignment.persona_id)
    if persona is None:
        raise NotFoundError(f"Persona {assignment.persona_id} not found")
    if persona.company_id != training.company_id:
        raise ValueError("Persona and training belong to different companies")

    priority = (assignment.priority or "MEDIUM").upper()
    if priority not in PRIORITIES:
        raise ValueError(f"priority must be one of: {', '.join(PRIORITIES)}")

    rec = TrainingRecord(
        company_id=training.company_id,
        persona_id=persona.id,
        training_id=training.id,
        requirement_id=assignment.requirement_id,
        status="ENROLLED",
        compliance_status="PENDING",
        progress=0,
        attempts=0,
        enrollment_date=assignment.assigned_date or datetime.utcnow(),
        due_date=assignment.due_date,
        is_required=priority in ("HIGH", "CRITICAL"),
        priority=priority,
        metadata_json={"assignment_reason": assignment.reason, "priority": priority, **(assignment.metadata or {})},
        assigned_by_user_id=user.id if user else None,
    )
    rec.training = training
    rec.persona = persona
    s.add(rec)
    s.flush()
    record_event(
        s,
        actor=user,
        action="training.assign",
        entity_type="TrainingRecord",
        entity_id=str(rec.id),
        company_id=rec.company_id,
        reason=assignment.reason,
        metadata={"persona_id": persona.id, "training_id": training.id, "priority": priority, "due_date": rec.due_date},
    )
    logger.info("Training %s assigned to persona %s (priority=%s)", training.id, persona.id, priority)
    return rec


def bulk_assign_training(s: Session, assignments: list[Assignment], *, user: User | None) -> list[TrainingRecord]:
    out: list[TrainingRecord] = []
    failed = 0
    for a in assignments:
        try:
            with s.begin_nested():
                out.append(assign_training(s, a, user=user))
        except Exception:
            failed += 1
            logger.exception("Assignment of training %s to persona %s failed", a.training_id, a.persona_id)
    logger.info("Bulk training assignment: %s successful, %s failed", len(out), failed)
    return out


def is_persona_eligible(s: Session, persona: PersonaProfile, requirement: TrainingRequirement) -> bool:
    if requirement.departments and persona.department not in requirement.departments:
        return False
    if requirement.positions and persona.position not in requirement.positions:
        return False
    if requirement.employment_types and persona.employment_type not in requirement.employment_types:
        return False
    if requirement.locations and persona.location not in requirement.locations:
        return False
    prereqs = [int(p) for p in (requirement.prerequisites or [])]
    if prereqs:
        done = (
            s.query(TrainingRecord.training_id)
            .filter(
                TrainingRecord.persona_id == persona.id,
                TrainingRecord.training_id.in_(prereqs),
                TrainingRecord.status == "COMPLETED",
            )
            .distinct()
            .count()
        )
        if done < len(set(prereqs)):
            return False
    return True


def evaluate_training_requirements(s: Session, persona: PersonaProfile, *, now: datetime | None = None) -> list[Assignment]:
    now = now or datetime.utcnow()
    assignments: list[Assignment] = []
    for req in list_requirements(s, persona.company_id):
        if not is_persona_eligible(s, persona, req):
            continue
        if get_record(s, persona.id, req.training_id) is not None:
            continue
        due = now + timedelta(days=req.due_within_days) if req.due_within_days else None
        assignments.append(
            Assignment(
                persona_id=persona.id,
                training_id=req.training_id,
                requirement_id=req.id,
                due_date=due,
                priority=req.priority,
                reason="Automatic assignment based on requirements",
                assigned_date=now,
            )
        )
    return assignments


def auto_assign_training(s: Session, persona: PersonaProfile, *, user: User | None) -> list[TrainingRecord]:
    assignments = evaluate_training_requirements(s, persona)
    if not assignments:
        return []
    results = bulk_assign_training(s, assignments, user=user)
    logger.info("Auto-assigned %s training(s) to persona %s", len(results), persona.id)
    return results


# ---------------------------------------------------------------------------
# Progress and completion
# ---------------------------------------------------------------------------


def status_for_progress(progress: int) -> str:
    if progress <= 0:
        return "ENROLLED"
    if progress >= 100:
        return "COMPLETED"
    return "IN_PROGRESS"


def update_training_progress(
    s: Session,
    record: TrainingRecord,
    *,
    user: User | None,
    progress: int | None = None,
    status: str | None = None,
    score: float | None = None,
    attempts: int | None = None,
    started_at: datetime | None = None,
    completed_at: datetime | None = None,
    notes: str | None = None,
    time_spent_minutes: int | None = None,
) -> TrainingRecord:
    """
    Apply a progress update.

    Status follows progress (0 ENROLLED, 1-99 IN_PROGRESS, 100 COMPLETED).
    A completed attempt scoring under the training's passing_score becomes
    FAILED instead and keeps its previous compliance status.
    """
    if progress is not None:
        progress = int(progress)
        if progress < 0 or progress > 100:
            raise ValueError("progress must be between 0 and 100")

    old_status = record.status
    new_status = status_for_progress(progress) if progress is not None else record.status
    compliance = record.compliance_status
    if status and status.upper() == "OVERDUE" and new_status != "COMPLETED":
        compliance = "OVERDUE"

    if score is not None:
        record.score = float(score)
    if attempts is not None:
        record.attempts = int(attempts)
    if progress is not None:
        record.progress = progress
    if started_at is not None:
        record.start_date = parse_datetime(started_at)
    elif new_status == "IN_PROGRESS" and record.start_date is None:
        record.start_date = datetime.utcnow()
    if notes is not None:
        record.notes = notes

    meta = dict(record.metadata_json or {})
    if time_spent_minutes is not None:
        meta["time_spent_minutes"] = int(time_spent_minutes)
    meta["last_accessed_at"] = datetime.utcnow().isoformat()
    record.metadata_json = meta

    passing = record.training.passing_score if record.training else None
    if new_status == "COMPLETED" and passing is not None and record.score is not None and record.score < passing:
        new_status = "FAILED"

    if new_status == "COMPLETED":
        compliance = "COMPLIANT"
        record.completion_date = parse_datetime(completed_at) or record.completion_date or datetime.utcnow()
        renewal = record.requirement.renewal_period_days if record.requirement else None
        if renewal:
            record.expiry_date = record.completion_date + timedelta(days=renewal)

    record.status = new_status
    record.compliance_status = compliance
    record.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=user,
        action="training.progress",
        entity_type="TrainingRecord",
        entity_id=str(record.id),
        company_id=record.company_id,
        metadata={"from": old_status, "to": new_status, "progress": record.progress, "score": record.score},
    )

    if new_status == "COMPLETED" and old_status != "COMPLETED":
        handle_training_completion(s, record, user=user)
    return record


def handle_training_completion(s: Session, record: TrainingRecord, *, user: User | None) -> None:
    training = record.training
    meta = record.metadata_json or {}
    if training.category == "CERTIFICATION" or meta.get("issue_certificate"):
        issue_certification(s, record, user=user)

    try:
        _unlock_dependent_trainings(s, record, user=user)
    except Exception:
        logger.exception("Dependent training check failed for record %s", record.id)

    record_event(
        s,
        actor=user,
        action="training.complete",
        entity_type="TrainingRecord",
        entity_id=str(record.id),
        company_id=record.company_id,
        metadata={"persona_id": record.persona_id, "training_id": record.training_id},
    )
    logger.info("Training %s completed by persona %s", record.training_id, record.persona_id)


def _unlock_dependent_trainings(s: Session, record: TrainingRecord, *, user: User | None) -> list[TrainingRecord]:
    persona = record.persona
    dependents = [
        req
        for req in list_requirements(s, record.company_id)
        if record.training_id in [int(p) for p in (req.prerequisites or [])]
    ]
    assignments = [
        Assignment(
            persona_id=persona.id,
            training_id=req.training_id,
            requirement_id=req.id,
            due_date=datetime.utcnow() + timedelta(days=req.due_within_days) if req.due_within_days else None,
            priority=req.priority,
            reason=f"Unlocked after completing {record.training.title}",
        )
        for req in dependents
        if is_persona_eligible(s, persona, req)
    ]
    if not assignments:
        return []
    return bulk_assign_training(s, assignments, user=user)


def certificate_number(persona_id: int, *, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    return f"CERT-{now:%Y%m%d%H%M%S}-{str(persona_id)[-6:].zfill(6)}"


def issue_certification(s: Session, record: TrainingRecord, *, user: User | None = None) -> Certification:
    title = record.training.title
    existing = (
        s.query(Certification)
        .filter(Certification.persona_id == record.persona_id, Certification.name == title)
        .first()
    )
    if existing is not None:
        return existing

    now = datetime.utcnow()
    cert = Certification(
        company_id=record.company_id,
        persona_id=record.persona_id,
        name=title,
        description=f"Certification for completing {title}",
        type="INTERNAL",
        category=record.training.category,
        issuing_authority=CERT_ISSUER,
        certificate_number=certificate_number(record.persona_id, now=now),
        issue_date=now.date(),
        expiry_date=record.expiry_date.date() if record.expiry_date else None,
        status="ACTIVE",
        compliance_level="STANDARD",
        training_record_id=record.id,
        created_by_user_id=user.id if user else None,
    )
    s.add(cert)
    record.certificate_number = cert.certificate_number
    record.issued_by = CERT_ISSUER
    s.flush()
    record_event(
        s,
        actor=user,
        action="certification.issue",
        entity_type="Certification",
        entity_id=str(cert.id),
        company_id=record.company_id,
        metadata={"training_record_id": record.id, "certificate_number": cert.certificate_number},
    )
    logger.info("Certification %s issued for training record %s", cert.certificate_number, record.id)
    return cert


def mark_overdue_records(s: Session, company_id: int, *, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    rows = (
        s.query(TrainingRecord)
        .filter(
            TrainingRecord.company_id == company_id,
            TrainingRecord.status != "COMPLETED",
            TrainingRecord.due_date.isnot(None),
            TrainingRecord.compliance_status.in_(("PENDING", "COMPLIANT")),
        )
        .all()
    )
    count = 0
    for r in rows:
        grace = (r.requirement.grace_period_days if r.requirement else None) or 0
        if r.due_date + timedelta(days=grace) < now:
            r.compliance_status = "OVERDUE"
            r.updated_at = now
            count += 1
    if count:
        record_event(
            s,
            actor=None,
            action="training.mark_overdue",
            entity_type="TrainingRecord",
            company_id=company_id,
            metadata={"count": count},
        )
        logger.info("Marked %s training record(s) overdue for company %s", count, company_id)
    return count


# ---------------------------------------------------------------------------
# Direct record management
# ---------------------------------------------------------------------------


def create_training_record(s: Session, company_id: int, payload: dict[str, Any], *, user: User | None) -> TrainingRecord:
    persona_id = payload.get("persona_id")
    training_id = payload.get("training_id")
    if not persona_id or not training_id:
        raise ValueError("persona_id and training_id are required")
    training = get_training(s, int(training_id))
    if training.company_id != company_id:
        raise NotFoundError(f"Training {training_id} not found")
    if get_record(s, int(persona_id), training.id) is not None:
        raise ValueError("A training record for this persona and training already exists")
    is_required = bool(payload.get("is_required"))
    rec = TrainingRecord(
        company_id=company_id,
        persona_id=int(persona_id),
        training_id=training.id,
        status=(clean_str(payload.get("status")) or "ENROLLED").upper(),
        compliance_status="PENDING" if is_required else "EXEMPT",
        is_required=is_required,
        priority=(clean_str(payload.get("priority")) or "MEDIUM").upper(),
        enrollment_date=parse_datetime(payload.get("enrollment_date")) or datetime.utcnow(),
        due_date=parse_datetime(payload.get("due_date")),
        expiry_date=parse_datetime(payload.get("expiry_date")),
        notes=clean_str(payload.get("notes")),
        assigned_by_user_id=user.id if user else None,
    )
    s.add(rec)
    s.flush()
    record_event(
        s,
        actor=user,
        action="training.record.create",
        entity_type="TrainingRecord",
        entity_id=str(rec.id),
        company_id=company_id,
        metadata={"persona_id": rec.persona_id, "training_id": rec.training_id, "compliance_status": rec.compliance_status},
    )
    return rec


def update_training_record(
    s: Session,
    record: TrainingRecord,
    payload: dict[str, Any],
    *,
    user: User | None,
    now: datetime | None = None,
) -> TrainingRecord:
    now = now or datetime.utcnow()
    for key in ("completion_date", "expiry_date", "due_date", "start_date"):
        if key in payload:
            setattr(record, key, parse_datetime(payload.get(key)))
    if "status" in payload:
        st = (clean_str(payload.get("status")) or "").upper()
        if st not in RECORD_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(RECORD_STATUSES)}")
        record.status = st
    if "score" in payload:
        record.score = float(payload["score"]) if payload["score"] not in (None, "") else None
    if "notes" in payload:
        record.notes = clean_str(payload.get("notes"))

    if record.completion_date is not None:
        record.compliance_status = "COMPLIANT"
    elif record.expiry_date is not None and record.expiry_date < now:
        record.compliance_status = "OVERDUE"
    else:
        record.compliance_status = "PENDING"
    record.updated_at = now
    record_event(
        s,
        actor=user,
        action="training.record.update",
        entity_type="TrainingRecord",
        entity_id=str(record.id),
        company_id=record.company_id,
        metadata={"fields": sorted(payload.keys()), "compliance_status": record.compliance_status},
    )
    return record


def list_training_records(
    s: Session,
    company_id: int,
    *,
    persona_id: int | None = None,
    training_id: int | None = None,
    status: str | None = None,
    compliance_status: str | None = None,
    is_required: bool | None = None,
) -> list[TrainingRecord]:
    q = s.query(TrainingRecord).filter(TrainingRecord.company_id == company_id)
    if persona_id:
        q = q.filter(TrainingRecord.persona_id == persona_id)
    if training_id:
        q = q.filter(TrainingRecord.training_id == training_id)
    if status:
        q = q.filter(TrainingRecord.status == status.upper())
    if compliance_status:
        q = q.filter(TrainingRecord.compliance_status == compliance_status.upper())
    if is_required is not None:
        q = q.filter(TrainingRecord.is_required.is_(is_required))
    return q.order_by(TrainingRecord.created_at.desc(), TrainingRecord.id.desc()).all()


def get_persona_training_status(s: Session, persona: PersonaProfile) -> dict[str, Any]:
    records = (
        s.query(TrainingRecord)
        .filter(TrainingRecord.persona_id == persona.id)
        .order_by(TrainingRecord.enrollment_date.desc(), TrainingRecord.id.desc())
        .all()
    )
    return {
        "stats": {
            "total": len(records),
            "completed": sum(1 for r in records if r.status == "COMPLETED"),
            "in_progress": sum(1 for r in records if r.status == "IN_PROGRESS"),
            "overdue": sum(1 for r in records if r.compliance_status == "OVERDUE"),
            "compliant": sum(1 for r in records if r.compliance_status == "COMPLIANT"),
        },
        "records": records,
    }


def get_training_overview(s: Session, company_id: int) -> dict[str, Any]:
    records = s.query(TrainingRecord).filter(TrainingRecord.company_id == company_id).all()
    total = len(records)
    return {
        "total_records": total,
        "total_personas": len({r.persona_id for r in records}),
        "completion_rate": pct(sum(1 for r in records if r.status == "COMPLETED"), total),
        "compliance_rate": pct(sum(1 for r in records if r.compliance_status == "COMPLIANT"), total),
        "overdue_count": sum(1 for r in records if r.compliance_status == "OVERDUE"),
    }
