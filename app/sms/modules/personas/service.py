from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.sms.audit import record_event
from app.sms.errors import ConsentError, NotFoundError
from app.sms.models import User
from app.sms.modules.dynamic_fields.service import get_field_values_for_entity, set_field_values_for_entity
from app.sms.modules.personas.models import (
    AnonymizationLog,
    Certification,
    Competency,
    ConsentRecord,
    PersonaProfile,
)
from app.sms.modules.personas.utils import (
    anonymized_identity,
    mask_sensitive_data,
    profile_completeness,
    retention_until,
)
from app.sms.utils import clean_str, parse_date

logger = logging.getLogger(__name__)

EMPLOYMENT_TYPES = ("FULL_TIME", "PART_TIME", "CONTRACT", "TEMPORARY", "INTERN", "CONSULTANT")
PERSONA_STATUSES = ("ACTIVE", "INACTIVE", "TERMINATED")
CONSENT_VERSION = "1.0"

_STR_FIELDS = (
    "employee_id",
    "first_name",
    "last_name",
    "email",
    "phone_number",
    "national_id",
    "department",
    "position",
    "location",
)
_DATE_FIELDS = ("date_of_birth", "start_date", "end_date")
_JSON_FIELDS = ("address", "emergency_contact")
_AUDITED_FIELDS = _STR_FIELDS + _DATE_FIELDS + _JSON_FIELDS + ("employment_type", "status", "manager_id")


def validate_persona_payload(payload: dict[str, Any], *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial:
        for f in ("first_name", "last_name", "email"):
            if not clean_str(payload.get(f)):
                errors.append(f"{f} is required")
    email = clean_str(payload.get("email"))
    if email and "@" not in email:
        errors.append("email is not a valid address")
    et = clean_str(payload.get("employment_type"))
    if et and et.upper() not in EMPLOYMENT_TYPES:
        errors.append(f"employment_type must be one of: {', '.join(EMPLOYMENT_TYPES)}")
    st = clean_str(payload.get("status"))
    if st and st.upper() not in PERSONA_STATUSES:
        errors.append(f"status must be one of: {', '.join(PERSONA_STATUSES)}")
    return errors


def _apply_fields(p: PersonaProfile, payload: dict[str, Any]) -> None:
    for f in _STR_FIELDS:
        if f in payload:
            setattr(p, f, clean_str(payload.get(f)))
    for f in _DATE_FIELDS:
        if f in payload:
            setattr(p, f, parse_date(payload.get(f)))
    for f in _JSON_FIELDS:
        if f in payload:
            setattr(p, f, payload.get(f) or None)
    if "employment_type" in payload:
        et = clean_str(payload.get("employment_type"))
        p.employment_type = et.upper() if et else None
    if "status" in payload:
        st = clean_str(payload.get("status"))
        p.status = st.upper() if st else "ACTIVE"
        p.is_active = p.status == "ACTIVE"
    if "manager_id" in payload:
        p.manager_id = int(payload["manager_id"]) if payload.get("manager_id") else None


def _snapshot(p: PersonaProfile) -> dict[str, Any]:
    return {f: getattr(p, f) for f in _AUDITED_FIELDS}


def persona_to_dict(p: PersonaProfile) -> dict[str, Any]:
    return {
        "id": p.id,
        "company_id": p.company_id,
        "employee_id": p.employee_id,
        "first_name": p.first_name,
        "last_name": p.last_name,
        "full_name": p.full_name,
        "email": p.email,
        "phone_number": p.phone_number,
        "date_of_birth": p.date_of_birth.isoformat() if p.date_of_birth else None,
        "national_id": p.national_id,
        "address": p.address,
        "emergency_contact": p.emergency_contact,
        "department": p.department,
        "position": p.position,
        "employment_type": p.employment_type,
        "location": p.location,
        "start_date": p.start_date.isoformat() if p.start_date else None,
        "end_date": p.end_date.isoformat() if p.end_date else None,
        "manager_id": p.manager_id,
        "status": p.status,
        "is_active": p.is_active,
        "data_processing_consent": p.data_processing_consent,
        "marketing_consent": p.marketing_consent,
        "consent_version": p.consent_version,
        "profile_completeness": p.profile_completeness,
        "data_retention_until": p.data_retention_until.isoformat() if p.data_retention_until else None,
        "compliance_status": p.compliance_status,
        "compliance_score": p.compliance_score,
        "anonymized_at": p.anonymized_at.isoformat() if p.anonymized_at else None,
        "certifications": [
            {"id": c.id, "name": c.name, "status": c.status, "expiry_date": c.expiry_date} for c in p.certifications
        ],
        "competencies": [
            {"id": c.id, "name": c.name, "current_level": c.current_level} for c in p.competencies
        ],
    }


def get_persona_by_id(s: Session, persona_id: int, *, company_id: int | None = None) -> PersonaProfile | None:
    q = s.query(PersonaProfile).filter(PersonaProfile.id == persona_id)
    if company_id is not None:
        q = q.filter(PersonaProfile.company_id == company_id)
    return q.one_or_none()


def _require_persona(s: Session, persona_id: int, company_id: int | None = None) -> PersonaProfile:
    p = get_persona_by_id(s, persona_id, company_id=company_id)
    if not p:
        raise NotFoundError(f"Persona {persona_id} not found")
    return p


def _record_consent(s: Session, p: PersonaProfile, consent_type: str, granted: bool) -> ConsentRecord:
    rec = ConsentRecord(persona_id=p.id, consent_type=consent_type, granted=granted, version=CONSENT_VERSION)
    s.add(rec)
    return rec


def create_persona(s: Session, company_id: int, payload: dict[str, Any], *, user: User | None) -> PersonaProfile:
    """
    Create a persona profile.

    Data-processing consent is mandatory: without it nothing is stored. Custom
    fields under payload["custom_fields"] go through the dynamic field store.
    """
    if not payload.get("data_processing_consent"):
        raise ConsentError("Data processing consent is required to create a persona profile")
    errors = validate_persona_payload(payload)
    if errors:
        raise ValueError("; ".join(errors))

    now = datetime.utcnow()
    p = PersonaProfile(company_id=company_id)
    _apply_fields(p, payload)
    p.data_processing_consent = True
    p.marketing_consent = bool(payload.get("marketing_consent"))
    p.consent_version = CONSENT_VERSION
    p.consent_timestamp = now
    p.profile_completeness = profile_completeness(payload)
    p.data_retention_until = retention_until(p.employment_type, now=now)
    p.created_by_user_id = user.id if user else None
    p.updated_by_user_id = user.id if user else None
    s.add(p)
    s.flush()

    _record_consent(s, p, "DATA_PROCESSING", True)
    if p.marketing_consent:
        _record_consent(s, p, "MARKETING", True)

    custom = payload.get("custom_fields") or {}
    if custom:
        set_field_values_for_entity(
            s,
            company_id=company_id,
            entity_type="PERSONA",
            entity_id=p.id,
            values=custom,
            user=user,
        )

    record_event(
        s,
        actor=user,
        action="persona.create",
        entity_type="PersonaProfile",
        entity_id=str(p.id),
        company_id=company_id,
        metadata={"department": p.department, "employment_type": p.employment_type, "completeness": p.profile_completeness},
    )
    logger.info("Persona created id=%s company=%s", p.id, company_id)
    return p


def get_persona(s: Session, persona_id: int, *, company_id: int | None = None, include_sensitive: bool = False) -> dict[str, Any]:
    p = _require_persona(s, persona_id, company_id)
    data = persona_to_dict(p)
    data["custom_fields"] = get_field_values_for_entity(
        s,
        company_id=p.company_id,
        entity_type="PERSONA",
        entity_id=p.id,
    )
    if include_sensitive:
        return data
    return mask_sensitive_data(data, "PARTIAL")


def update_persona(s: Session, p: PersonaProfile, payload: dict[str, Any], *, user: User | None, reason: str | None = None) -> PersonaProfile:
    if p.anonymized_at:
        raise ValueError("Anonymized personas cannot be updated")
    errors = validate_persona_payload(payload, partial=True)
    if errors:
        raise ValueError("; ".join(errors))

    before = _snapshot(p)
    _apply_fields(p, payload)
    if "marketing_consent" in payload:
        granted = bool(payload.get("marketing_consent"))
        if granted != p.marketing_consent:
            p.marketing_consent = granted
            _record_consent(s, p, "MARKETING", granted)
    after = _snapshot(p)

    p.profile_completeness = profile_completeness(after)
    p.updated_at = datetime.utcnow()
    p.updated_by_user_id = user.id if user else None

    if payload.get("custom_fields"):
        set_field_values_for_entity(
            s,
            company_id=p.company_id,
            entity_type="PERSONA",
            entity_id=p.id,
            values=payload["custom_fields"],
            user=user,
        )

    fields_changed = [k for k in before if before[k] != after[k]]
    record_event(
        s,
        actor=user,
        action="persona.update",
        entity_type="PersonaProfile",
        entity_id=str(p.id),
        company_id=p.company_id,
        reason=reason,
        metadata={"fields_changed": fields_changed},
    )
    return p


def anonymize_persona(s: Session, p: PersonaProfile, *, reason: str, user: User | None) -> PersonaProfile:
    """
    Irreversibly replace identifying data. The row survives so training records,
    certifications and audit history keep their references.
    """
    if not (reason or "").strip():
        raise ValueError("reason is required")
    if p.anonymized_at:
        raise ValueError("Persona is already anonymized")

    replacement = anonymized_identity(p.id)
    for k, v in replacement.items():
        setattr(p, k, v)
    now = datetime.utcnow()
    p.status = "TERMINATED"
    p.is_active = False
    p.anonymized_at = now
    p.updated_at = now
    p.updated_by_user_id = user.id if user else None

    log = AnonymizationLog(
        company_id=p.company_id,
        original_persona_id=p.id,
        method="FULL_ANONYMIZATION",
        reason=reason.strip(),
        fields_anonymized=sorted(replacement.keys()),
        requested_by_user_id=user.id if user else None,
    )
    s.add(log)
    record_event(
        s,
        actor=user,
        action="persona.anonymize",
        entity_type="PersonaProfile",
        entity_id=str(p.id),
        company_id=p.company_id,
        reason=reason.strip(),
        metadata={"fields_anonymized": log.fields_anonymized},
    )
    logger.info("Persona anonymized id=%s", p.id)
    return p


def delete_persona(s: Session, p: PersonaProfile, *, reason: str, user: User | None) -> PersonaProfile:
    # Personas are never hard-deleted.
    return anonymize_persona(s, p, reason=reason, user=user)


def list_personas(
    s: Session,
    company_id: int,
    *,
    department: str | None = None,
    status: str | None = None,
) -> list[PersonaProfile]:
    q = s.query(PersonaProfile).filter(PersonaProfile.company_id == company_id)
    if department:
        q = q.filter(PersonaProfile.department == department)
    if status:
        q = q.filter(PersonaProfile.status == status.upper())
    return q.order_by(PersonaProfile.last_name.asc(), PersonaProfile.first_name.asc(), PersonaProfile.id.asc()).all()


def create_certification(s: Session, persona: PersonaProfile, payload: dict[str, Any], *, user: User | None) -> Certification:
    name = clean_str(payload.get("name"))
    authority = clean_str(payload.get("issuing_authority"))
    number = clean_str(payload.get("certificate_number"))
    issue = parse_date(payload.get("issue_date"))
    if not name or not authority or not number or not issue:
        raise ValueError("name, issuing_authority, certificate_number and issue_date are required")
    expiry = parse_date(payload.get("expiry_date"))
    if expiry and expiry < issue:
        raise ValueError("expiry_date cannot be before issue_date")

    c = Certification(
        company_id=persona.company_id,
        persona_id=persona.id,
        name=name,
        description=clean_str(payload.get("description")),
        type=(clean_str(payload.get("type")) or "INTERNAL").upper(),
        category=clean_str(payload.get("category")),
        issuing_authority=authority,
        certificate_number=number,
        issue_date=issue,
        expiry_date=expiry,
        status=(clean_str(payload.get("status")) or "ACTIVE").upper(),
        compliance_level=clean_str(payload.get("compliance_level")),
        is_regulatory=bool(payload.get("is_regulatory")),
        training_record_id=payload.get("training_record_id"),
        created_by_user_id=user.id if user else None,
    )
    s.add(c)
    s.flush()
    record_event(
        s,
        actor=user,
        action="certification.create",
        entity_type="Certification",
        entity_id=str(c.id),
        company_id=persona.company_id,
        metadata={"persona_id": persona.id, "name": c.name, "certificate_number": c.certificate_number},
    )
    return c


def list_certifications(
    s: Session,
    company_id: int,
    *,
    persona_id: int | None = None,
    status: str | None = None,
    expiring_before: date | None = None,
) -> list[Certification]:
    q = s.query(Certification).filter(Certification.company_id == company_id)
    if persona_id:
        q = q.filter(Certification.persona_id == persona_id)
    if status:
        q = q.filter(Certification.status == status.upper())
    if expiring_before:
        q = q.filter(Certification.expiry_date.isnot(None), Certification.expiry_date <= expiring_before)
    return q.order_by(Certification.expiry_date.asc(), Certification.id.asc()).all()


def create_competency(s: Session, persona: PersonaProfile, payload: dict[str, Any], *, user: User | None) -> Competency:
    name = clean_str(payload.get("name"))
    category = clean_str(payload.get("category"))
    if not name or not category:
        raise ValueError("name and category are required")
    score = payload.get("score")
    c = Competency(
        company_id=persona.company_id,
        persona_id=persona.id,
        name=name,
        description=clean_str(payload.get("description")),
        category=category,
        current_level=(clean_str(payload.get("current_level")) or "BEGINNER").upper(),
        target_level=(clean_str(payload.get("target_level")) or "").upper() or None,
        assessment_date=parse_date(payload.get("assessment_date")),
        next_assessment_date=parse_date(payload.get("next_assessment_date")),
        score=float(score) if score not in (None, "") else None,
        created_by_user_id=user.id if user else None,
    )
    s.add(c)
    s.flush()
    record_event(
        s,
        actor=user,
        action="competency.create",
        entity_type="Competency",
        entity_id=str(c.id),
        company_id=persona.company_id,
        metadata={"persona_id": persona.id, "name": c.name, "level": c.current_level},
    )
    return c


def get_compliance_overview(s: Session, company_id: int) -> dict[str, Any]:
    # Local import: training models reference persona models.
    from app.sms.modules.training.models import TrainingRecord

    total = s.query(func.count(PersonaProfile.id)).filter(PersonaProfile.company_id == company_id).scalar() or 0
    active = (
        s.query(func.count(PersonaProfile.id))
        .filter(PersonaProfile.company_id == company_id, PersonaProfile.is_active.is_(True))
        .scalar()
        or 0
    )
    training = dict(
        s.query(TrainingRecord.compliance_status, func.count(TrainingRecord.id))
        .filter(TrainingRecord.company_id == company_id)
        .group_by(TrainingRecord.compliance_status)
        .all()
    )
    certs = dict(
        s.query(Certification.status, func.count(Certification.id))
        .filter(Certification.company_id == company_id)
        .group_by(Certification.status)
        .all()
    )
    comps = dict(
        s.query(Competency.current_level, func.count(Competency.id))
        .filter(Competency.company_id == company_id)
        .group_by(Competency.current_level)
        .all()
    )
    return {
        "total_personas": int(total),
        "active_personas": int(active),
        "training_compliance": training,
        "certification_status": certs,
        "competency_levels": comps,
        "generated_at": datetime.utcnow().isoformat(),
    }
