from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.sms.audit import record_event
from app.sms.errors import NotFoundError
from app.sms.models import User
from app.sms.modules.incidents.models import Incident, SafetyAudit, SMSRiskAssessment
from app.sms.utils import clean_str, paginate, parse_datetime

SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
VALID_STATUSES = ("OPEN", "INVESTIGATING", "RESOLVED", "CLOSED")

STATUS_TRANSITIONS = {
    "OPEN": {"INVESTIGATING"},
    "INVESTIGATING": {"RESOLVED", "OPEN"},
    "RESOLVED": {"CLOSED", "INVESTIGATING"},
    "CLOSED": set(),
}

AUDIT_TYPES = ("INTERNAL", "EXTERNAL", "REGULATORY")
AUDIT_STATUSES = ("PLANNED", "IN_PROGRESS", "COMPLETED", "CANCELLED")
FINDING_SEVERITIES = ("OBSERVATION", "MINOR", "MAJOR", "CRITICAL")


# ---------------------------------------------------------------------------
# Incidents
# ---------------------------------------------------------------------------


def validate_incident_payload(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not clean_str(payload.get("title")):
        errors.append("Title is required")
    if not clean_str(payload.get("description")):
        errors.append("Description is required")
    severity = (clean_str(payload.get("severity")) or "").upper()
    if severity not in SEVERITIES:
        errors.append(f"Severity must be one of: {', '.join(SEVERITIES)}")
    if not clean_str(payload.get("category")):
        errors.append("Category is required")
    return errors


def get_incident(s: Session, incident_id: int, *, company_id: int | None = None) -> Incident:
    q = s.query(Incident).filter(Incident.id == incident_id)
    if company_id is not None:
        q = q.filter(Incident.company_id == company_id)
    inc = q.one_or_none()
    if not inc:
        raise NotFoundError(f"Incident {incident_id} not found")
    return inc


def report_incident(s: Session, company_id: int, payload: dict[str, Any], *, user: User | None) -> Incident:
    errors = validate_incident_payload(payload)
    if errors:
        raise ValueError("; ".join(errors))

    inc = Incident(
        company_id=company_id,
        title=clean_str(payload.get("title")),
        description=clean_str(payload.get("description")),
        severity=clean_str(payload.get("severity")).upper(),
        category=clean_str(payload.get("category")),
        location=clean_str(payload.get("location")),
        status="OPEN",
        persona_id=payload.get("persona_id"),
        occurred_at=parse_datetime(payload.get("occurred_at")),
        reporter_user_id=user.id if user else None,
        updated_by_user_id=user.id if user else None,
    )
    s.add(inc)
    s.flush()

    record_event(
        s,
        actor=user,
        action="incident.report",
        entity_type="Incident",
        entity_id=str(inc.id),
        company_id=company_id,
        metadata={"title": inc.title, "severity": inc.severity, "category": inc.category},
    )
    return inc


def can_transition_to(inc: Incident, new_status: str, *, root_cause: str | None = None) -> tuple[bool, list[str]]:
    """Check if incident can move to new_status. `root_cause` overrides the stored one."""
    errors = []

    if inc.status not in STATUS_TRANSITIONS:
        errors.append(f"Current status '{inc.status}' is invalid")
        return False, errors

    if new_status not in STATUS_TRANSITIONS[inc.status]:
        errors.append(f"Cannot transition from '{inc.status}' to '{new_status}'")
        return False, errors

    if root_cause is None:
        root_cause = inc.root_cause
    if new_status == "RESOLVED" and not (root_cause or "").strip():
        errors.append("Root cause is required to resolve an incident")

    return len(errors) == 0, errors


def change_incident_status(
    s: Session,
    inc: Incident,
    new_status: str,
    reason: str,
    user: User,
    *,
    root_cause: str | None = None,
    corrective_actions: str | None = None,
) -> Incident:
    """Change incident status with validation."""
    new_status = (new_status or "").upper()
    if new_status not in VALID_STATUSES:
        raise ValueError(f"Invalid status: {new_status}")
    if not (reason or "").strip():
        raise ValueError("Reason is required")

    prospective_root_cause = clean_str(root_cause) if root_cause is not None else inc.root_cause
    can_change, errors = can_transition_to(inc, new_status, root_cause=prospective_root_cause or "")
    if not can_change:
        raise ValueError("; ".join(errors))

    if root_cause is not None:
        inc.root_cause = prospective_root_cause
    if corrective_actions is not None:
        inc.corrective_actions = clean_str(corrective_actions)

    now = datetime.utcnow()
    old_status = inc.status
    inc.status = new_status
    if new_status == "RESOLVED":
        inc.resolved_at = now
    elif new_status == "CLOSED":
        inc.closed_at = now
    elif new_status == "INVESTIGATING" and old_status == "RESOLVED":
        inc.resolved_at = None
    inc.updated_at = now
    inc.updated_by_user_id = user.id

    record_event(
        s,
        actor=user,
        action="incident.status_change",
        entity_type="Incident",
        entity_id=str(inc.id),
        company_id=inc.company_id,
        reason=reason.strip(),
        metadata={"from": old_status, "to": new_status, "severity": inc.severity},
    )
    return inc


def list_incidents(
    s: Session,
    company_id: int,
    *,
    status: str | None = None,
    severity: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> dict[str, Any]:
    q = s.query(Incident).filter(Incident.company_id == company_id)
    if status:
        q = q.filter(Incident.status == status.upper())
    if severity:
        q = q.filter(Incident.severity == severity.upper())
    q = q.order_by(Incident.reported_at.desc(), Incident.id.desc())
    return paginate(q, page=page, per_page=per_page)


def incident_summary(s: Session, company_id: int) -> dict[str, Any]:
    by_status = dict.fromkeys(VALID_STATUSES, 0)
    for status, n in (
        s.query(Incident.status, func.count(Incident.id))
        .filter(Incident.company_id == company_id)
        .group_by(Incident.status)
        .all()
    ):
        by_status[status] = n

    by_severity = dict.fromkeys(SEVERITIES, 0)
    for severity, n in (
        s.query(Incident.severity, func.count(Incident.id))
        .filter(Incident.company_id == company_id)
        .group_by(Incident.severity)
        .all()
    ):
        by_severity[severity] = n

    return {
        "total": sum(by_status.values()),
        "open": by_status["OPEN"] + by_status["INVESTIGATING"],
        "by_status": by_status,
        "by_severity": by_severity,
    }


# ---------------------------------------------------------------------------
# Safety audits
# ---------------------------------------------------------------------------


def get_audit(s: Session, audit_id: int, *, company_id: int | None = None) -> SafetyAudit:
    q = s.query(SafetyAudit).filter(SafetyAudit.id == audit_id)
    if company_id is not None:
        q = q.filter(SafetyAudit.company_id == company_id)
    a = q.one_or_none()
    if not a:
        raise NotFoundError(f"Safety audit {audit_id} not found")
    return a


def schedule_audit(s: Session, company_id: int, payload: dict[str, Any], *, user: User | None) -> SafetyAudit:
    title = clean_str(payload.get("title"))
    if not title:
        raise ValueError("Title is required")
    audit_type = (clean_str(payload.get("audit_type")) or "INTERNAL").upper()
    if audit_type not in AUDIT_TYPES:
        raise ValueError(f"Audit type must be one of: {', '.join(AUDIT_TYPES)}")
    scheduled = parse_datetime(payload.get("scheduled_date"))
    if not scheduled:
        raise ValueError("Scheduled date is required")

    a = SafetyAudit(
        company_id=company_id,
        title=title,
        audit_type=audit_type,
        scope=clean_str(payload.get("scope")),
        scheduled_date=scheduled,
        auditor_user_id=payload.get("auditor_user_id"),
        status="PLANNED",
        findings=[],
        created_by_user_id=user.id if user else None,
    )
    s.add(a)
    s.flush()
    record_event(
        s,
        actor=user,
        action="safety_audit.schedule",
        entity_type="SafetyAudit",
        entity_id=str(a.id),
        company_id=company_id,
        metadata={"title": a.title, "audit_type": a.audit_type, "scheduled_date": scheduled.isoformat()},
    )
    return a


def _set_audit_status(s: Session, a: SafetyAudit, new_status: str, *, user: User, reason: str | None = None) -> None:
    old = a.status
    a.status = new_status
    record_event(
        s,
        actor=user,
        action="safety_audit.status_change",
        entity_type="SafetyAudit",
        entity_id=str(a.id),
        company_id=a.company_id,
        reason=reason,
        metadata={"from": old, "to": new_status},
    )


def start_audit(s: Session, a: SafetyAudit, *, user: User) -> SafetyAudit:
    if a.status != "PLANNED":
        raise ValueError("Only PLANNED audits can be started")
    a.started_at = datetime.utcnow()
    _set_audit_status(s, a, "IN_PROGRESS", user=user)
    return a


def record_finding(
    s: Session,
    a: SafetyAudit,
    *,
    description: str,
    severity: str = "OBSERVATION",
    reference: str | None = None,
    user: User,
) -> dict[str, Any]:
    if a.status != "IN_PROGRESS":
        raise ValueError("Findings can only be recorded while the audit is IN_PROGRESS")
    if not (description or "").strip():
        raise ValueError("Finding description is required")
    severity = (severity or "").upper()
    if severity not in FINDING_SEVERITIES:
        raise ValueError(f"Finding severity must be one of: {', '.join(FINDING_SEVERITIES)}")

    finding = {
        "id": len(a.findings or []) + 1,
        "description": description.strip(),
        "severity": severity,
        "reference": clean_str(reference),
        "recorded_at": datetime.utcnow().isoformat(),
        "recorded_by_user_id": user.id,
    }
    # reassign so the JSON column is flagged dirty
    a.findings = list(a.findings or []) + [finding]
    record_event(
        s,
        actor=user,
        action="safety_audit.finding",
        entity_type="SafetyAudit",
        entity_id=str(a.id),
        company_id=a.company_id,
        metadata={"finding_id": finding["id"], "severity": severity},
    )
    return finding


def complete_audit(s: Session, a: SafetyAudit, *, user: User, summary: str | None = None) -> SafetyAudit:
    if a.status != "IN_PROGRESS":
        raise ValueError("Only IN_PROGRESS audits can be completed")
    a.summary = clean_str(summary)
    a.completed_at = datetime.utcnow()
    _set_audit_status(s, a, "COMPLETED", user=user)
    return a


def cancel_audit(s: Session, a: SafetyAudit, *, user: User, reason: str) -> SafetyAudit:
    if a.status in ("COMPLETED", "CANCELLED"):
        raise ValueError(f"Audit is already {a.status}")
    if not (reason or "").strip():
        raise ValueError("Reason is required")
    _set_audit_status(s, a, "CANCELLED", user=user, reason=reason.strip())
    return a


# ---------------------------------------------------------------------------
# Risk register
# ---------------------------------------------------------------------------


def _unit_interval(payload: dict[str, Any], key: str, errors: list[str]) -> float | None:
    raw = payload.get(key)
    try:
        v = float(raw)
    except (TypeError, ValueError):
        errors.append(f"{key.capitalize()} must be a number between 0 and 1")
        return None
    if isinstance(raw, bool) or not 0 <= v <= 1:
        errors.append(f"{key.capitalize()} must be a number between 0 and 1")
        return None
    return v


def validate_risk_assessment_payload(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not clean_str(payload.get("title")):
        errors.append("Title is required")
    risk_level = (clean_str(payload.get("risk_level")) or "").upper()
    if risk_level not in SEVERITIES:
        errors.append(f"Risk level must be one of: {', '.join(SEVERITIES)}")
    _unit_interval(payload, "probability", errors)
    _unit_interval(payload, "impact", errors)
    return errors


def get_risk_assessment(s: Session, assessment_id: int, *, company_id: int | None = None) -> SMSRiskAssessment:
    q = s.query(SMSRiskAssessment).filter(SMSRiskAssessment.id == assessment_id)
    if company_id is not None:
        q = q.filter(SMSRiskAssessment.company_id == company_id)
    ra = q.one_or_none()
    if not ra:
        raise NotFoundError(f"Risk assessment {assessment_id} not found")
    return ra


def create_risk_assessment(s: Session, company_id: int, payload: dict[str, Any], *, user: User | None) -> SMSRiskAssessment:
    errors = validate_risk_assessment_payload(payload)
    if errors:
        raise ValueError("; ".join(errors))

    ra = SMSRiskAssessment(
        company_id=company_id,
        title=clean_str(payload.get("title")),
        description=clean_str(payload.get("description")),
        risk_level=clean_str(payload.get("risk_level")).upper(),
        probability=float(payload["probability"]),
        impact=float(payload["impact"]),
        mitigation=clean_str(payload.get("mitigation")),
        assessor_user_id=user.id if user else None,
    )
    s.add(ra)
    s.flush()
    record_event(
        s,
        actor=user,
        action="risk_assessment.create",
        entity_type="SMSRiskAssessment",
        entity_id=str(ra.id),
        company_id=company_id,
        metadata={"title": ra.title, "risk_level": ra.risk_level, "probability": ra.probability, "impact": ra.impact},
    )
    return ra


def list_risk_assessments(
    s: Session,
    company_id: int,
    *,
    risk_level: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> dict[str, Any]:
    """Paginated, newest first."""
    risk_level = (risk_level or "").strip().upper()
    if risk_level and risk_level not in SEVERITIES:
        raise ValueError(f"Risk level must be one of: {', '.join(SEVERITIES)}")
    q = s.query(SMSRiskAssessment).filter(SMSRiskAssessment.company_id == company_id)
    if risk_level:
        q = q.filter(SMSRiskAssessment.risk_level == risk_level)
    q = q.order_by(SMSRiskAssessment.created_at.desc(), SMSRiskAssessment.id.desc())
    return paginate(q, page=page, per_page=per_page)
