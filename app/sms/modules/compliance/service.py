"""
Compliance rule-evaluation engine.

Each active rule that applies to a persona produces a score (out of 100) and a
list of findings. Findings are persisted as ComplianceViolation rows keyed by
(rule, violation type, subject) so repeated evaluations update rather than
duplicate them.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from app.sms.audit import record_event
from app.sms.errors import NotFoundError
from app.sms.models import User
from app.sms.modules.compliance.models import ComplianceRule, ComplianceViolation
from app.sms.modules.documents.models import Document
from app.sms.modules.documents.workflow import OPERATORS, evaluate_condition
from app.sms.modules.personas.models import Certification, PersonaProfile
from app.sms.modules.training.models import TrainingRecord
from app.sms.utils import clean_list, clean_str

logger = logging.getLogger(__name__)

RULE_TYPES = ("TRAINING", "CERTIFICATION", "DOCUMENT", "CUSTOM")
PRIORITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
ACTIVE_VIOLATION_STATUSES = ("OPEN", "IN_PROGRESS")

DEFAULT_TRAINING_WARNING_DAYS = 7
DEFAULT_VALIDITY_DAYS = 365
URGENT_DEADLINE_DAYS = 7

DEFAULT_COMPLIANCE_RULE: dict[str, Any] = {
    "name": "Data processing consent on file",
    "description": "Every active persona must have recorded data-processing consent.",
    "type": "CUSTOM",
    "priority": "HIGH",
    "conditions": {
        "criteria": [{"field": "data_processing_consent", "operator": "equals", "value": True}],
    },
}


@dataclass
class Finding:
    rule_id: int
    violation_type: str
    severity: str
    subject: str
    description: str
    due_date: datetime | None = None

    @property
    def key(self) -> tuple[int, str, str]:
        return (self.rule_id, self.violation_type, self.subject)


@dataclass
class RuleEvaluation:
    score: float
    max_score: float = 100.0
    findings: list[Finding] = field(default_factory=list)
    upcoming_deadlines: list[dict[str, Any]] = field(default_factory=list)
    errored: bool = False


@dataclass
class ComplianceStatus:
    persona_id: int
    overall_status: str  # COMPLIANT, AT_RISK, NON_COMPLIANT
    compliance_score: int
    last_evaluated: datetime
    violations: list[ComplianceViolation] = field(default_factory=list)
    upcoming_deadlines: list[dict[str, Any]] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


def _certification_warning_days() -> int:
    if has_app_context():
        return int(current_app.config.get("COMPLIANCE_WARNING_DAYS") or 30)
    return 30


def _days_remaining(due: datetime, now: datetime) -> int:
    return math.ceil((due - now).total_seconds() / 86400)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def validate_rule_payload(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not clean_str(payload.get("name")):
        errors.append("name is required")
    rtype = (clean_str(payload.get("type")) or "").upper()
    if rtype not in RULE_TYPES:
        errors.append(f"type must be one of: {', '.join(RULE_TYPES)}")
    priority = (clean_str(payload.get("priority")) or "MEDIUM").upper()
    if priority not in PRIORITIES:
        errors.append(f"priority must be one of: {', '.join(PRIORITIES)}")
    conditions = payload.get("conditions") or {}
    if not isinstance(conditions, dict):
        errors.append("conditions must be an object")
    else:
        for c in conditions.get("criteria") or []:
            if not isinstance(c, dict) or not c.get("field"):
                errors.append("every criterion needs a field")
            elif c.get("operator") not in OPERATORS:
                errors.append(f"unknown criterion operator {c.get('operator')!r}")
    return errors


def create_compliance_rule(s: Session, company_id: int, payload: dict[str, Any], *, user: User | None) -> ComplianceRule:
    errors = validate_rule_payload(payload)
    if errors:
        raise ValueError("; ".join(errors))
    rule = ComplianceRule(
        company_id=company_id,
        name=clean_str(payload.get("name")),
        description=clean_str(payload.get("description")),
        type=clean_str(payload.get("type")).upper(),
        priority=(clean_str(payload.get("priority")) or "MEDIUM").upper(),
        conditions=payload.get("conditions") or {},
        departments=clean_list(payload.get("departments")),
        positions=clean_list(payload.get("positions")),
        employment_types=[v.upper() for v in clean_list(payload.get("employment_types"))],
        evaluation_frequency=(clean_str(payload.get("evaluation_frequency")) or "MONTHLY").upper(),
        grace_period_days=payload.get("grace_period_days"),
        warning_days=payload.get("warning_days"),
        is_active=bool(payload.get("is_active", True)),
        created_by_user_id=user.id if user else None,
    )
    s.add(rule)
    s.flush()
    record_event(
        s,
        actor=user,
        action="compliance.rule.create",
        entity_type="ComplianceRule",
        entity_id=str(rule.id),
        company_id=company_id,
        metadata={"name": rule.name, "type": rule.type, "priority": rule.priority},
    )
    return rule


def list_compliance_rules(s: Session, company_id: int, *, active_only: bool = True) -> list[ComplianceRule]:
    q = s.query(ComplianceRule).filter(ComplianceRule.company_id == company_id)
    if active_only:
        q = q.filter(ComplianceRule.is_active.is_(True))
    return q.order_by(ComplianceRule.id.asc()).all()


def get_applicable_rules(s: Session, persona: PersonaProfile) -> list[ComplianceRule]:
    out = []
    for rule in list_compliance_rules(s, persona.company_id):
        if rule.departments and persona.department not in rule.departments:
            continue
        if rule.positions and persona.position not in rule.positions:
            continue
        if rule.employment_types and persona.employment_type not in rule.employment_types:
            continue
        out.append(rule)
    return out


# ---------------------------------------------------------------------------
# Rule evaluators
# ---------------------------------------------------------------------------


def evaluate_rule(s: Session, persona: PersonaProfile, rule: ComplianceRule, *, now: datetime) -> RuleEvaluation:
    evaluator = _EVALUATORS.get(rule.type)
    if evaluator is None:
        logger.warning("Unknown compliance rule type %r (rule %s); scoring as compliant", rule.type, rule.id)
        return RuleEvaluation(score=100.0)
    try:
        return evaluator(s, persona, rule, now)
    except Exception:
        logger.exception("Compliance rule %s failed for persona %s", rule.id, persona.id)
        return RuleEvaluation(score=0.0, errored=True)


def _evaluate_training_rule(s: Session, persona: PersonaProfile, rule: ComplianceRule, now: datetime) -> RuleEvaluation:
    conditions = rule.conditions or {}
    required = [int(t) for t in (conditions.get("required_training") or [])]
    validity = int(conditions.get("validity_days") or DEFAULT_VALIDITY_DAYS)
    warning = int(rule.warning_days or DEFAULT_TRAINING_WARNING_DAYS)
    ev = RuleEvaluation(score=100.0)
    if not required:
        return ev

    records = {
        r.training_id: r
        for r in s.query(TrainingRecord)
        .filter(TrainingRecord.persona_id == persona.id, TrainingRecord.training_id.in_(required))
        .all()
    }
    total = 0.0
    for training_id in required:
        rec = records.get(training_id)
        if rec is None:
            ev.findings.append(
                Finding(rule.id, "MISSING", rule.priority, f"training:{training_id}", f"Required training not assigned: {training_id}")
            )
            continue
        title = rec.training.title if rec.training else str(training_id)
        subject = f"training:{training_id}"
        if rec.status != "COMPLETED":
            if rec.due_date is not None and rec.due_date < now:
                ev.findings.append(
                    Finding(rule.id, "OVERDUE", rule.priority, subject, f"Training overdue: {title}", due_date=rec.due_date)
                )
                total += 25
            elif rec.due_date is not None:
                if now >= rec.due_date - timedelta(days=warning):
                    ev.upcoming_deadlines.append(
                        {
                            "type": "TRAINING",
                            "training_id": training_id,
                            "title": title,
                            "due_date": rec.due_date,
                            "days_remaining": _days_remaining(rec.due_date, now),
                        }
                    )
                total += 75
            else:
                total += 50
        else:
            completed = rec.completion_date or rec.updated_at
            expires = completed + timedelta(days=validity)
            if expires < now:
                ev.findings.append(
                    Finding(rule.id, "EXPIRED", rule.priority, subject, f"Training expired: {title}", due_date=expires)
                )
                total += 50
            else:
                total += 100
    ev.score = total / len(required)
    return ev


def _evaluate_certification_rule(s: Session, persona: PersonaProfile, rule: ComplianceRule, now: datetime) -> RuleEvaluation:
    names = [str(n) for n in ((rule.conditions or {}).get("required_certifications") or [])]
    warning = int(rule.warning_days or _certification_warning_days())
    ev = RuleEvaluation(score=100.0)
    today = now.date()
    for name in names:
        cert = (
            s.query(Certification)
            .filter(
                Certification.persona_id == persona.id,
                Certification.name == name,
                Certification.status == "ACTIVE",
            )
            .order_by(Certification.issue_date.desc(), Certification.id.desc())
            .first()
        )
        subject = f"certification:{name}"
        if cert is None:
            ev.findings.append(Finding(rule.id, "MISSING", rule.priority, subject, f"Required certification missing: {name}"))
            ev.score = 0.0
        elif cert.expiry_date is not None:
            expiry = datetime(cert.expiry_date.year, cert.expiry_date.month, cert.expiry_date.day)
            if cert.expiry_date < today:
                ev.findings.append(
                    Finding(rule.id, "EXPIRED", rule.priority, subject, f"Certification expired: {name}", due_date=expiry)
                )
                ev.score = 25.0
            elif now >= expiry - timedelta(days=warning):
                ev.upcoming_deadlines.append(
                    {
                        "type": "CERTIFICATION",
                        "certification_id": cert.id,
                        "title": name,
                        "due_date": expiry,
                        "days_remaining": _days_remaining(expiry, now),
                    }
                )
    return ev


def _evaluate_document_rule(s: Session, persona: PersonaProfile, rule: ComplianceRule, now: datetime) -> RuleEvaluation:
    doc_numbers = [str(d).strip().upper() for d in ((rule.conditions or {}).get("required_documents") or [])]
    ev = RuleEvaluation(score=100.0)
    if not doc_numbers:
        return ev
    ok = 0
    for num in doc_numbers:
        doc = (
            s.query(Document)
            .filter(Document.company_id == persona.company_id, Document.doc_number == num, Document.status != "DELETED")
            .one_or_none()
        )
        subject = f"document:{num}"
        if doc is None or doc.status not in ("PUBLISHED", "APPROVED"):
            ev.findings.append(Finding(rule.id, "MISSING", rule.priority, subject, f"Required document not available: {num}"))
        elif doc.review_due_at is not None and doc.review_due_at < now:
            ev.findings.append(
                Finding(rule.id, "EXPIRED", rule.priority, subject, f"Document review overdue: {num}", due_date=doc.review_due_at)
            )
        else:
            ok += 1
    ev.score = ok / len(doc_numbers) * 100
    return ev


def _evaluate_custom_rule(s: Session, persona: PersonaProfile, rule: ComplianceRule, now: datetime) -> RuleEvaluation:
    criteria = (rule.conditions or {}).get("criteria") or []
    ev = RuleEvaluation(score=100.0)
    if not criteria:
        return ev
    passed = 0
    for c in criteria:
        fld = str(c.get("field") or "")
        if evaluate_condition(str(c.get("operator") or ""), getattr(persona, fld, None), c.get("value")):
            passed += 1
        else:
            ev.findings.append(
                Finding(
                    rule.id,
                    "INCOMPLETE",
                    rule.priority,
                    f"field:{fld}",
                    f"Criterion not met: {fld} {c.get('operator')} {c.get('value')!r}",
                )
            )
    ev.score = passed / len(criteria) * 100
    return ev


_EVALUATORS = {
    "TRAINING": _evaluate_training_rule,
    "CERTIFICATION": _evaluate_certification_rule,
    "DOCUMENT": _evaluate_document_rule,
    "CUSTOM": _evaluate_custom_rule,
}


# ---------------------------------------------------------------------------
# Persona / company evaluation
# ---------------------------------------------------------------------------


def overall_status(findings: list[Finding], score: int) -> str:
    if any(f.severity == "CRITICAL" for f in findings):
        return "NON_COMPLIANT"
    if any(f.severity == "HIGH" for f in findings) or score < 95 or findings:
        return "AT_RISK"
    return "COMPLIANT"


def generate_recommendations(findings: list[Finding], upcoming: list[dict[str, Any]]) -> list[str]:
    out: list[str] = []
    critical = sum(1 for f in findings if f.severity == "CRITICAL")
    if critical:
        out.append(f"Address {critical} critical compliance violation(s) immediately")
    overdue = sum(1 for f in findings if f.violation_type == "OVERDUE")
    if overdue:
        out.append(f"Complete {overdue} overdue training requirement(s)")
    urgent = sum(1 for d in upcoming if d.get("days_remaining", URGENT_DEADLINE_DAYS + 1) <= URGENT_DEADLINE_DAYS)
    if urgent:
        out.append(f"{urgent} deadline(s) approaching within {URGENT_DEADLINE_DAYS} days")
    missing = sum(1 for f in findings if f.violation_type == "MISSING")
    if missing:
        out.append(f"Enroll in {missing} required training course(s)")
    return out


def _sync_violations(
    s: Session,
    persona: PersonaProfile,
    findings: list[Finding],
    *,
    now: datetime,
    errored_rule_ids: set[int] | None = None,
) -> tuple[list[Finding], list[ComplianceViolation]]:
    """
    Persist findings. Returns (findings that still count, active violation rows).

    Open violations of a rule that errored in this run are left untouched.
    """
    errored_rule_ids = errored_rule_ids or set()
    rows = s.query(ComplianceViolation).filter(ComplianceViolation.persona_id == persona.id).all()
    waived = {v.key for v in rows if v.status == "WAIVED"}
    active = {v.key: v for v in rows if v.status in ACTIVE_VIOLATION_STATUSES}

    counted: list[Finding] = []
    current: list[ComplianceViolation] = []
    seen: set[tuple[int, str, str]] = set()
    for f in findings:
        if f.key in waived or f.key in seen:
            continue
        seen.add(f.key)
        counted.append(f)
        v = active.get(f.key)
        if v is None:
            v = ComplianceViolation(
                company_id=persona.company_id,
                rule_id=f.rule_id,
                persona_id=persona.id,
                violation_type=f.violation_type,
                subject=f.subject,
                detected_at=now,
                status="OPEN",
            )
            s.add(v)
        v.severity = f.severity
        v.description = f.description[:512]
        v.due_date = f.due_date
        current.append(v)

    for key, v in active.items():
        if key in seen:
            continue
        if v.rule_id in errored_rule_ids:
            current.append(v)
            continue
        if v.status == "OPEN":
            v.status = "RESOLVED"
            v.resolved_at = now
            v.notes = "Auto-resolved: no longer detected"
    s.flush()
    return counted, current


def evaluate_persona_compliance(
    s: Session,
    persona: PersonaProfile,
    *,
    user: User | None = None,
    now: datetime | None = None,
) -> ComplianceStatus:
    now = now or datetime.utcnow()
    findings: list[Finding] = []
    upcoming: list[dict[str, Any]] = []
    total = 0.0
    max_total = 0.0
    errored: set[int] = set()
    for rule in get_applicable_rules(s, persona):
        ev = evaluate_rule(s, persona, rule, now=now)
        if ev.errored:
            errored.add(rule.id)
        findings.extend(ev.findings)
        upcoming.extend(ev.upcoming_deadlines)
        total += ev.score
        max_total += ev.max_score

    score = round(total / max_total * 100) if max_total > 0 else 100
    counted, violations = _sync_violations(s, persona, findings, now=now, errored_rule_ids=errored)
    status = overall_status(counted, score)

    persona.compliance_status = status
    persona.compliance_score = score
    persona.last_compliance_evaluation = now

    record_event(
        s,
        actor=user,
        action="compliance.evaluate",
        entity_type="PersonaProfile",
        entity_id=str(persona.id),
        company_id=persona.company_id,
        metadata={"status": status, "score": score, "violations": len(counted)},
    )
    return ComplianceStatus(
        persona_id=persona.id,
        overall_status=status,
        compliance_score=score,
        last_evaluated=now,
        violations=violations,
        upcoming_deadlines=upcoming,
        recommendations=generate_recommendations(counted, upcoming),
    )


def evaluate_company_compliance(
    s: Session,
    company_id: int,
    *,
    user: User | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or datetime.utcnow()
    personas = (
        s.query(PersonaProfile)
        .filter(PersonaProfile.company_id == company_id, PersonaProfile.status == "ACTIVE")
        .order_by(PersonaProfile.id.asc())
        .all()
    )
    results: list[ComplianceStatus] = []
    failed = 0
    for p in personas:
        try:
            with s.begin_nested():
                results.append(evaluate_persona_compliance(s, p, user=user, now=now))
        except Exception:
            failed += 1
            logger.exception("Compliance evaluation failed for persona %s", p.id)

    stats = {
        "total_personas": len(personas),
        "evaluated": len(results),
        "failed": failed,
        "compliant": sum(1 for r in results if r.overall_status == "COMPLIANT"),
        "at_risk": sum(1 for r in results if r.overall_status == "AT_RISK"),
        "non_compliant": sum(1 for r in results if r.overall_status == "NON_COMPLIANT"),
        "average_score": round(sum(r.compliance_score for r in results) / len(results), 2) if results else 0,
        "total_violations": sum(len(r.violations) for r in results),
        "critical_violations": sum(1 for r in results for v in r.violations if v.severity == "CRITICAL"),
    }
    logger.info("Company %s compliance: %s", company_id, stats)
    return {"company_id": company_id, "evaluated_at": now, "stats": stats, "persona_statuses": results}


# ---------------------------------------------------------------------------
# Violations
# ---------------------------------------------------------------------------


def get_violation(s: Session, violation_id: int, *, company_id: int | None = None) -> ComplianceViolation:
    q = s.query(ComplianceViolation).filter(ComplianceViolation.id == violation_id)
    if company_id is not None:
        q = q.filter(ComplianceViolation.company_id == company_id)
    v = q.one_or_none()
    if not v:
        raise NotFoundError(f"Violation {violation_id} not found")
    return v


def list_violations(
    s: Session,
    company_id: int,
    *,
    persona_id: int | None = None,
    status: str | None = None,
    severity: str | None = None,
) -> list[ComplianceViolation]:
    q = s.query(ComplianceViolation).filter(ComplianceViolation.company_id == company_id)
    if persona_id:
        q = q.filter(ComplianceViolation.persona_id == persona_id)
    if status:
        q = q.filter(ComplianceViolation.status == status.upper())
    if severity:
        q = q.filter(ComplianceViolation.severity == severity.upper())
    return q.order_by(ComplianceViolation.detected_at.desc(), ComplianceViolation.id.desc()).all()


def _close_violation(s: Session, v: ComplianceViolation, status: str, *, user: User, notes: str | None) -> ComplianceViolation:
    if v.status not in ACTIVE_VIOLATION_STATUSES:
        raise ValueError(f"Violation {v.id} is already {v.status}")
    old = v.status
    v.status = status
    v.resolved_at = datetime.utcnow()
    v.resolved_by_user_id = user.id
    v.notes = clean_str(notes)
    record_event(
        s,
        actor=user,
        action=f"compliance.violation.{status.lower()}",
        entity_type="ComplianceViolation",
        entity_id=str(v.id),
        company_id=v.company_id,
        reason=v.notes,
        metadata={"from": old, "to": status, "persona_id": v.persona_id, "rule_id": v.rule_id},
    )
    return v


def resolve_violation(s: Session, v: ComplianceViolation, *, user: User, notes: str | None = None) -> ComplianceViolation:
    return _close_violation(s, v, "RESOLVED", user=user, notes=notes)


def waive_violation(s: Session, v: ComplianceViolation, *, user: User, notes: str) -> ComplianceViolation:
    """Waived violations stay suppressed on later evaluations."""
    if not (notes or "").strip():
        raise ValueError("A reason is required to waive a violation")
    return _close_violation(s, v, "WAIVED", user=user, notes=notes)


def get_compliance_report(
    s: Session,
    company_id: int,
    options: dict[str, Any] | None = None,
    *,
    user: User | None = None,
) -> dict[str, Any]:
    report = evaluate_company_compliance(s, company_id, user=user)
    report["report_type"] = "COMPLIANCE_OVERVIEW"
    report["generated_at"] = datetime.utcnow()
    report["options"] = options or {}
    return report
