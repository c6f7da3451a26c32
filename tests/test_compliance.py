from datetime import date, datetime, timedelta

import pytest

from app.sms.models import AuditEvent
from app.sms.modules.compliance.models import ComplianceRule
from app.sms.modules.compliance.service import (
    DEFAULT_COMPLIANCE_RULE,
    Finding,
    create_compliance_rule,
    evaluate_company_compliance,
    evaluate_persona_compliance,
    evaluate_rule,
    generate_recommendations,
    get_applicable_rules,
    get_compliance_report,
    list_violations,
    overall_status,
    resolve_violation,
    validate_rule_payload,
    waive_violation,
)
from app.sms.modules.documents.service import create_document
from app.sms.modules.personas.service import create_certification
from app.sms.modules.training.service import Assignment, assign_training, create_training, update_training_progress

NOW = datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture()
def persona(make_persona):
    return make_persona()


def _training_rule(s, company, admin, training_ids, priority="HIGH", **extra):
    payload = {
        "name": "Required training",
        "type": "TRAINING",
        "priority": priority,
        "conditions": {"required_training": training_ids, "validity_days": 365},
    }
    payload.update(extra)
    return create_compliance_rule(s, company.id, payload, user=admin)


class TestValidateRulePayload:
    """Tests for validate_rule_payload()"""

    def test_default_rule_is_valid(self):
        assert validate_rule_payload(DEFAULT_COMPLIANCE_RULE) == []

    def test_errors(self):
        errors = validate_rule_payload(
            {"type": "VIBES", "priority": "URGENT", "conditions": {"criteria": [{"field": "x", "operator": "like"}]}}
        )
        assert "name is required" in errors
        assert any(e.startswith("type must be one of") for e in errors)
        assert any(e.startswith("priority must be one of") for e in errors)
        assert any("unknown criterion operator" in e for e in errors)


class TestOverallStatus:
    """Tests for overall_status() and generate_recommendations()"""

    def test_critical_finding_is_non_compliant(self):
        f = Finding(1, "MISSING", "CRITICAL", "training:1", "x")
        assert overall_status([f], 100) == "NON_COMPLIANT"

    def test_high_finding_or_low_score_is_at_risk(self):
        assert overall_status([Finding(1, "OVERDUE", "HIGH", "training:1", "x")], 100) == "AT_RISK"
        assert overall_status([], 94) == "AT_RISK"
        assert overall_status([Finding(1, "OVERDUE", "LOW", "training:1", "x")], 99) == "AT_RISK"

    def test_clean_is_compliant(self):
        assert overall_status([], 95) == "COMPLIANT"

    def test_recommendations_order(self):
        findings = [
            Finding(1, "MISSING", "CRITICAL", "training:1", "x"),
            Finding(1, "OVERDUE", "HIGH", "training:2", "y"),
        ]
        upcoming = [{"days_remaining": 3}, {"days_remaining": 20}]
        assert generate_recommendations(findings, upcoming) == [
            "Address 1 critical compliance violation(s) immediately",
            "Complete 1 overdue training requirement(s)",
            "1 deadline(s) approaching within 7 days",
            "Enroll in 1 required training course(s)",
        ]

    def test_no_recommendations(self):
        assert generate_recommendations([], []) == []


def test_create_rule_rejects_invalid(s, company, admin):
    with pytest.raises(ValueError, match="type must be one of"):
        create_compliance_rule(s, company.id, {"name": "Bad", "type": "OTHER"}, user=admin)


def test_applicable_rules_filter_by_department(s, company, admin, persona):
    create_compliance_rule(s, company.id, dict(DEFAULT_COMPLIANCE_RULE), user=admin)
    create_compliance_rule(
        s, company.id, {**DEFAULT_COMPLIANCE_RULE, "name": "Finance only", "departments": ["Finance"]}, user=admin
    )
    s.flush()
    assert [r.name for r in get_applicable_rules(s, persona)] == ["Data processing consent on file"]


def test_no_rules_is_compliant(s, persona):
    status = evaluate_persona_compliance(s, persona, now=NOW)
    assert status.overall_status == "COMPLIANT"
    assert status.compliance_score == 100
    assert persona.compliance_status == "COMPLIANT"
    assert persona.last_compliance_evaluation == NOW


def test_training_rule_scoring(s, company, admin, persona):
    done = create_training(s, company.id, {"title": "CRM"}, user=admin)
    soon = create_training(s, company.id, {"title": "Security awareness"}, user=admin)
    _training_rule(s, company, admin, [done.id, soon.id])

    r1 = assign_training(s, Assignment(persona_id=persona.id, training_id=done.id), user=admin)
    update_training_progress(s, r1, user=admin, progress=100, completed_at=NOW - timedelta(days=10))
    assign_training(
        s, Assignment(persona_id=persona.id, training_id=soon.id, due_date=NOW + timedelta(days=3)), user=admin
    )

    status = evaluate_persona_compliance(s, persona, now=NOW)
    # (100 + 75) / 2
    assert status.compliance_score == 88
    assert status.overall_status == "AT_RISK"
    assert status.violations == []
    assert len(status.upcoming_deadlines) == 1
    deadline = status.upcoming_deadlines[0]
    assert deadline["type"] == "TRAINING"
    assert deadline["training_id"] == soon.id
    assert deadline["days_remaining"] == 3
    assert status.recommendations == ["1 deadline(s) approaching within 7 days"]


def test_overdue_and_expired_training(s, company, admin, persona):
    late = create_training(s, company.id, {"title": "Late"}, user=admin)
    old = create_training(s, company.id, {"title": "Old"}, user=admin)
    rule = _training_rule(s, company, admin, [late.id, old.id])

    assign_training(s, Assignment(persona_id=persona.id, training_id=late.id, due_date=NOW - timedelta(days=1)), user=admin)
    r = assign_training(s, Assignment(persona_id=persona.id, training_id=old.id), user=admin)
    update_training_progress(s, r, user=admin, progress=100, completed_at=NOW - timedelta(days=400))

    ev = evaluate_rule(s, persona, rule, now=NOW)
    assert ev.score == (25 + 50) / 2
    assert sorted(f.violation_type for f in ev.findings) == ["EXPIRED", "OVERDUE"]
    assert {f.subject for f in ev.findings} == {f"training:{late.id}", f"training:{old.id}"}


def test_missing_training_creates_and_reuses_violation(s, company, admin, persona):
    t = create_training(s, company.id, {"title": "Dangerous goods"}, user=admin)
    _training_rule(s, company, admin, [t.id], priority="CRITICAL")

    first = evaluate_persona_compliance(s, persona, now=NOW)
    assert first.overall_status == "NON_COMPLIANT"
    assert first.compliance_score == 0
    assert [v.violation_type for v in first.violations] == ["MISSING"]
    assert first.violations[0].status == "OPEN"
    assert first.recommendations == [
        "Address 1 critical compliance violation(s) immediately",
        "Enroll in 1 required training course(s)",
    ]

    second = evaluate_persona_compliance(s, persona, now=NOW + timedelta(days=1))
    assert [v.id for v in second.violations] == [first.violations[0].id]
    assert len(list_violations(s, company.id, persona_id=persona.id)) == 1

    rec = assign_training(s, Assignment(persona_id=persona.id, training_id=t.id), user=admin)
    update_training_progress(s, rec, user=admin, progress=100, completed_at=NOW)
    third = evaluate_persona_compliance(s, persona, now=NOW + timedelta(days=2))
    assert third.overall_status == "COMPLIANT"
    assert third.violations == []

    v = list_violations(s, company.id, persona_id=persona.id)[0]
    assert v.status == "RESOLVED"
    assert v.notes == "Auto-resolved: no longer detected"


def test_failing_rule_scores_zero_and_keeps_open_violations(s, company, admin, persona):
    t = create_training(s, company.id, {"title": "Hazmat"}, user=admin)
    rule = _training_rule(s, company, admin, [t.id])
    before = evaluate_persona_compliance(s, persona, now=NOW).violations[0]
    assert before.status == "OPEN"

    rule.conditions = {"required_training": ["not-an-id"]}
    s.flush()
    ev = evaluate_rule(s, persona, rule, now=NOW)
    assert ev.score == 0
    assert ev.errored is True
    assert ev.findings == []

    after = evaluate_persona_compliance(s, persona, now=NOW + timedelta(days=1))
    assert after.compliance_score == 0
    assert after.overall_status == "AT_RISK"
    assert [v.id for v in after.violations] == [before.id]
    assert before.status == "OPEN"
    assert before.resolved_at is None


def test_waived_violation_stays_suppressed(s, company, admin, persona):
    t = create_training(s, company.id, {"title": "Night ops"}, user=admin)
    _training_rule(s, company, admin, [t.id])

    v = evaluate_persona_compliance(s, persona, now=NOW).violations[0]
    with pytest.raises(ValueError, match="reason"):
        waive_violation(s, v, user=admin, notes=" ")
    waive_violation(s, v, user=admin, notes="Not flying night operations")
    assert v.status == "WAIVED"
    assert v.resolved_by_user_id == admin.id
    s.flush()

    again = evaluate_persona_compliance(s, persona, now=NOW)
    assert again.violations == []
    assert list_violations(s, company.id, status="OPEN") == []

    with pytest.raises(ValueError, match="already WAIVED"):
        resolve_violation(s, v, user=admin)


def test_manual_resolution(s, company, admin, persona):
    t = create_training(s, company.id, {"title": "Ramp safety"}, user=admin)
    _training_rule(s, company, admin, [t.id])
    v = evaluate_persona_compliance(s, persona, now=NOW).violations[0]

    resolve_violation(s, v, user=admin, notes="Completed externally")
    assert v.status == "RESOLVED"
    s.flush()
    ev = s.query(AuditEvent).filter(AuditEvent.action == "compliance.violation.resolved").one()
    assert ev.entity_id == str(v.id)


def test_certification_rule(s, company, admin, make_persona):
    create_compliance_rule(
        s,
        company.id,
        {"name": "Medical", "type": "CERTIFICATION", "conditions": {"required_certifications": ["Medical Class 1"]}},
        user=admin,
    )
    rule = s.query(ComplianceRule).filter(ComplianceRule.name == "Medical").one()

    missing = make_persona()
    ev = evaluate_rule(s, missing, rule, now=NOW)
    assert ev.score == 0
    assert ev.findings[0].violation_type == "MISSING"

    def _cert(p, expiry):
        create_certification(
            s,
            p,
            {
                "name": "Medical Class 1",
                "issuing_authority": "CAA",
                "certificate_number": f"MED-{p.id}",
                "issue_date": date(2023, 1, 1),
                "expiry_date": expiry,
            },
            user=admin,
        )

    expired = make_persona()
    _cert(expired, date(2024, 6, 1))
    ev = evaluate_rule(s, expired, rule, now=NOW)
    assert ev.score == 25
    assert ev.findings[0].violation_type == "EXPIRED"

    expiring = make_persona()
    _cert(expiring, date(2024, 6, 25))
    ev = evaluate_rule(s, expiring, rule, now=NOW)
    assert ev.score == 100
    assert ev.findings == []
    assert ev.upcoming_deadlines[0]["type"] == "CERTIFICATION"

    valid = make_persona()
    _cert(valid, date(2026, 1, 1))
    ev = evaluate_rule(s, valid, rule, now=NOW)
    assert (ev.score, ev.findings, ev.upcoming_deadlines) == (100, [], [])


def test_document_rule(s, company, admin, persona):
    rule = create_compliance_rule(
        s,
        company.id,
        {"name": "Ops manual", "type": "DOCUMENT", "conditions": {"required_documents": ["om-a"]}},
        user=admin,
    )
    ev = evaluate_rule(s, persona, rule, now=NOW)
    assert ev.score == 0
    assert ev.findings[0].description == "Required document not available: OM-A"

    doc = create_document(s, company.id, {"doc_number": "OM-A", "title": "Operations Manual", "doc_type": "MANUAL"}, user=admin)
    ev = evaluate_rule(s, persona, rule, now=NOW)
    assert ev.findings[0].violation_type == "MISSING"

    doc.status = "PUBLISHED"
    doc.review_due_at = NOW - timedelta(days=1)
    s.flush()
    ev = evaluate_rule(s, persona, rule, now=NOW)
    assert ev.findings[0].violation_type == "EXPIRED"

    doc.review_due_at = NOW + timedelta(days=90)
    s.flush()
    assert evaluate_rule(s, persona, rule, now=NOW).score == 100


def test_custom_rule(s, company, admin, persona):
    rule = create_compliance_rule(
        s,
        company.id,
        {
            "name": "Ops staff profile",
            "type": "CUSTOM",
            "conditions": {
                "criteria": [
                    {"field": "data_processing_consent", "operator": "equals", "value": True},
                    {"field": "department", "operator": "equals", "value": "Finance"},
                ]
            },
        },
        user=admin,
    )
    ev = evaluate_rule(s, persona, rule, now=NOW)
    assert ev.score == 50
    assert [f.subject for f in ev.findings] == ["field:department"]
    assert ev.findings[0].violation_type == "INCOMPLETE"

    rule.conditions = {"criteria": [{"field": "data_processing_consent", "operator": "equals", "value": 1}]}
    s.flush()
    assert evaluate_rule(s, persona, rule, now=NOW).score == 0


def test_unknown_rule_type_scores_full(s, company, persona):
    rule = ComplianceRule(company_id=company.id, name="Legacy", type="LEGACY", priority="LOW", conditions={})
    s.add(rule)
    s.flush()
    assert evaluate_rule(s, persona, rule, now=NOW).score == 100


def test_company_evaluation(s, company, admin, make_persona):
    create_compliance_rule(
        s,
        company.id,
        {
            "name": "Ops only",
            "type": "CUSTOM",
            "priority": "CRITICAL",
            "conditions": {"criteria": [{"field": "position", "operator": "equals", "value": "Pilot"}]},
        },
        user=admin,
    )
    make_persona()
    make_persona(position="Dispatcher")
    make_persona(status="TERMINATED")
    s.flush()

    report = evaluate_company_compliance(s, company.id, user=admin, now=NOW)
    stats = report["stats"]
    assert stats["total_personas"] == 2
    assert stats["evaluated"] == 2
    assert stats["failed"] == 0
    assert stats["compliant"] == 1
    assert stats["non_compliant"] == 1
    assert stats["average_score"] == 50
    assert stats["total_violations"] == 1
    assert stats["critical_violations"] == 1
    assert report["evaluated_at"] == NOW

    s.flush()
    assert s.query(AuditEvent).filter(AuditEvent.action == "compliance.evaluate").count() == 2


def test_compliance_report(s, company, admin, persona):
    report = get_compliance_report(s, company.id, {"include_details": True}, user=admin)
    assert report["report_type"] == "COMPLIANCE_OVERVIEW"
    assert report["options"] == {"include_details": True}
    assert report["stats"]["evaluated"] == 1
