from datetime import datetime

import pytest

from app.sms.errors import NotFoundError
from app.sms.models import AuditEvent
from app.sms.modules.incidents.service import (
    can_transition_to,
    cancel_audit,
    change_incident_status,
    complete_audit,
    create_risk_assessment,
    get_audit,
    get_incident,
    get_risk_assessment,
    incident_summary,
    list_incidents,
    list_risk_assessments,
    record_finding,
    report_incident,
    schedule_audit,
    start_audit,
    validate_incident_payload,
    validate_risk_assessment_payload,
)

VALID = {
    "title": "Fuel spill on stand 12",
    "description": "Approx. 20 litres of Jet A-1 spilled during refuelling.",
    "severity": "high",
    "category": "Ground handling",
    "location": "Stand 12",
    "occurred_at": "2024-05-02T08:30:00Z",
}


@pytest.fixture()
def incident(s, company, admin):
    return report_incident(s, company.id, dict(VALID), user=admin)


class TestValidateIncidentPayload:
    """Tests for validate_incident_payload()"""

    def test_valid(self):
        assert validate_incident_payload(VALID) == []

    def test_all_missing(self):
        assert validate_incident_payload({}) == [
            "Title is required",
            "Description is required",
            "Severity must be one of: LOW, MEDIUM, HIGH, CRITICAL",
            "Category is required",
        ]


def test_report_incident(s, incident, admin):
    assert incident.status == "OPEN"
    assert incident.severity == "HIGH"
    assert incident.reporter_user_id == admin.id
    assert incident.occurred_at == datetime(2024, 5, 2, 8, 30)

    s.flush()
    ev = s.query(AuditEvent).filter(AuditEvent.action == "incident.report").one()
    assert ev.entity_id == str(incident.id)


def test_report_incident_rejects_invalid(s, company, admin):
    with pytest.raises(ValueError, match="Title is required"):
        report_incident(s, company.id, {**VALID, "title": ""}, user=admin)


def test_status_machine(s, admin, incident):
    ok, errors = can_transition_to(incident, "CLOSED")
    assert ok is False
    assert errors == ["Cannot transition from 'OPEN' to 'CLOSED'"]

    change_incident_status(s, incident, "investigating", "Assigned to safety officer", admin)
    assert incident.status == "INVESTIGATING"

    ok, errors = can_transition_to(incident, "RESOLVED")
    assert ok is False
    assert errors == ["Root cause is required to resolve an incident"]

    change_incident_status(
        s,
        incident,
        "RESOLVED",
        "Root cause identified",
        admin,
        root_cause="Worn hose coupling",
        corrective_actions="Replace couplings fleet-wide",
    )
    assert incident.resolved_at is not None
    assert incident.root_cause == "Worn hose coupling"

    change_incident_status(s, incident, "INVESTIGATING", "Recurrence reported", admin)
    assert incident.resolved_at is None

    change_incident_status(s, incident, "RESOLVED", "Confirmed fix", admin)
    change_incident_status(s, incident, "CLOSED", "Verified", admin)
    assert incident.closed_at is not None
    assert can_transition_to(incident, "OPEN")[0] is False


def test_status_change_requires_reason(s, admin, incident):
    with pytest.raises(ValueError, match="Reason is required"):
        change_incident_status(s, incident, "INVESTIGATING", "  ", admin)
    with pytest.raises(ValueError, match="Invalid status"):
        change_incident_status(s, incident, "ESCALATED", "why", admin)


def test_rejected_status_change_leaves_incident_untouched(s, admin, incident):
    with pytest.raises(ValueError, match="Cannot transition"):
        change_incident_status(
            s, incident, "CLOSED", "Skip ahead", admin, root_cause="guess", corrective_actions="none"
        )
    assert incident.status == "OPEN"
    assert incident.root_cause is None
    assert incident.corrective_actions is None

    change_incident_status(s, incident, "INVESTIGATING", "Assigned", admin)
    assert can_transition_to(incident, "RESOLVED", root_cause="Worn seal") == (True, [])
    with pytest.raises(ValueError, match="Root cause is required"):
        change_incident_status(s, incident, "RESOLVED", "Done", admin, root_cause="  ", corrective_actions="x")
    assert incident.corrective_actions is None


def test_list_and_summary(s, company, admin, incident):
    report_incident(s, company.id, {**VALID, "title": "Bird strike", "severity": "LOW"}, user=admin)
    change_incident_status(s, incident, "INVESTIGATING", "triage", admin)
    s.flush()

    page = list_incidents(s, company.id, per_page=1)
    assert page["total"] == 2
    assert page["total_pages"] == 2
    assert page["has_next"] is True
    assert len(page["items"]) == 1

    assert [i.title for i in list_incidents(s, company.id, severity="low")["items"]] == ["Bird strike"]

    summary = incident_summary(s, company.id)
    assert summary["total"] == 2
    assert summary["open"] == 2
    assert summary["by_status"] == {"OPEN": 1, "INVESTIGATING": 1, "RESOLVED": 0, "CLOSED": 0}
    assert summary["by_severity"]["HIGH"] == 1
    assert summary["by_severity"]["CRITICAL"] == 0


def test_get_incident_scoped_to_company(s, company, incident):
    assert get_incident(s, incident.id, company_id=company.id).id == incident.id
    with pytest.raises(NotFoundError):
        get_incident(s, incident.id, company_id=company.id + 1)


def test_audit_lifecycle(s, company, admin):
    with pytest.raises(ValueError, match="Scheduled date"):
        schedule_audit(s, company.id, {"title": "Ramp audit"}, user=admin)
    with pytest.raises(ValueError, match="Audit type"):
        schedule_audit(s, company.id, {"title": "Ramp audit", "scheduled_date": "2024-07-01", "audit_type": "SURPRISE"}, user=admin)

    a = schedule_audit(
        s, company.id, {"title": "Ramp audit", "scheduled_date": "2024-07-01", "audit_type": "regulatory"}, user=admin
    )
    assert a.status == "PLANNED"
    assert a.audit_type == "REGULATORY"
    assert get_audit(s, a.id, company_id=company.id).id == a.id

    with pytest.raises(ValueError, match="IN_PROGRESS"):
        record_finding(s, a, description="Chocks missing", user=admin)

    start_audit(s, a, user=admin)
    assert a.status == "IN_PROGRESS"
    with pytest.raises(ValueError, match="Only PLANNED"):
        start_audit(s, a, user=admin)

    f1 = record_finding(s, a, description="Chocks missing on stand 4", severity="minor", user=admin)
    f2 = record_finding(s, a, description="Expired extinguisher", severity="MAJOR", reference="FIRE-7", user=admin)
    assert (f1["id"], f2["id"]) == (1, 2)
    assert [f["severity"] for f in a.findings] == ["MINOR", "MAJOR"]
    with pytest.raises(ValueError, match="Finding severity"):
        record_finding(s, a, description="x", severity="HUGE", user=admin)

    complete_audit(s, a, user=admin, summary="Two findings raised")
    assert a.status == "COMPLETED"
    assert a.completed_at is not None

    with pytest.raises(ValueError, match="already COMPLETED"):
        cancel_audit(s, a, user=admin, reason="n/a")

    s.flush()
    s.expire(a)
    assert len(get_audit(s, a.id).findings) == 2


def test_cancel_audit(s, company, admin):
    a = schedule_audit(s, company.id, {"title": "Hangar audit", "scheduled_date": "2024-08-01"}, user=admin)
    with pytest.raises(ValueError, match="Reason"):
        cancel_audit(s, a, user=admin, reason="")
    cancel_audit(s, a, user=admin, reason="Auditor unavailable")
    assert a.status == "CANCELLED"


class TestValidateRiskAssessmentPayload:
    """Tests for validate_risk_assessment_payload()"""

    def test_valid(self):
        payload = {"title": "Runway incursion", "risk_level": "high", "probability": 0.2, "impact": "0.9"}
        assert validate_risk_assessment_payload(payload) == []

    def test_bounds_and_missing(self):
        assert validate_risk_assessment_payload({"probability": 1.5, "impact": -0.1}) == [
            "Title is required",
            "Risk level must be one of: LOW, MEDIUM, HIGH, CRITICAL",
            "Probability must be a number between 0 and 1",
            "Impact must be a number between 0 and 1",
        ]

    def test_non_numeric(self):
        errors = validate_risk_assessment_payload({"title": "x", "risk_level": "LOW", "probability": "likely", "impact": True})
        assert errors == ["Probability must be a number between 0 and 1", "Impact must be a number between 0 and 1"]


def test_risk_register(s, company, admin):
    with pytest.raises(ValueError, match="Probability"):
        create_risk_assessment(s, company.id, {"title": "Bird strike", "risk_level": "LOW", "impact": 0.5}, user=admin)

    low = create_risk_assessment(
        s,
        company.id,
        {"title": "Bird strike", "risk_level": "low", "probability": 0.3, "impact": 0.4, "mitigation": "Wildlife patrols"},
        user=admin,
    )
    high = create_risk_assessment(
        s, company.id, {"title": "Fuel contamination", "risk_level": "HIGH", "probability": 0.1, "impact": 1}, user=admin
    )
    assert low.risk_level == "LOW"
    assert low.assessor_user_id == admin.id
    assert high.impact == 1.0
    s.flush()

    page = list_risk_assessments(s, company.id, per_page=1)
    assert page["total"] == 2
    assert page["has_next"] is True
    assert page["items"][0].id == high.id

    assert [r.title for r in list_risk_assessments(s, company.id, risk_level="low")["items"]] == ["Bird strike"]
    with pytest.raises(ValueError, match="Risk level"):
        list_risk_assessments(s, company.id, risk_level="SEVERE")

    assert get_risk_assessment(s, low.id, company_id=company.id).id == low.id
    with pytest.raises(NotFoundError):
        get_risk_assessment(s, low.id, company_id=company.id + 1)

    ev = s.query(AuditEvent).filter(AuditEvent.action == "risk_assessment.create", AuditEvent.entity_id == str(high.id)).one()
    assert ev.company_id == company.id
