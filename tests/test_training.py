from datetime import datetime, timedelta

import pytest

from app.sms.errors import NotFoundError
from app.sms.models import Company
from app.sms.modules.personas.models import Certification
from app.sms.modules.training.service import (
    Assignment,
    assign_training,
    auto_assign_training,
    bulk_assign_training,
    certificate_number,
    create_requirement,
    create_training,
    create_training_record,
    evaluate_training_requirements,
    get_persona_training_status,
    get_record,
    get_training_overview,
    is_persona_eligible,
    mark_overdue_records,
    status_for_progress,
    update_training_progress,
    update_training_record,
)


@pytest.fixture()
def training(s, company, admin):
    return create_training(s, company.id, {"title": "Fire Safety", "category": "safety", "passing_score": 80}, user=admin)


@pytest.fixture()
def persona(make_persona):
    return make_persona()


class TestStatusForProgress:
    """Tests for status_for_progress()"""

    def test_boundaries(self):
        assert status_for_progress(0) == "ENROLLED"
        assert status_for_progress(1) == "IN_PROGRESS"
        assert status_for_progress(99) == "IN_PROGRESS"
        assert status_for_progress(100) == "COMPLETED"


class TestCertificateNumber:
    """Tests for certificate_number()"""

    def test_format(self):
        now = datetime(2024, 3, 5, 14, 7, 9)
        assert certificate_number(42, now=now) == "CERT-20240305140709-000042"

    def test_long_ids_keep_last_six_digits(self):
        now = datetime(2024, 1, 1)
        assert certificate_number(12345678, now=now).endswith("-345678")


def test_create_training_validates(s, company, admin):
    with pytest.raises(ValueError, match="title"):
        create_training(s, company.id, {"title": " "}, user=admin)
    with pytest.raises(ValueError, match="category"):
        create_training(s, company.id, {"title": "X", "category": "FUN"}, user=admin)


def test_requirement_rejects_negative_days(s, admin, training):
    with pytest.raises(ValueError, match="negative"):
        create_requirement(s, training, {"due_within_days": -1}, user=admin)


def test_assign_is_idempotent(s, admin, training, persona):
    a = Assignment(persona_id=persona.id, training_id=training.id, priority="HIGH", reason="onboarding")
    first = assign_training(s, a, user=admin)
    assert first.status == "ENROLLED"
    assert first.compliance_status == "PENDING"
    assert first.is_required is True
    assert first.metadata_json["assignment_reason"] == "onboarding"

    second = assign_training(s, a, user=admin)
    assert second.id == first.id


def test_assign_low_priority_not_required(s, admin, training, persona):
    rec = assign_training(s, Assignment(persona_id=persona.id, training_id=training.id, priority="LOW"), user=admin)
    assert rec.is_required is False


def test_assign_unknown_training(s, admin, persona):
    with pytest.raises(NotFoundError):
        assign_training(s, Assignment(persona_id=persona.id, training_id=999), user=admin)


def test_assign_across_companies_rejected(s, admin, persona):
    other = Company(name="Other", slug="other")
    s.add(other)
    s.flush()
    t = create_training(s, other.id, {"title": "Theirs"}, user=admin)
    with pytest.raises(ValueError, match="different companies"):
        assign_training(s, Assignment(persona_id=persona.id, training_id=t.id), user=admin)


def test_bulk_assign_isolates_failures(s, admin, training, make_persona):
    p1 = make_persona()
    p2 = make_persona()
    results = bulk_assign_training(
        s,
        [
            Assignment(persona_id=p1.id, training_id=training.id),
            Assignment(persona_id=p2.id, training_id=999),
            Assignment(persona_id=p2.id, training_id=training.id),
        ],
        user=admin,
    )
    assert sorted(r.persona_id for r in results) == sorted([p1.id, p2.id])


def test_eligibility(s, admin, training, make_persona):
    req = create_requirement(
        s,
        training,
        {"departments": ["Operations"], "employment_types": ["full_time"], "locations": ["LHR"]},
        user=admin,
    )
    assert is_persona_eligible(s, make_persona(location="LHR"), req) is True
    assert is_persona_eligible(s, make_persona(location="JFK"), req) is False
    assert is_persona_eligible(s, make_persona(location="LHR", department="Finance"), req) is False
    assert is_persona_eligible(s, make_persona(location="LHR", employment_type="CONTRACT"), req) is False


def test_prerequisites_gate_eligibility(s, company, admin, training, persona):
    advanced = create_training(s, company.id, {"title": "Advanced Fire Safety"}, user=admin)
    req = create_requirement(s, advanced, {"prerequisites": [training.id]}, user=admin)
    assert is_persona_eligible(s, persona, req) is False

    rec = assign_training(s, Assignment(persona_id=persona.id, training_id=training.id), user=admin)
    update_training_progress(s, rec, user=admin, progress=100, score=90)
    assert is_persona_eligible(s, persona, req) is True


def test_evaluate_requirements_skips_existing(s, admin, training, persona):
    req = create_requirement(s, training, {"due_within_days": 14, "priority": "CRITICAL"}, user=admin)
    now = datetime(2024, 6, 1, 9, 0, 0)

    assignments = evaluate_training_requirements(s, persona, now=now)
    assert len(assignments) == 1
    a = assignments[0]
    assert a.requirement_id == req.id
    assert a.due_date == now + timedelta(days=14)
    assert a.priority == "CRITICAL"

    assign_training(s, a, user=admin)
    assert evaluate_training_requirements(s, persona, now=now) == []


def test_auto_assign(s, admin, training, persona):
    create_requirement(s, training, {"due_within_days": 30}, user=admin)
    records = auto_assign_training(s, persona, user=admin)
    assert [r.training_id for r in records] == [training.id]
    assert auto_assign_training(s, persona, user=admin) == []


def test_progress_transitions(s, admin, training, persona):
    rec = assign_training(s, Assignment(persona_id=persona.id, training_id=training.id), user=admin)

    update_training_progress(s, rec, user=admin, progress=40, time_spent_minutes=25)
    assert rec.status == "IN_PROGRESS"
    assert rec.start_date is not None
    assert rec.metadata_json["time_spent_minutes"] == 25

    with pytest.raises(ValueError, match="between 0 and 100"):
        update_training_progress(s, rec, user=admin, progress=120)


def test_failing_score_marks_failed(s, admin, training, persona):
    rec = assign_training(s, Assignment(persona_id=persona.id, training_id=training.id), user=admin)
    update_training_progress(s, rec, user=admin, progress=100, score=60)
    assert rec.status == "FAILED"
    assert rec.completion_date is None
    assert rec.compliance_status == "PENDING"


def test_completion_sets_expiry_from_renewal(s, admin, training, persona):
    req = create_requirement(s, training, {"renewal_period_days": 365}, user=admin)
    rec = assign_training(
        s, Assignment(persona_id=persona.id, training_id=training.id, requirement_id=req.id), user=admin
    )
    done = datetime(2024, 1, 10, 12, 0, 0)
    update_training_progress(s, rec, user=admin, progress=100, score=95, completed_at=done)

    assert rec.status == "COMPLETED"
    assert rec.compliance_status == "COMPLIANT"
    assert rec.completion_date == done
    assert rec.expiry_date == done + timedelta(days=365)


def test_certification_training_issues_certificate_once(s, company, admin, persona):
    t = create_training(s, company.id, {"title": "Dangerous Goods", "category": "CERTIFICATION"}, user=admin)
    rec = assign_training(s, Assignment(persona_id=persona.id, training_id=t.id), user=admin)
    update_training_progress(s, rec, user=admin, progress=100)

    certs = s.query(Certification).filter(Certification.persona_id == persona.id).all()
    assert len(certs) == 1
    assert certs[0].name == "Dangerous Goods"
    assert certs[0].issuing_authority == "Internal Training System"
    assert certs[0].training_record_id == rec.id
    assert rec.certificate_number == certs[0].certificate_number
    assert rec.certificate_number.startswith("CERT-")

    # A repeat completion does not issue a second certificate.
    update_training_progress(s, rec, user=admin, progress=100)
    assert s.query(Certification).filter(Certification.persona_id == persona.id).count() == 1


def test_completion_unlocks_dependent_training(s, company, admin, training, persona):
    advanced = create_training(s, company.id, {"title": "Advanced Fire Safety"}, user=admin)
    create_requirement(s, advanced, {"prerequisites": [training.id], "due_within_days": 10}, user=admin)

    rec = assign_training(s, Assignment(persona_id=persona.id, training_id=training.id), user=admin)
    assert get_record(s, persona.id, advanced.id) is None

    update_training_progress(s, rec, user=admin, progress=100, score=85)
    unlocked = get_record(s, persona.id, advanced.id)
    assert unlocked is not None
    assert unlocked.due_date is not None


def test_mark_overdue_respects_grace_period(s, company, admin, training, make_persona):
    req = create_requirement(s, training, {"grace_period_days": 5}, user=admin)
    now = datetime(2024, 6, 30)
    within_grace = assign_training(
        s,
        Assignment(persona_id=make_persona().id, training_id=training.id, requirement_id=req.id, due_date=now - timedelta(days=3)),
        user=admin,
    )
    past_grace = assign_training(
        s,
        Assignment(persona_id=make_persona().id, training_id=training.id, requirement_id=req.id, due_date=now - timedelta(days=6)),
        user=admin,
    )
    no_due = assign_training(s, Assignment(persona_id=make_persona().id, training_id=training.id), user=admin)

    assert mark_overdue_records(s, company.id, now=now) == 1
    assert past_grace.compliance_status == "OVERDUE"
    assert within_grace.compliance_status == "PENDING"
    assert no_due.compliance_status == "PENDING"

    s.flush()
    assert mark_overdue_records(s, company.id, now=now) == 0


def test_direct_record_compliance(s, company, admin, training, persona):
    exempt = create_training_record(s, company.id, {"persona_id": persona.id, "training_id": training.id}, user=admin)
    assert exempt.compliance_status == "EXEMPT"

    with pytest.raises(ValueError, match="already exists"):
        create_training_record(s, company.id, {"persona_id": persona.id, "training_id": training.id}, user=admin)

    now = datetime(2024, 6, 1)
    update_training_record(s, exempt, {"expiry_date": "2024-05-01"}, user=admin, now=now)
    assert exempt.compliance_status == "OVERDUE"

    update_training_record(s, exempt, {"completion_date": "2024-05-20", "status": "completed"}, user=admin, now=now)
    assert exempt.compliance_status == "COMPLIANT"
    assert exempt.status == "COMPLETED"

    with pytest.raises(ValueError, match="status"):
        update_training_record(s, exempt, {"status": "PAUSED"}, user=admin, now=now)


def test_required_direct_record_is_pending(s, company, admin, training, persona):
    rec = create_training_record(
        s, company.id, {"persona_id": persona.id, "training_id": training.id, "is_required": True}, user=admin
    )
    assert rec.compliance_status == "PENDING"


def test_persona_status_and_overview(s, company, admin, training, make_persona):
    p1 = make_persona()
    p2 = make_persona()
    r1 = assign_training(s, Assignment(persona_id=p1.id, training_id=training.id), user=admin)
    r2 = assign_training(s, Assignment(persona_id=p2.id, training_id=training.id), user=admin)
    update_training_progress(s, r1, user=admin, progress=100, score=90)
    update_training_progress(s, r2, user=admin, progress=50)

    status = get_persona_training_status(s, p1)
    assert status["stats"] == {"total": 1, "completed": 1, "in_progress": 0, "overdue": 0, "compliant": 1}

    overview = get_training_overview(s, company.id)
    assert overview["total_records"] == 2
    assert overview["total_personas"] == 2
    assert overview["completion_rate"] == 50.0
    assert overview["compliance_rate"] == 50.0
    assert overview["overdue_count"] == 0


def test_requirement_due_window_defaults_from_config(s, app, admin, training):
    assert create_requirement(s, training, {}, user=admin).due_within_days == 30

    app.config["TRAINING_DUE_WITHIN_DAYS"] = 14
    assert create_requirement(s, training, {"name": "Refresher"}, user=admin).due_within_days == 14
    assert create_requirement(s, training, {"due_within_days": 0, "name": "Now"}, user=admin).due_within_days == 0
