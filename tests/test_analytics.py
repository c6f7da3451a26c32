import csv
import io
from datetime import datetime, timedelta

import pytest

from app.sms.modules.analytics.service import (
    CSV_HEADER,
    AnalyticsFilter,
    get_dashboard_data,
    get_detailed_report,
    get_training_metrics,
    group_records,
)
from app.sms.modules.training.service import Assignment, assign_training, create_training, update_training_progress

NOW = datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture()
def dataset(s, company, admin, make_persona):
    """Two departments, two trainings, one completed / one in progress / one overdue record."""
    fire = create_training(s, company.id, {"title": "Fire Safety", "category": "CERTIFICATION"}, user=admin)
    crm = create_training(s, company.id, {"title": "CRM"}, user=admin)
    ops = make_persona(department="Operations", position="Pilot")
    eng = make_persona(department="Engineering", position="Technician")

    done = assign_training(
        s, Assignment(persona_id=ops.id, training_id=fire.id, assigned_date=datetime(2024, 4, 1)), user=admin
    )
    update_training_progress(s, done, user=admin, progress=100, score=90, completed_at=datetime(2024, 4, 11))

    active = assign_training(
        s,
        Assignment(persona_id=ops.id, training_id=crm.id, assigned_date=datetime(2024, 5, 1), due_date=NOW + timedelta(days=10)),
        user=admin,
    )
    update_training_progress(s, active, user=admin, progress=50, score=70)

    late = assign_training(
        s, Assignment(persona_id=eng.id, training_id=fire.id, assigned_date=datetime(2024, 5, 20)), user=admin
    )
    late.compliance_status = "OVERDUE"
    s.flush()
    return {"fire": fire, "crm": crm, "ops": ops, "eng": eng}


def test_metrics(s, company, dataset):
    m = get_training_metrics(s, AnalyticsFilter(company_id=company.id), now=NOW)
    assert m["total_personas"] == 2
    assert m["total_training_records"] == 3
    assert m["completion_rate"] == 33.33
    assert m["compliance_rate"] == 33.33
    assert m["average_completion_days"] == 10
    assert m["average_score"] == 80
    assert m["overdue_count"] == 1
    assert m["upcoming_deadlines"] == 1
    assert m["certifications_issued"] == 1
    assert m["completion_trend"] == [{"month": "2024-04", "completions": 1}]
    assert m["compliance_trend"] == [
        {"month": "2024-04", "compliant": 1, "non_compliant": 0, "pending": 0},
        {"month": "2024-05", "compliant": 0, "non_compliant": 1, "pending": 1},
    ]
    assert m["status_distribution"] == [
        {"status": "COMPLETED", "count": 1},
        {"status": "ENROLLED", "count": 1},
        {"status": "IN_PROGRESS", "count": 1},
    ]

    depts = {d["department"]: d for d in m["department_breakdown"]}
    assert depts["Operations"]["total"] == 2
    assert depts["Operations"]["completion_rate"] == 50.0
    assert depts["Engineering"]["overdue"] == 1

    trainings = {t["training_title"]: t for t in m["training_breakdown"]}
    assert trainings["Fire Safety"]["enrollments"] == 2
    assert trainings["Fire Safety"]["average_score"] == 90
    assert trainings["CRM"]["average_score"] == 70


def test_metrics_empty(s, company):
    m = get_training_metrics(s, AnalyticsFilter(company_id=company.id), now=NOW)
    assert m["total_training_records"] == 0
    assert m["completion_rate"] == 0.0
    assert m["average_score"] == 0
    assert m["department_breakdown"] == []


def test_filters(s, company, dataset):
    flt = AnalyticsFilter(company_id=company.id, departments=["Engineering"])
    assert get_training_metrics(s, flt, now=NOW)["total_training_records"] == 1

    flt = AnalyticsFilter(company_id=company.id, training_ids=[dataset["crm"].id])
    assert get_training_metrics(s, flt, now=NOW)["total_training_records"] == 1

    flt = AnalyticsFilter(company_id=company.id, start_date=datetime(2024, 5, 1), end_date=datetime(2024, 5, 31))
    assert get_training_metrics(s, flt, now=NOW)["total_training_records"] == 2

    flt = AnalyticsFilter(company_id=company.id, compliance_statuses=["OVERDUE"])
    assert get_training_metrics(s, flt, now=NOW)["total_personas"] == 1


def test_group_records(s, company, dataset):
    from app.sms.modules.analytics.service import query_records

    records = query_records(s, AnalyticsFilter(company_id=company.id)).all()
    assert {k: len(v) for k, v in group_records(records, "department").items()} == {"Operations": 2, "Engineering": 1}
    assert {k: len(v) for k, v in group_records(records, "MONTH").items()} == {"2024-04": 1, "2024-05": 2}
    assert list(group_records(records, None)) == ["All"]


def test_json_report(s, company, dataset):
    report = get_detailed_report(
        s, AnalyticsFilter(company_id=company.id), {"include_details": True, "group_by": "training"}, now=NOW
    )
    assert report["metadata"]["record_count"] == 3
    assert report["metadata"]["generated_at"] == NOW
    assert report["metadata"]["filter"]["company_id"] == company.id
    assert len(report["records"]) == 3
    assert sorted(report["grouped_data"]) == ["CRM", "Fire Safety"]
    assert report["metrics"]["total_training_records"] == 3

    summary = get_detailed_report(s, AnalyticsFilter(company_id=company.id), now=NOW)
    assert summary["records"] is None
    assert summary["grouped_data"] is None


def test_csv_report(s, company, dataset):
    out = get_detailed_report(s, AnalyticsFilter(company_id=company.id), {"format": "csv"}, now=NOW)
    rows = list(csv.reader(io.StringIO(out)))
    assert rows[0] == CSV_HEADER
    assert len(rows) == 4
    completed = next(r for r in rows[1:] if r[3] == "COMPLETED")
    assert completed[1] == "Operations"
    assert completed[2] == "Fire Safety"
    assert completed[6] == "2024-04-11T00:00:00"
    assert completed[7] == "90.0"


@pytest.mark.parametrize("fmt", ["PDF", "excel"])
def test_unsupported_formats(s, company, fmt):
    with pytest.raises(ValueError, match="not supported"):
        get_detailed_report(s, AnalyticsFilter(company_id=company.id), {"format": fmt}, now=NOW)


def test_unknown_format(s, company):
    with pytest.raises(ValueError, match="Unknown report format"):
        get_detailed_report(s, AnalyticsFilter(company_id=company.id), {"format": "XML"}, now=NOW)


def test_dashboard(s, company, dataset):
    data = get_dashboard_data(s, company.id, now=NOW)
    assert data["last_updated"] == NOW
    assert data["metrics"]["total_training_records"] == 3
