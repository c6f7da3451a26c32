from __future__ import annotations

import csv
import io
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy.orm import Session

from app.sms.modules.personas.models import PersonaProfile
from app.sms.modules.training.models import TrainingRecord
from app.sms.utils import pct

logger = logging.getLogger(__name__)

GROUP_BY_OPTIONS = ("DEPARTMENT", "POSITION", "TRAINING", "MONTH")
REPORT_FORMATS = ("JSON", "CSV", "PDF", "EXCEL")
UPCOMING_WINDOW_DAYS = 30

CSV_HEADER = [
    "Personnel Name",
    "Department",
    "Training Title",
    "Status",
    "Compliance Status",
    "Enrollment Date",
    "Completion Date",
    "Score",
]


@dataclass
class AnalyticsFilter:
    company_id: int
    start_date: datetime | None = None
    end_date: datetime | None = None
    departments: list[str] = field(default_factory=list)
    positions: list[str] = field(default_factory=list)
    training_ids: list[int] = field(default_factory=list)
    statuses: list[str] = field(default_factory=list)
    compliance_statuses: list[str] = field(default_factory=list)


def query_records(s: Session, flt: AnalyticsFilter):
    q = (
        s.query(TrainingRecord)
        .join(PersonaProfile, PersonaProfile.id == TrainingRecord.persona_id)
        .filter(TrainingRecord.company_id == flt.company_id)
    )
    if flt.start_date:
        q = q.filter(TrainingRecord.enrollment_date >= flt.start_date)
    if flt.end_date:
        q = q.filter(TrainingRecord.enrollment_date <= flt.end_date)
    if flt.departments:
        q = q.filter(PersonaProfile.department.in_(flt.departments))
    if flt.positions:
        q = q.filter(PersonaProfile.position.in_(flt.positions))
    if flt.training_ids:
        q = q.filter(TrainingRecord.training_id.in_(flt.training_ids))
    if flt.statuses:
        q = q.filter(TrainingRecord.status.in_(flt.statuses))
    if flt.compliance_statuses:
        q = q.filter(TrainingRecord.compliance_status.in_(flt.compliance_statuses))
    return q


def _department_breakdown(records: list[TrainingRecord]) -> list[dict[str, Any]]:
    depts: dict[str, dict[str, int]] = {}
    for r in records:
        key = r.persona.department or "Unknown"
        d = depts.setdefault(key, {"total": 0, "completed": 0, "compliant": 0, "overdue": 0})
        d["total"] += 1
        if r.status == "COMPLETED":
            d["completed"] += 1
        if r.compliance_status == "COMPLIANT":
            d["compliant"] += 1
        if r.compliance_status == "OVERDUE":
            d["overdue"] += 1
    return [
        {
            "department": name,
            **d,
            "completion_rate": pct(d["completed"], d["total"]),
            "compliance_rate": pct(d["compliant"], d["total"]),
        }
        for name, d in sorted(depts.items())
    ]


def _training_breakdown(records: list[TrainingRecord]) -> list[dict[str, Any]]:
    trainings: dict[int, dict[str, Any]] = {}
    for r in records:
        t = trainings.setdefault(
            r.training_id,
            {"training_id": r.training_id, "training_title": r.training.title if r.training else "Unknown", "enrollments": 0, "_scores": []},
        )
        t["enrollments"] += 1
        if r.score is not None:
            t["_scores"].append(r.score)
    out = []
    for t in trainings.values():
        scores = t.pop("_scores")
        t["average_score"] = round(sum(scores) / len(scores), 2) if scores else 0
        out.append(t)
    return out


def _completion_trend(records: list[TrainingRecord]) -> list[dict[str, Any]]:
    months: dict[str, int] = {}
    for r in records:
        if r.status == "COMPLETED" and r.completion_date:
            key = r.completion_date.strftime("%Y-%m")
            months[key] = months.get(key, 0) + 1
    return [{"month": m, "completions": n} for m, n in sorted(months.items())]


def _compliance_trend(records: list[TrainingRecord]) -> list[dict[str, Any]]:
    months: dict[str, dict[str, int]] = {}
    for r in records:
        key = r.enrollment_date.strftime("%Y-%m")
        m = months.setdefault(key, {"compliant": 0, "non_compliant": 0, "pending": 0})
        if r.compliance_status == "COMPLIANT":
            m["compliant"] += 1
        elif r.compliance_status == "OVERDUE":
            m["non_compliant"] += 1
        else:
            m["pending"] += 1
    return [{"month": k, **v} for k, v in sorted(months.items())]


def get_training_metrics(s: Session, flt: AnalyticsFilter, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    records = query_records(s, flt).all()
    total = len(records)

    completed = [r for r in records if r.status == "COMPLETED"]
    compliant = [r for r in records if r.compliance_status == "COMPLIANT"]

    durations = [
        (r.completion_date - r.enrollment_date).total_seconds() / 86400
        for r in completed
        if r.enrollment_date and r.completion_date
    ]
    scores = [r.score for r in records if r.score is not None]

    horizon = now + timedelta(days=UPCOMING_WINDOW_DAYS)
    upcoming = [r for r in records if r.status != "COMPLETED" and r.due_date and now < r.due_date <= horizon]

    status_counts: dict[str, int] = {}
    for r in records:
        status_counts[r.status] = status_counts.get(r.status, 0) + 1

    return {
        "total_personas": len({r.persona_id for r in records}),
        "total_training_records": total,
        "completion_rate": pct(len(completed), total),
        "compliance_rate": pct(len(compliant), total),
        "average_completion_days": round(sum(durations) / len(durations), 2) if durations else 0,
        "average_score": round(sum(scores) / len(scores), 2) if scores else 0,
        "overdue_count": sum(1 for r in records if r.compliance_status == "OVERDUE"),
        "upcoming_deadlines": len(upcoming),
        "certifications_issued": sum(1 for r in completed if r.certificate_number),
        "completion_trend": _completion_trend(records),
        "compliance_trend": _compliance_trend(records),
        "department_breakdown": _department_breakdown(records),
        "training_breakdown": _training_breakdown(records),
        "status_distribution": [{"status": k, "count": v} for k, v in sorted(status_counts.items())],
    }


def _group_key(r: TrainingRecord, group_by: str) -> str:
    if group_by == "DEPARTMENT":
        return (r.persona.department if r.persona else None) or "Unknown"
    if group_by == "POSITION":
        return (r.persona.position if r.persona else None) or "Unknown"
    if group_by == "TRAINING":
        return (r.training.title if r.training else None) or "Unknown"
    if group_by == "MONTH":
        return r.enrollment_date.strftime("%Y-%m") if r.enrollment_date else "Unknown"
    return "All"


def group_records(records: Iterable[TrainingRecord], group_by: str | None) -> dict[str, list[TrainingRecord]]:
    grouped: dict[str, list[TrainingRecord]] = {}
    for r in records:
        grouped.setdefault(_group_key(r, (group_by or "").upper()), []).append(r)
    return grouped


def record_row(r: TrainingRecord) -> dict[str, Any]:
    p = r.persona
    return {
        "id": r.id,
        "persona_id": r.persona_id,
        "personnel_name": f"{p.first_name} {p.last_name}" if p else "",
        "department": p.department if p else None,
        "position": p.position if p else None,
        "training_id": r.training_id,
        "training_title": r.training.title if r.training else None,
        "status": r.status,
        "compliance_status": r.compliance_status,
        "progress": r.progress,
        "score": r.score,
        "enrollment_date": r.enrollment_date,
        "completion_date": r.completion_date,
        "due_date": r.due_date,
        "certificate_number": r.certificate_number,
    }


def export_training_csv(records: Iterable[TrainingRecord]) -> str:
    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(CSV_HEADER)
    for r in records:
        p = r.persona
        w.writerow(
            [
                f"{p.first_name} {p.last_name}" if p else "",
                (p.department if p else None) or "",
                r.training.title if r.training else "",
                r.status,
                r.compliance_status,
                r.enrollment_date.isoformat() if r.enrollment_date else "",
                r.completion_date.isoformat() if r.completion_date else "",
                "" if r.score is None else r.score,
            ]
        )
    return out.getvalue()


def get_detailed_report(
    s: Session,
    flt: AnalyticsFilter,
    options: dict[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> dict[str, Any] | str:
    """
    Build a training report.

    options:
      - format: JSON (default) or CSV; PDF and EXCEL are not supported
      - include_details: include per-record rows
      - group_by: DEPARTMENT / POSITION / TRAINING / MONTH
    """
    options = dict(options or {})
    fmt = (options.get("format") or "JSON").upper()
    if fmt not in REPORT_FORMATS:
        raise ValueError(f"Unknown report format: {fmt}")
    if fmt in ("PDF", "EXCEL"):
        raise ValueError(f"{fmt} reports are not supported; use JSON or CSV")

    now = now or datetime.utcnow()
    records = (
        query_records(s, flt)
        .order_by(TrainingRecord.enrollment_date.desc(), TrainingRecord.id.desc())
        .all()
    )

    if fmt == "CSV":
        logger.info("Training CSV export: company=%s rows=%s", flt.company_id, len(records))
        return export_training_csv(records)

    group_by = (options.get("group_by") or "").upper() or None
    grouped = None
    if group_by:
        grouped = {k: [record_row(r) for r in v] for k, v in group_records(records, group_by).items()}

    return {
        "metadata": {
            "generated_at": now,
            "filter": asdict(flt),
            "options": options,
            "record_count": len(records),
        },
        "metrics": get_training_metrics(s, flt, now=now),
        "records": [record_row(r) for r in records] if options.get("include_details") else None,
        "grouped_data": grouped,
    }


def get_dashboard_data(s: Session, company_id: int, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    return {
        "metrics": get_training_metrics(s, AnalyticsFilter(company_id=company_id), now=now),
        "last_updated": now,
    }
