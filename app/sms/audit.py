from __future__ import annotations

import json
from typing import Any

from flask import g, has_app_context
from sqlalchemy.orm import Session

from app.sms.models import AuditEvent, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    company_id: int | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    rid = request_id
    if rid is None and has_app_context():
        rid = getattr(g, "request_id", None)
    if company_id is None and actor is not None:
        company_id = actor.company_id
    ev = AuditEvent(
        request_id=rid,
        company_id=company_id,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev


def list_audit_events(
    s: Session,
    company_id: int,
    *,
    entity_type: str | None = None,
    action: str | None = None,
    actor_user_id: int | None = None,
    page: int = 1,
    per_page: int = 20,
) -> dict[str, Any]:
    """Paginated audit trail for one tenant, newest first."""
    from app.sms.utils import paginate

    q = s.query(AuditEvent).filter(AuditEvent.company_id == company_id)
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if action:
        q = q.filter(AuditEvent.action.ilike(f"%{action.strip()}%"))
    if actor_user_id:
        q = q.filter(AuditEvent.actor_user_id == actor_user_id)
    q = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
    return paginate(q, page=page, per_page=per_page)


def event_metadata(ev: AuditEvent) -> dict[str, Any]:
    if not ev.metadata_json:
        return {}
    return json.loads(ev.metadata_json)
