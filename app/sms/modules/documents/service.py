from __future__ import annotations

import json
import logging
import re
import urllib.request
from datetime import date, datetime, timedelta
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.sms.audit import record_event
from app.sms.errors import NotFoundError, WorkflowError
from app.sms.models import User
from app.sms.modules.documents.models import (
    Document,
    DocumentApproval,
    DocumentLink,
    DocumentReview,
    DocumentTask,
    DocumentWorkflow,
    Notification,
)
from app.sms.modules.documents.workflow import (
    DOCUMENT_STATUSES,
    WorkflowAction,
    WorkflowDefinition,
    conditions_met,
    parse_definition,
    status_for_state,
    validate_definition,
)
from app.sms.utils import clean_list, clean_str, parse_date, parse_datetime

logger = logging.getLogger(__name__)

LINK_TYPES = ("REFERENCES", "SUPERSEDES", "IMPLEMENTS", "RELATED")
REVIEW_TYPES = ("PERIODIC", "AD_HOC", "TRIGGERED")
APPROVAL_DECISIONS = ("APPROVED", "REJECTED")


def normalize_doc_number(doc_number: str) -> str:
    return (doc_number or "").strip().upper()


def next_revision(current: str) -> str:
    """
    Increment revision identifiers.

    Supports:
    - integers: "0" -> "1"
    - letters: "A" -> "B", "Z" -> "AA"
    """
    cur = (current or "").strip().upper()
    if not cur:
        return "A"

    if re.fullmatch(r"\d+", cur):
        return str(int(cur) + 1)

    if not re.fullmatch(r"[A-Z]+", cur):
        raise ValueError(f"Unsupported revision format: {current!r}")

    # Base-26 increment, A=1 ... Z=26 (Excel-style)
    n = 0
    for ch in cur:
        n = n * 26 + (ord(ch) - ord("A") + 1)
    n += 1
    out = []
    while n > 0:
        n -= 1
        out.append(chr(ord("A") + (n % 26)))
        n //= 26
    return "".join(reversed(out))


# ---------------------------------------------------------------------------
# Workflow definitions
# ---------------------------------------------------------------------------


def create_workflow(s: Session, company_id: int, payload: dict[str, Any], *, user: User | None) -> DocumentWorkflow:
    name = clean_str(payload.get("name"))
    if not name:
        raise ValueError("name is required")
    definition = payload.get("definition")
    errors = validate_definition(definition)
    if errors:
        raise WorkflowError("Invalid workflow definition: " + "; ".join(errors))

    wf = DocumentWorkflow(
        company_id=company_id,
        name=name,
        description=clean_str(payload.get("description")),
        definition=definition,
        document_types=[v.upper() for v in clean_list(payload.get("document_types"))],
        categories=[v.upper() for v in clean_list(payload.get("categories"))],
        is_active=bool(payload.get("is_active", True)),
        created_by_user_id=user.id if user else None,
    )
    s.add(wf)
    s.flush()
    record_event(
        s,
        actor=user,
        action="workflow.create",
        entity_type="DocumentWorkflow",
        entity_id=str(wf.id),
        company_id=company_id,
        metadata={"name": wf.name, "document_types": wf.document_types, "categories": wf.categories},
    )
    logger.info("Document workflow created id=%s name=%s", wf.id, wf.name)
    return wf


def get_workflow(s: Session, workflow_id: int, *, company_id: int | None = None) -> DocumentWorkflow:
    q = s.query(DocumentWorkflow).filter(DocumentWorkflow.id == workflow_id)
    if company_id is not None:
        q = q.filter(DocumentWorkflow.company_id == company_id)
    wf = q.one_or_none()
    if not wf:
        raise NotFoundError(f"Workflow {workflow_id} not found")
    return wf


def list_workflows(s: Session, company_id: int, *, is_active: bool | None = True) -> list[DocumentWorkflow]:
    q = s.query(DocumentWorkflow).filter(DocumentWorkflow.company_id == company_id)
    if is_active is not None:
        q = q.filter(DocumentWorkflow.is_active.is_(is_active))
    return q.order_by(DocumentWorkflow.name.asc(), DocumentWorkflow.id.asc()).all()


def update_workflow(s: Session, wf: DocumentWorkflow, payload: dict[str, Any], *, user: User | None) -> DocumentWorkflow:
    changed: list[str] = []
    if payload.get("definition") is not None:
        errors = validate_definition(payload["definition"])
        if errors:
            raise WorkflowError("Invalid workflow definition: " + "; ".join(errors))
        wf.definition = payload["definition"]
        changed.append("definition")
    if "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            raise ValueError("name is required")
        wf.name = name
        changed.append("name")
    if "description" in payload:
        wf.description = clean_str(payload.get("description"))
        changed.append("description")
    for key in ("document_types", "categories"):
        if key in payload:
            setattr(wf, key, [v.upper() for v in clean_list(payload.get(key))])
            changed.append(key)
    if "is_active" in payload:
        wf.is_active = bool(payload["is_active"])
        changed.append("is_active")
    wf.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="workflow.update",
        entity_type="DocumentWorkflow",
        entity_id=str(wf.id),
        company_id=wf.company_id,
        metadata={"fields_changed": changed},
    )
    return wf


def find_applicable_workflow(s: Session, document: Document) -> DocumentWorkflow | None:
    for wf in list_workflows(s, document.company_id, is_active=True):
        doc_types = {v.upper() for v in wf.document_types or []}
        categories = {v.upper() for v in wf.categories or []}
        if document.doc_type and document.doc_type.upper() in doc_types:
            return wf
        if document.category and document.category.upper() in categories:
            return wf
    return None


def _definition_for(document: Document) -> WorkflowDefinition:
    if document.workflow is None:
        raise WorkflowError(f"Document {document.doc_number} is not in a workflow")
    return parse_definition(document.workflow.definition)


# ---------------------------------------------------------------------------
# Workflow execution
# ---------------------------------------------------------------------------


def initiate_workflow(
    s: Session,
    document: Document,
    *,
    user: User | None,
    workflow: DocumentWorkflow | None = None,
) -> Document:
    wf = workflow or find_applicable_workflow(s, document)
    if wf is None:
        raise WorkflowError(f"No applicable workflow for document {document.doc_number}")
    defn = parse_definition(wf.definition)
    start = defn.start_state
    if start is None:
        raise WorkflowError(f"Workflow {wf.name!r} has no start state")

    document.workflow_id = wf.id
    document.workflow = wf
    document.workflow_state = start.id
    document.status = "UNDER_REVIEW"
    document.updated_at = datetime.utcnow()
    s.flush()

    _run_actions(s, document, start.actions, user=user)

    record_event(
        s,
        actor=user,
        action="workflow.initiate",
        entity_type="Document",
        entity_id=str(document.id),
        company_id=document.company_id,
        metadata={"workflow_id": wf.id, "state": start.id},
    )
    logger.info("Workflow %s initiated for document %s", wf.id, document.id)
    return document


def _field_lookup(document: Document, data: dict[str, Any] | None):
    def lookup(name: str) -> Any:
        if data and name in data:
            return data[name]
        return getattr(document, name, None)

    return lookup


def available_triggers(s: Session, document: Document) -> list[str]:
    if document.workflow is None:
        return []
    return parse_definition(document.workflow.definition).triggers_from(document.workflow_state)


def transition_workflow(
    s: Session,
    document: Document,
    trigger: str,
    *,
    user: User | None,
    data: dict[str, Any] | None = None,
) -> tuple[str, str]:
    """
    Fire `trigger` from the document's current workflow state.

    Transition actions run before the state changes; the new state's actions
    run after. Returns (new_state, new_status).
    """
    defn = _definition_for(document)
    from_state = document.workflow_state
    t = defn.find_transition(from_state, trigger)
    if t is None:
        raise WorkflowError(f"Invalid transition: {trigger!r} from state {from_state!r}")
    if not conditions_met(t.conditions, _field_lookup(document, data)):
        raise WorkflowError("Transition conditions not met")

    _run_actions(s, document, t.actions, user=user, data=data)

    document.workflow_state = t.to_state
    document.status = status_for_state(t.to_state)
    document.updated_at = datetime.utcnow()

    new_state = defn.state(t.to_state)
    if new_state is not None:
        _run_actions(s, document, new_state.actions, user=user, data=data)

    record_event(
        s,
        actor=user,
        action="workflow.transition",
        entity_type="Document",
        entity_id=str(document.id),
        company_id=document.company_id,
        metadata={"from": from_state, "to": t.to_state, "trigger": trigger, "status": document.status},
    )
    return document.workflow_state, document.status


def _recipients(document: Document, params: dict[str, Any], user: User | None) -> list[int | None]:
    ids = params.get("user_ids")
    if ids:
        return [int(i) for i in ids]
    if document.owner_user_id:
        return [document.owner_user_id]
    return [user.id if user else None]


def _run_actions(
    s: Session,
    document: Document,
    actions: tuple[WorkflowAction, ...],
    *,
    user: User | None,
    data: dict[str, Any] | None = None,
) -> None:
    for action in actions:
        try:
            with s.begin_nested():
                _execute_action(s, document, action, user=user, data=data)
        except Exception:
            logger.exception("Workflow action %s failed for document %s", action.type, document.id)


def _execute_action(
    s: Session,
    document: Document,
    action: WorkflowAction,
    *,
    user: User | None,
    data: dict[str, Any] | None,
) -> None:
    params = action.parameters or {}
    if action.type in ("notify", "send_email"):
        channel = "email" if action.type == "send_email" else "in_app"
        subject = params.get("subject") or params.get("message") or f"Document {document.doc_number} updated"
        for rid in _recipients(document, params, user):
            s.add(
                Notification(
                    company_id=document.company_id,
                    recipient_user_id=rid,
                    channel=channel,
                    kind=str(params.get("kind") or "workflow"),
                    subject=str(subject),
                    document_id=document.id,
                    payload={"state": document.workflow_state, "status": document.status},
                )
            )
    elif action.type in ("assign", "create_task"):
        assignee = params.get("assignee_user_id") or params.get("user_id") or document.owner_user_id
        due = parse_date(params.get("due_date"))
        if due is None and params.get("due_in_days") is not None:
            due = date.today() + timedelta(days=int(params["due_in_days"]))
        s.add(
            DocumentTask(
                company_id=document.company_id,
                document_id=document.id,
                assignee_user_id=int(assignee) if assignee else None,
                title=str(params.get("title") or f"Action required: {document.title}"),
                due_date=due,
            )
        )
    elif action.type == "update_status":
        status = str(params.get("status") or "").upper()
        if status not in DOCUMENT_STATUSES:
            raise ValueError(f"Unknown document status: {status!r}")
        document.status = status
    elif action.type == "webhook":
        _post_webhook(
            str(params["url"]),
            {
                "event": "document.workflow",
                "document_id": document.id,
                "doc_number": document.doc_number,
                "state": document.workflow_state,
                "status": document.status,
                "data": data or {},
            },
            headers=params.get("headers") or {},
        )
    else:
        raise ValueError(f"Unknown action type: {action.type!r}")
    s.flush()


def _post_webhook(url: str, body: dict[str, Any], *, headers: dict[str, str]) -> int:
    timeout = 10
    if has_app_context():
        timeout = int(current_app.config.get("WEBHOOK_TIMEOUT_SECONDS") or timeout)
    req = urllib.request.Request(
        url,
        data=json.dumps(body, default=str).encode("utf-8"),
        method="POST",
        headers={"Content-Type": "application/json", **headers},
    )
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        status = getattr(resp, "status", 200)
    logger.info("Webhook %s -> %s", url, status)
    return status


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------


def request_approval(
    s: Session,
    document: Document,
    *,
    approver: User,
    user: User | None,
    level: int = 1,
    is_required: bool = True,
    due_date: date | str | None = None,
) -> DocumentApproval:
    a = DocumentApproval(
        approver_user_id=approver.id,
        level=level,
        is_required=is_required,
        status="PENDING",
        due_date=parse_date(due_date),
    )
    document.approvals.append(a)
    s.add(
        Notification(
            company_id=document.company_id,
            recipient_user_id=approver.id,
            channel="in_app",
            kind="approval_request",
            subject=f"Approval requested: {document.doc_number} {document.title}",
            document_id=document.id,
            payload={"level": level},
        )
    )
    s.flush()
    record_event(
        s,
        actor=user,
        action="document.approval.request",
        entity_type="Document",
        entity_id=str(document.id),
        company_id=document.company_id,
        metadata={"approval_id": a.id, "approver_user_id": approver.id, "level": level},
    )
    return a


def process_approval(
    s: Session,
    approval: DocumentApproval,
    decision: str,
    *,
    user: User | None,
    comments: str | None = None,
) -> DocumentApproval:
    """
    Record an approver's decision, then advance the document's workflow.

    Any rejected required approval fires "reject"; once every required approval
    is approved, "approve" fires. Triggers that have no transition from the
    current state are skipped.
    """
    decision = (decision or "").strip().upper()
    if decision not in APPROVAL_DECISIONS:
        raise ValueError(f"decision must be one of: {', '.join(APPROVAL_DECISIONS)}")
    if approval.status != "PENDING":
        raise ValueError(f"Approval {approval.id} was already decided ({approval.status})")

    approval.status = decision
    approval.comments = clean_str(comments)
    approval.decided_at = datetime.utcnow()
    s.flush()

    document = approval.document
    record_event(
        s,
        actor=user,
        action="document.approval.decide",
        entity_type="Document",
        entity_id=str(document.id),
        company_id=document.company_id,
        metadata={"approval_id": approval.id, "decision": decision},
    )

    required = (
        s.query(DocumentApproval)
        .filter(DocumentApproval.document_id == document.id, DocumentApproval.is_required.is_(True))
        .all()
    )
    trigger = None
    if any(a.status == "REJECTED" for a in required):
        trigger = "reject"
    elif required and all(a.status == "APPROVED" for a in required):
        trigger = "approve"

    if trigger and document.workflow is not None:
        defn = parse_definition(document.workflow.definition)
        if defn.find_transition(document.workflow_state, trigger):
            transition_workflow(s, document, trigger, user=user, data={"approval_decision": decision})
        else:
            logger.warning(
                "No %r transition from state %r for document %s; approval recorded only",
                trigger,
                document.workflow_state,
                document.id,
            )
    return approval


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


def schedule_review(
    s: Session,
    document: Document,
    *,
    reviewer: User,
    due_date: datetime | date | str,
    user: User | None,
    review_type: str = "PERIODIC",
) -> DocumentReview:
    review_type = (review_type or "PERIODIC").upper()
    if review_type not in REVIEW_TYPES:
        raise ValueError(f"review_type must be one of: {', '.join(REVIEW_TYPES)}")
    due = parse_datetime(due_date)
    if due is None:
        raise ValueError("due_date is required")
    r = DocumentReview(
        reviewer_user_id=reviewer.id,
        review_type=review_type,
        due_date=due,
        status="PENDING",
    )
    document.reviews.append(r)
    s.add(
        Notification(
            company_id=document.company_id,
            recipient_user_id=reviewer.id,
            channel="in_app",
            kind="review_scheduled",
            subject=f"Review due {due.date().isoformat()}: {document.doc_number} {document.title}",
            document_id=document.id,
            payload={"review_type": review_type},
        )
    )
    document.review_due_at = due
    s.flush()
    record_event(
        s,
        actor=user,
        action="document.review.schedule",
        entity_type="Document",
        entity_id=str(document.id),
        company_id=document.company_id,
        metadata={"review_id": r.id, "reviewer_user_id": reviewer.id, "due_date": due},
    )
    return r


def complete_review(
    s: Session,
    review: DocumentReview,
    *,
    user: User,
    comments: str | None = None,
    recommendations: str | None = None,
    next_review_date: datetime | date | str | None = None,
) -> DocumentReview:
    if review.status == "COMPLETED":
        raise ValueError(f"Review {review.id} is already completed")
    now = datetime.utcnow()
    nxt = parse_datetime(next_review_date)
    review.status = "COMPLETED"
    review.completed_at = now
    review.comments = clean_str(comments)
    review.recommendations = clean_str(recommendations)
    review.next_review_date = nxt

    document = review.document
    document.last_reviewed_at = now
    document.last_reviewed_by_user_id = user.id
    document.review_due_at = nxt
    s.flush()

    record_event(
        s,
        actor=user,
        action="document.review.complete",
        entity_type="Document",
        entity_id=str(document.id),
        company_id=document.company_id,
        metadata={"review_id": review.id, "next_review_date": nxt},
    )
    if nxt is not None:
        schedule_review(s, document, reviewer=user, due_date=nxt, user=user, review_type="PERIODIC")
    return review


def list_overdue_reviews(s: Session, company_id: int, *, now: datetime | None = None) -> list[DocumentReview]:
    now = now or datetime.utcnow()
    return (
        s.query(DocumentReview)
        .join(Document, Document.id == DocumentReview.document_id)
        .filter(
            Document.company_id == company_id,
            DocumentReview.status == "PENDING",
            DocumentReview.due_date < now,
        )
        .order_by(DocumentReview.due_date.asc())
        .all()
    )


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


def link_documents(
    s: Session,
    source: Document,
    target: Document,
    *,
    link_type: str = "RELATED",
    description: str | None = None,
    user: User | None,
) -> DocumentLink:
    link_type = (link_type or "RELATED").upper()
    if link_type not in LINK_TYPES:
        raise ValueError(f"link_type must be one of: {', '.join(LINK_TYPES)}")
    if source.id == target.id:
        raise ValueError("A document cannot link to itself")
    if source.company_id != target.company_id:
        raise ValueError("Documents belong to different companies")
    link = DocumentLink(
        source_document_id=source.id,
        target_document_id=target.id,
        link_type=link_type,
        description=clean_str(description),
        created_by_user_id=user.id if user else None,
    )
    s.add(link)
    s.flush()
    record_event(
        s,
        actor=user,
        action="document.link",
        entity_type="Document",
        entity_id=str(source.id),
        company_id=source.company_id,
        metadata={"target_document_id": target.id, "link_type": link_type},
    )
    return link


def get_document_links(s: Session, document: Document) -> dict[str, list[DocumentLink]]:
    outgoing = s.query(DocumentLink).filter(DocumentLink.source_document_id == document.id).order_by(DocumentLink.id).all()
    incoming = s.query(DocumentLink).filter(DocumentLink.target_document_id == document.id).order_by(DocumentLink.id).all()
    return {"outgoing": outgoing, "incoming": incoming}


# ---------------------------------------------------------------------------
# Document lifecycle
# ---------------------------------------------------------------------------


def get_document(s: Session, document_id: int, *, company_id: int | None = None) -> Document:
    q = s.query(Document).filter(Document.id == document_id)
    if company_id is not None:
        q = q.filter(Document.company_id == company_id)
    d = q.one_or_none()
    if not d:
        raise NotFoundError(f"Document {document_id} not found")
    return d


def create_document(s: Session, company_id: int, payload: dict[str, Any], *, user: User | None) -> Document:
    doc_number = normalize_doc_number(payload.get("doc_number") or "")
    title = clean_str(payload.get("title"))
    doc_type = clean_str(payload.get("doc_type"))
    if not doc_number or not title or not doc_type:
        raise ValueError("doc_number, title and doc_type are required")
    exists = (
        s.query(Document.id)
        .filter(Document.company_id == company_id, Document.doc_number == doc_number)
        .first()
    )
    if exists:
        raise ValueError(f"Document number {doc_number} already exists")

    d = Document(
        company_id=company_id,
        doc_number=doc_number,
        title=title,
        description=clean_str(payload.get("description")),
        doc_type=doc_type.upper(),
        category=(clean_str(payload.get("category")) or "").upper() or None,
        owner_user_id=payload.get("owner_user_id") or (user.id if user else None),
        current_revision=(clean_str(payload.get("revision")) or "A").upper(),
        status="DRAFT",
        review_due_at=parse_datetime(payload.get("review_due_at")),
    )
    s.add(d)
    s.flush()
    record_event(
        s,
        actor=user,
        action="document.create",
        entity_type="Document",
        entity_id=str(d.id),
        company_id=company_id,
        metadata={"doc_number": d.doc_number, "doc_type": d.doc_type, "revision": d.current_revision},
    )
    return d


def update_document(s: Session, d: Document, payload: dict[str, Any], *, user: User | None, reason: str | None = None) -> Document:
    if d.status == "DELETED":
        raise ValueError("Deleted documents cannot be updated")
    before = {"title": d.title, "description": d.description, "category": d.category, "legal_hold": d.legal_hold}
    if "title" in payload:
        title = clean_str(payload.get("title"))
        if not title:
            raise ValueError("title is required")
        d.title = title
    if "description" in payload:
        d.description = clean_str(payload.get("description"))
    if "category" in payload:
        d.category = (clean_str(payload.get("category")) or "").upper() or None
    if "legal_hold" in payload:
        d.legal_hold = bool(payload["legal_hold"])
    if "review_due_at" in payload:
        d.review_due_at = parse_datetime(payload.get("review_due_at"))
    d.updated_at = datetime.utcnow()
    after = {"title": d.title, "description": d.description, "category": d.category, "legal_hold": d.legal_hold}
    record_event(
        s,
        actor=user,
        action="document.update",
        entity_type="Document",
        entity_id=str(d.id),
        company_id=d.company_id,
        reason=reason,
        metadata={"fields_changed": [k for k in before if before[k] != after[k]]},
    )
    return d


def revise_document(s: Session, d: Document, *, user: User | None, change_summary: str) -> Document:
    """Start a new revision. The document goes back to DRAFT and leaves its workflow."""
    if d.status == "DELETED":
        raise ValueError("Deleted documents cannot be revised")
    if not (change_summary or "").strip():
        raise ValueError("change_summary is required")
    old = d.current_revision
    d.current_revision = next_revision(old)
    d.status = "DRAFT"
    d.workflow_id = None
    d.workflow = None
    d.workflow_state = None
    d.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="document.revise",
        entity_type="Document",
        entity_id=str(d.id),
        company_id=d.company_id,
        reason=change_summary.strip(),
        metadata={"from_revision": old, "to_revision": d.current_revision},
    )
    return d


def delete_document(s: Session, d: Document, *, user: User | None, reason: str) -> Document:
    if d.legal_hold:
        raise ValueError(f"Document {d.doc_number} is under legal hold and cannot be deleted")
    if d.status == "DELETED":
        return d
    d.status = "DELETED"
    d.deleted_at = datetime.utcnow()
    d.updated_at = d.deleted_at
    record_event(
        s,
        actor=user,
        action="document.delete",
        entity_type="Document",
        entity_id=str(d.id),
        company_id=d.company_id,
        reason=reason,
    )
    return d


def search_documents(
    s: Session,
    company_id: int,
    *,
    status: str | None = None,
    doc_type: str | None = None,
    category: str | None = None,
    text: str | None = None,
) -> list[Document]:
    q = s.query(Document).filter(Document.company_id == company_id, Document.status != "DELETED")
    if status:
        q = q.filter(Document.status == status.upper())
    if doc_type:
        q = q.filter(Document.doc_type == doc_type.upper())
    if category:
        q = q.filter(Document.category == category.upper())
    if text and text.strip():
        like = f"%{text.strip()}%"
        q = q.filter(or_(Document.title.ilike(like), Document.doc_number.ilike(like), Document.description.ilike(like)))
    return q.order_by(Document.doc_number.asc()).all()
