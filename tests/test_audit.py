from app.sms.audit import event_metadata, list_audit_events, record_event
from app.sms.models import Company


def test_record_event_defaults_company_from_actor(s, admin):
    ev = record_event(s, actor=admin, action="persona.create", entity_type="PersonaProfile", entity_id="1", metadata={"b": 2, "a": 1})
    s.flush()
    assert ev.company_id == admin.company_id
    assert ev.actor_user_email == "admin@example.com"
    assert ev.metadata_json == '{"a": 1, "b": 2}'
    assert event_metadata(ev) == {"a": 1, "b": 2}


def test_record_event_without_actor(s, company):
    ev = record_event(s, actor=None, action="training.mark_overdue", company_id=company.id)
    s.flush()
    assert ev.actor_user_id is None
    assert ev.metadata_json is None
    assert event_metadata(ev) == {}


def test_request_id_comes_from_request_context(app, admin, s):
    with app.test_request_context(headers={"X-Request-ID": "req-123"}):
        app.preprocess_request()
        ev = record_event(s, actor=admin, action="document.create")
    assert ev.request_id == "req-123"


def test_list_audit_events(s, company, admin):
    other = Company(name="Other", slug="other")
    s.add(other)
    s.flush()
    record_event(s, actor=admin, action="incident.report", entity_type="Incident", entity_id="1")
    record_event(s, actor=admin, action="incident.status_change", entity_type="Incident", entity_id="1")
    record_event(s, actor=admin, action="document.create", entity_type="Document", entity_id="9")
    record_event(s, actor=None, action="document.create", entity_type="Document", company_id=other.id)
    s.flush()

    page = list_audit_events(s, company.id)
    assert page["total"] == 3
    assert page["items"][0].action == "document.create"

    incidents = list_audit_events(s, company.id, entity_type="Incident")
    assert [e.action for e in incidents["items"]] == ["incident.status_change", "incident.report"]

    assert list_audit_events(s, company.id, action="status")["total"] == 1
    assert list_audit_events(s, company.id, actor_user_id=admin.id, per_page=2)["has_next"] is True
