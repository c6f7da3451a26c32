from datetime import date, datetime, timedelta

import pytest

from app.sms.errors import ConsentError, NotFoundError
from app.sms.modules.dynamic_fields.service import create_field_definition
from app.sms.modules.personas.models import AnonymizationLog, ConsentRecord
from app.sms.modules.personas.service import (
    anonymize_persona,
    create_certification,
    create_competency,
    create_persona,
    delete_persona,
    get_compliance_overview,
    get_persona,
    list_certifications,
    list_personas,
    update_persona,
)
from app.sms.modules.personas.utils import (
    MASKED,
    anonymized_identity,
    mask_email,
    mask_national_id,
    mask_phone,
    mask_sensitive_data,
    profile_completeness,
    pseudonym,
    retention_until,
)


class TestProfileCompleteness:
    """Tests for profile_completeness()"""

    def test_empty(self):
        assert profile_completeness({}) == 0

    def test_required_only(self):
        data = {
            "first_name": "A",
            "last_name": "B",
            "email": "a@b.com",
            "department": "Ops",
            "position": "Pilot",
            "employment_type": "FULL_TIME",
        }
        assert profile_completeness(data) == 70

    def test_everything(self):
        data = {
            "first_name": "A",
            "last_name": "B",
            "email": "a@b.com",
            "department": "Ops",
            "position": "Pilot",
            "employment_type": "FULL_TIME",
            "phone_number": "555",
            "date_of_birth": "1990-01-01",
            "address": {"city": "X"},
            "emergency_contact": {"name": "Y"},
            "start_date": "2020-01-01",
        }
        assert profile_completeness(data) == 100

    def test_blank_values_do_not_count(self):
        assert profile_completeness({"first_name": "  ", "address": {}}) == 0

    def test_partial_mix(self):
        # 3/6 required -> 35, 1/5 optional -> 6
        data = {"first_name": "A", "last_name": "B", "email": "a@b.com", "phone_number": "555"}
        assert profile_completeness(data) == 41


class TestRetention:
    """Tests for retention_until()"""

    def test_by_employment_type(self):
        now = datetime(2024, 1, 1)
        assert retention_until("FULL_TIME", now=now) == now + timedelta(days=365 * 7)
        assert retention_until("contract", now=now) == now + timedelta(days=365 * 3)
        assert retention_until("INTERN", now=now) == now + timedelta(days=365)

    def test_default(self):
        now = datetime(2024, 1, 1)
        assert retention_until(None, now=now) == now + timedelta(days=365 * 5)
        assert retention_until("VOLUNTEER", now=now) == now + timedelta(days=365 * 5)


class TestMasking:
    """Tests for the masking helpers"""

    def test_mask_email(self):
        assert mask_email("john.doe@example.com") == "j***e@example.com"
        assert mask_email("not-an-email") == MASKED

    def test_mask_phone_keeps_last_four_digits(self):
        assert mask_phone("+1 (555) 123-4567") == "***-***-4567"

    def test_mask_national_id(self):
        assert mask_national_id("123-45-6789") == "***-**-6789"

    def test_partial(self):
        data = {"email": "jane@example.com", "phone_number": "5551234567", "national_id": "AB123456", "first_name": "Jane"}
        out = mask_sensitive_data(data, "PARTIAL")
        assert out["email"] == "j***e@example.com"
        assert out["phone_number"] == "***-***-4567"
        assert out["national_id"] == "***-**-3456"
        assert out["first_name"] == "Jane"
        assert data["email"] == "jane@example.com"

    def test_full(self):
        data = {"email": "jane@example.com", "address": {"city": "X"}, "phone_number": None}
        out = mask_sensitive_data(data, "FULL")
        assert out["email"] == MASKED
        assert out["address"] == MASKED
        assert out["phone_number"] is None

    def test_unknown_level(self):
        with pytest.raises(ValueError, match="masking level"):
            mask_sensitive_data({"email": "a@b.com"}, "HEAVY")


class TestAnonymizedIdentity:
    """Tests for pseudonym() and anonymized_identity()"""

    def test_pseudonym_is_stable(self):
        assert pseudonym(7, salt="s") == pseudonym(7, salt="s")
        assert pseudonym(7, salt="s") != pseudonym(8, salt="s")
        assert len(pseudonym(7, salt="s")) == 10

    def test_identity_fields(self):
        ident = anonymized_identity(7)
        token = pseudonym(7, salt="persona")
        assert ident["first_name"] == "Anonymized"
        assert ident["email"] == f"anon-{token}@anonymized.invalid"
        assert ident["employee_id"].startswith("ANON-")
        assert ident["national_id"] is None


def test_create_requires_consent(s, company, admin):
    with pytest.raises(ConsentError):
        create_persona(s, company.id, {"first_name": "A", "last_name": "B", "email": "a@b.com"}, user=admin)


def test_create_validates_payload(s, company, admin):
    with pytest.raises(ValueError, match="email"):
        create_persona(
            s,
            company.id,
            {"first_name": "A", "last_name": "B", "email": "nope", "data_processing_consent": True},
            user=admin,
        )
    with pytest.raises(ValueError, match="employment_type"):
        create_persona(
            s,
            company.id,
            {"first_name": "A", "last_name": "B", "email": "a@b.com", "employment_type": "SEASONAL", "data_processing_consent": True},
            user=admin,
        )


def test_create_records_consent_and_retention(s, make_persona):
    p = make_persona(marketing_consent=True, employment_type="contract")
    assert p.employment_type == "CONTRACT"
    assert p.data_processing_consent is True
    assert p.consent_version == "1.0"
    assert p.profile_completeness == 70
    assert p.data_retention_until.year - p.consent_timestamp.year in (2, 3)

    s.flush()
    kinds = sorted(c.consent_type for c in s.query(ConsentRecord).filter(ConsentRecord.persona_id == p.id))
    assert kinds == ["DATA_PROCESSING", "MARKETING"]


def test_get_persona_masks_by_default(s, make_persona):
    p = make_persona(phone_number="555-000-1234", national_id="999887777")
    masked = get_persona(s, p.id)
    assert masked["phone_number"] == "***-***-1234"
    assert masked["national_id"] == "***-**-7777"
    assert masked["email"].startswith("j***")

    clear = get_persona(s, p.id, include_sensitive=True)
    assert clear["phone_number"] == "555-000-1234"


def test_get_persona_not_found(s, company):
    with pytest.raises(NotFoundError):
        get_persona(s, 12345, company_id=company.id)


def test_custom_fields_round_trip(s, company, admin, make_persona):
    create_field_definition(s, company.id, {"name": "licence_class", "label": "Licence class"}, user=admin)
    create_field_definition(s, company.id, {"name": "flight_hours", "label": "Flight hours", "data_type": "INTEGER"}, user=admin)

    p = make_persona(custom_fields={"licence_class": "ATPL", "flight_hours": "1500", "unknown": "ignored"})
    data = get_persona(s, p.id)
    assert data["custom_fields"] == {"licence_class": "ATPL", "flight_hours": 1500}


def test_update_recomputes_completeness_and_consent(s, admin, make_persona):
    p = make_persona()
    update_persona(s, p, {"phone_number": "555 123 4567", "start_date": "2021-04-01", "marketing_consent": True}, user=admin)
    assert p.start_date == date(2021, 4, 1)
    assert p.profile_completeness == 82
    assert p.marketing_consent is True

    update_persona(s, p, {"status": "inactive"}, user=admin, reason="leave")
    assert p.status == "INACTIVE"
    assert p.is_active is False


def test_anonymize(s, admin, make_persona):
    p = make_persona(national_id="123456789", phone_number="5551234567")
    with pytest.raises(ValueError, match="reason"):
        anonymize_persona(s, p, reason="", user=admin)

    anonymize_persona(s, p, reason="GDPR erasure request", user=admin)
    assert p.first_name == "Anonymized"
    assert p.email.endswith("@anonymized.invalid")
    assert p.national_id is None
    assert p.phone_number is None
    assert p.status == "TERMINATED"
    assert p.is_active is False
    assert p.anonymized_at is not None

    s.flush()
    log = s.query(AnonymizationLog).filter(AnonymizationLog.original_persona_id == p.id).one()
    assert log.reason == "GDPR erasure request"
    assert "email" in log.fields_anonymized

    with pytest.raises(ValueError, match="already anonymized"):
        anonymize_persona(s, p, reason="again", user=admin)
    with pytest.raises(ValueError, match="cannot be updated"):
        update_persona(s, p, {"department": "X"}, user=admin)


def test_delete_is_anonymization(s, admin, make_persona):
    p = make_persona()
    delete_persona(s, p, reason="left company", user=admin)
    assert p.anonymized_at is not None


def test_list_personas(s, company, make_persona):
    make_persona(department="Finance")
    make_persona()
    s.flush()
    assert len(list_personas(s, company.id)) == 2
    assert [p.department for p in list_personas(s, company.id, department="Finance")] == ["Finance"]


def test_certifications(s, company, admin, make_persona):
    p = make_persona()
    with pytest.raises(ValueError, match="required"):
        create_certification(s, p, {"name": "Medical Class 1"}, user=admin)
    with pytest.raises(ValueError, match="before issue_date"):
        create_certification(
            s,
            p,
            {
                "name": "Medical Class 1",
                "issuing_authority": "CAA",
                "certificate_number": "MED-1",
                "issue_date": "2024-01-01",
                "expiry_date": "2023-01-01",
            },
            user=admin,
        )
    c = create_certification(
        s,
        p,
        {
            "name": "Medical Class 1",
            "issuing_authority": "CAA",
            "certificate_number": "MED-1",
            "issue_date": "2024-01-01",
            "expiry_date": "2025-01-01",
            "type": "regulatory",
        },
        user=admin,
    )
    assert c.type == "REGULATORY"
    assert [x.id for x in list_certifications(s, company.id, expiring_before=date(2025, 6, 1))] == [c.id]
    assert list_certifications(s, company.id, expiring_before=date(2024, 6, 1)) == []


def test_competency(s, admin, make_persona):
    p = make_persona()
    with pytest.raises(ValueError):
        create_competency(s, p, {"name": "CRM"}, user=admin)
    c = create_competency(s, p, {"name": "CRM", "category": "Human factors", "current_level": "advanced", "score": "4.5"}, user=admin)
    assert c.current_level == "ADVANCED"
    assert c.score == 4.5


def test_compliance_overview_counts(s, company, make_persona):
    make_persona()
    make_persona(status="INACTIVE")
    s.flush()
    overview = get_compliance_overview(s, company.id)
    assert overview["total_personas"] == 2
    assert overview["active_personas"] == 1
