from __future__ import annotations

import hashlib
import re
from datetime import datetime, timedelta
from typing import Any

REQUIRED_PROFILE_FIELDS = ("first_name", "last_name", "email", "department", "position", "employment_type")
OPTIONAL_PROFILE_FIELDS = ("phone_number", "date_of_birth", "address", "emergency_contact", "start_date")

REQUIRED_WEIGHT = 0.7
OPTIONAL_WEIGHT = 0.3

# Years of retention after record creation, by employment type.
RETENTION_YEARS = {
    "FULL_TIME": 7,
    "PART_TIME": 5,
    "CONTRACT": 3,
    "TEMPORARY": 2,
    "INTERN": 1,
    "CONSULTANT": 3,
}
DEFAULT_RETENTION_YEARS = 5

MASKED = "***MASKED***"
FULL_MASK_FIELDS = ("email", "phone_number", "national_id", "address")


def _filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list)):
        return bool(value)
    return True


def profile_completeness(data: dict[str, Any]) -> int:
    """
    Weighted completeness percentage (0-100).

    Required fields carry 70% of the score, optional fields the remaining 30%.
    """
    req = sum(1 for f in REQUIRED_PROFILE_FIELDS if _filled(data.get(f)))
    opt = sum(1 for f in OPTIONAL_PROFILE_FIELDS if _filled(data.get(f)))
    score = (req / len(REQUIRED_PROFILE_FIELDS)) * REQUIRED_WEIGHT + (opt / len(OPTIONAL_PROFILE_FIELDS)) * OPTIONAL_WEIGHT
    return int(round(score * 100))


def retention_until(employment_type: str | None, *, now: datetime | None = None) -> datetime:
    years = RETENTION_YEARS.get((employment_type or "").upper(), DEFAULT_RETENTION_YEARS)
    return (now or datetime.utcnow()) + timedelta(days=365 * years)


def mask_email(email: str) -> str:
    if "@" not in email:
        return MASKED
    local, domain = email.split("@", 1)
    if not local:
        return f"***@{domain}"
    return f"{local[0]}***{local[-1]}@{domain}"


def mask_phone(phone: str) -> str:
    digits = re.sub(r"\D", "", phone)
    return f"***-***-{digits[-4:]}"


def mask_national_id(national_id: str) -> str:
    return f"***-**-{national_id[-4:]}"


def mask_sensitive_data(data: dict[str, Any], level: str = "PARTIAL") -> dict[str, Any]:
    """Return a masked copy of a persona dict for display. The input is not modified."""
    if not data:
        return data
    out = dict(data)
    level = (level or "PARTIAL").upper()
    if level == "PARTIAL":
        if out.get("email"):
            out["email"] = mask_email(str(out["email"]))
        if out.get("phone_number"):
            out["phone_number"] = mask_phone(str(out["phone_number"]))
        if out.get("national_id"):
            out["national_id"] = mask_national_id(str(out["national_id"]))
    elif level == "FULL":
        for f in FULL_MASK_FIELDS:
            if out.get(f):
                out[f] = MASKED
    else:
        raise ValueError(f"Unknown masking level: {level}")
    return out


def pseudonym(value: Any, *, salt: str, length: int = 10) -> str:
    """Stable one-way token for a value; same input and salt always give the same token."""
    digest = hashlib.sha256(f"{salt}:{value}".encode("utf-8")).hexdigest()
    return digest[:length]


def anonymized_identity(persona_id: int, *, salt: str = "persona") -> dict[str, Any]:
    """Replacement values for every identifying field of a persona."""
    token = pseudonym(persona_id, salt=salt)
    return {
        "first_name": "Anonymized",
        "last_name": token.upper(),
        "email": f"anon-{token}@anonymized.invalid",
        "phone_number": None,
        "date_of_birth": None,
        "national_id": None,
        "address": None,
        "emergency_contact": None,
        "employee_id": f"ANON-{token[:8].upper()}",
    }
