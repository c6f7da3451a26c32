from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.sms.audit import record_event
from app.sms.errors import NotFoundError
from app.sms.models import User
from app.sms.modules.dynamic_fields.models import FieldDefinition, FieldValue, FormSubmission, FormTemplate
from app.sms.utils import clean_str, parse_datetime

logger = logging.getLogger(__name__)

DATA_TYPES = (
    "STRING",
    "EMAIL",
    "URL",
    "PHONE",
    "NUMBER",
    "INTEGER",
    "BOOLEAN",
    "DATE",
    "DATETIME",
    "JSON",
    "ARRAY",
    "OBJECT",
)
TEXT_TYPES = ("STRING", "EMAIL", "URL", "PHONE")
JSON_TYPES = ("JSON", "ARRAY", "OBJECT")
VALUE_COLUMNS = ("text_value", "number_value", "integer_value", "boolean_value", "date_value", "json_value")


def increment_version(current: str | None) -> str:
    """
    Bump the patch component of a dotted version.

    Examples:
        >>> increment_version("1.0")
        '1.0.1'
        >>> increment_version("1.0.1")
        '1.0.2'
    """
    parts = (current or "1.0").split(".")
    while len(parts) < 2:
        parts.append("0")
    try:
        patch = int(parts[2]) + 1 if len(parts) > 2 else 1
    except ValueError:
        patch = 1
    return f"{parts[0]}.{parts[1]}.{patch}"


def validate_field_definition_payload(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    name = clean_str(payload.get("name"))
    if not name:
        errors.append("name is required")
    elif not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", name):
        errors.append("name must be an identifier (letters, digits, underscore)")
    if not clean_str(payload.get("label")):
        errors.append("label is required")
    dt = (clean_str(payload.get("data_type")) or "STRING").upper()
    if dt not in DATA_TYPES:
        errors.append(f"data_type must be one of: {', '.join(DATA_TYPES)}")
    rules = payload.get("validation_rules")
    if rules is not None and not isinstance(rules, dict):
        errors.append("validation_rules must be an object")
    opts = payload.get("options")
    if opts is not None and not isinstance(opts, list):
        errors.append("options must be a list")
    return errors


def create_field_definition(s: Session, company_id: int | None, payload: dict[str, Any], *, user: User | None) -> FieldDefinition:
    errors = validate_field_definition_payload(payload)
    if errors:
        raise ValueError("; ".join(errors))
    fd = FieldDefinition(
        company_id=company_id,
        name=clean_str(payload.get("name")),
        label=clean_str(payload.get("label")),
        description=clean_str(payload.get("description")),
        category=(clean_str(payload.get("category")) or "GENERAL").upper(),
        data_type=(clean_str(payload.get("data_type")) or "STRING").upper(),
        is_required=bool(payload.get("is_required")),
        validation_rules=payload.get("validation_rules"),
        options=payload.get("options"),
        default_value=clean_str(payload.get("default_value")),
        display_order=int(payload.get("display_order") or 0),
        version="1.0",
        created_by_user_id=user.id if user else None,
        updated_by_user_id=user.id if user else None,
    )
    s.add(fd)
    s.flush()
    record_event(
        s,
        actor=user,
        action="field_definition.create",
        entity_type="FieldDefinition",
        entity_id=str(fd.id),
        company_id=company_id,
        metadata={"name": fd.name, "data_type": fd.data_type, "category": fd.category},
    )
    logger.info("Field definition created id=%s name=%s", fd.id, fd.name)
    return fd


def list_field_definitions(
    s: Session,
    company_id: int | None = None,
    *,
    category: str | None = None,
    include_inactive: bool = False,
) -> list[FieldDefinition]:
    q = s.query(FieldDefinition)
    if not include_inactive:
        q = q.filter(FieldDefinition.is_active.is_(True))
    if company_id is not None:
        q = q.filter(or_(FieldDefinition.company_id == company_id, FieldDefinition.company_id.is_(None)))
    else:
        q = q.filter(FieldDefinition.company_id.is_(None))
    if category:
        q = q.filter(FieldDefinition.category == category.upper())
    return q.order_by(FieldDefinition.display_order.asc(), FieldDefinition.created_at.asc(), FieldDefinition.id.asc()).all()


def get_field_definition(s: Session, field_definition_id: int, *, company_id: int | None = None) -> FieldDefinition:
    """Global definitions (company_id NULL) are visible to every company."""
    fd = s.get(FieldDefinition, field_definition_id)
    if not fd or (company_id is not None and fd.company_id not in (company_id, None)):
        raise NotFoundError(f"Field definition {field_definition_id} not found")
    return fd


def update_field_definition(s: Session, fd: FieldDefinition, payload: dict[str, Any], *, user: User | None) -> FieldDefinition:
    merged = {
        "name": fd.name,
        "label": fd.label,
        "data_type": fd.data_type,
        "validation_rules": fd.validation_rules,
        "options": fd.options,
    }
    merged.update({k: v for k, v in payload.items() if k in merged})
    errors = validate_field_definition_payload(merged)
    if errors:
        raise ValueError("; ".join(errors))

    changed: list[str] = []
    for key in ("label", "description", "category", "data_type", "default_value"):
        if key in payload:
            val = clean_str(payload.get(key))
            if key in ("category", "data_type") and val:
                val = val.upper()
            if getattr(fd, key) != val:
                setattr(fd, key, val)
                changed.append(key)
    for key in ("validation_rules", "options"):
        if key in payload and getattr(fd, key) != payload.get(key):
            setattr(fd, key, payload.get(key))
            changed.append(key)
    if "is_required" in payload and fd.is_required != bool(payload["is_required"]):
        fd.is_required = bool(payload["is_required"])
        changed.append("is_required")
    if "display_order" in payload and fd.display_order != int(payload["display_order"] or 0):
        fd.display_order = int(payload["display_order"] or 0)
        changed.append("display_order")

    if not changed:
        return fd
    fd.version = increment_version(fd.version)
    fd.updated_at = datetime.utcnow()
    fd.updated_by_user_id = user.id if user else None
    record_event(
        s,
        actor=user,
        action="field_definition.update",
        entity_type="FieldDefinition",
        entity_id=str(fd.id),
        company_id=fd.company_id,
        metadata={"fields_changed": changed, "version": fd.version},
    )
    return fd


def deactivate_field_definition(s: Session, fd: FieldDefinition, *, user: User | None) -> FieldDefinition:
    fd.is_active = False
    fd.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="field_definition.deactivate",
        entity_type="FieldDefinition",
        entity_id=str(fd.id),
        company_id=fd.company_id,
    )
    logger.info("Field definition deactivated id=%s", fd.id)
    return fd


def coerce_value(data_type: str, raw: Any) -> dict[str, Any]:
    """
    Map a raw value onto the typed value column for a data type.

    Returns {column_name: value}. Raises ValueError when the raw value cannot be
    converted.
    """
    dt = (data_type or "STRING").upper()
    if raw is None or (isinstance(raw, str) and not raw.strip() and dt not in TEXT_TYPES):
        return {}
    if dt in TEXT_TYPES:
        return {"text_value": str(raw)}
    if dt == "NUMBER":
        try:
            return {"number_value": float(raw)}
        except (TypeError, ValueError):
            raise ValueError(f"{raw!r} is not a number")
    if dt == "INTEGER":
        try:
            return {"integer_value": int(raw)}
        except (TypeError, ValueError):
            raise ValueError(f"{raw!r} is not an integer")
    if dt == "BOOLEAN":
        if isinstance(raw, str):
            return {"boolean_value": raw.strip().lower() in ("1", "true", "yes", "y", "on")}
        return {"boolean_value": bool(raw)}
    if dt in ("DATE", "DATETIME"):
        try:
            return {"date_value": parse_datetime(raw)}
        except (TypeError, ValueError):
            raise ValueError(f"{raw!r} is not a date")
    if dt in JSON_TYPES:
        return {"json_value": raw}
    return {"text_value": str(raw)}


def typed_value(fv: FieldValue) -> Any:
    dt = fv.field_definition.data_type if fv.field_definition else "STRING"
    if dt == "NUMBER":
        return fv.number_value
    if dt == "INTEGER":
        return fv.integer_value
    if dt == "BOOLEAN":
        return fv.boolean_value
    if dt in ("DATE", "DATETIME"):
        return fv.date_value
    if dt in JSON_TYPES:
        return fv.json_value
    return fv.text_value


def validate_field_value(fd: FieldDefinition, values: dict[str, Any]) -> list[str]:
    """Check typed column values against the definition's requirements and rules."""
    errors: list[str] = []
    present = {k: v for k, v in values.items() if v is not None and v != ""}
    if fd.is_required and not present:
        errors.append(f"Field {fd.name} is required")
        return errors
    if not present:
        return errors

    value = next(iter(present.values()))
    rules = fd.validation_rules or {}
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if rules.get("min") is not None and value < float(rules["min"]):
            errors.append(f"Field {fd.name} must be >= {rules['min']}")
        if rules.get("max") is not None and value > float(rules["max"]):
            errors.append(f"Field {fd.name} must be <= {rules['max']}")
    if isinstance(value, str):
        if rules.get("min_length") is not None and len(value) < int(rules["min_length"]):
            errors.append(f"Field {fd.name} must be at least {rules['min_length']} characters")
        if rules.get("max_length") is not None and len(value) > int(rules["max_length"]):
            errors.append(f"Field {fd.name} must be at most {rules['max_length']} characters")
        if rules.get("pattern") and not re.fullmatch(str(rules["pattern"]), value):
            errors.append(f"Field {fd.name} does not match the required format")
        if fd.data_type == "EMAIL" and "@" not in value:
            errors.append(f"Field {fd.name} must be an email address")
    if fd.options and value not in fd.options:
        errors.append(f"Field {fd.name} must be one of: {', '.join(str(o) for o in fd.options)}")
    return errors


def set_field_value(
    s: Session,
    *,
    field_definition_id: int,
    entity_type: str,
    entity_id: int,
    company_id: int,
    values: dict[str, Any],
    user: User | None,
) -> FieldValue:
    """
    Upsert the value of one field for one entity.

    `values` holds typed columns (see coerce_value). The row version starts at
    "1.0" and bumps its patch on every update.
    """
    fd = get_field_definition(s, field_definition_id, company_id=company_id)
    unknown = [k for k in values if k not in VALUE_COLUMNS]
    if unknown:
        raise ValueError(f"Unknown value column(s): {', '.join(unknown)}")
    errors = validate_field_value(fd, values)
    if errors:
        raise ValueError("; ".join(errors))

    entity_type = entity_type.upper()
    fv = (
        s.query(FieldValue)
        .filter(
            FieldValue.field_definition_id == fd.id,
            FieldValue.entity_type == entity_type,
            FieldValue.entity_id == entity_id,
        )
        .one_or_none()
    )
    now = datetime.utcnow()
    if fv is None:
        fv = FieldValue(
            company_id=company_id,
            field_definition_id=fd.id,
            entity_type=entity_type,
            entity_id=entity_id,
            version="1.0",
            created_by_user_id=user.id if user else None,
        )
        fv.field_definition = fd
        s.add(fv)
    else:
        fv.version = increment_version(fv.version)
    for col in VALUE_COLUMNS:
        setattr(fv, col, values.get(col))
    fv.updated_at = now
    fv.updated_by_user_id = user.id if user else None
    s.flush()
    logger.debug("Field value set def=%s %s:%s", fd.id, entity_type, entity_id)
    return fv


def set_field_values_for_entity(
    s: Session,
    *,
    company_id: int,
    entity_type: str,
    entity_id: int,
    values: dict[str, Any],
    user: User | None,
) -> list[FieldValue]:
    defs = {fd.name: fd for fd in list_field_definitions(s, company_id)}
    out: list[FieldValue] = []
    for name, raw in (values or {}).items():
        fd = defs.get(name)
        if fd is None:
            logger.warning("No field definition named %r for company %s; skipping", name, company_id)
            continue
        out.append(
            set_field_value(
                s,
                field_definition_id=fd.id,
                entity_type=entity_type,
                entity_id=entity_id,
                company_id=company_id,
                values=coerce_value(fd.data_type, raw),
                user=user,
            )
        )
    return out


def get_field_values_for_entity(s: Session, *, company_id: int, entity_type: str, entity_id: int) -> dict[str, Any]:
    rows = (
        s.query(FieldValue)
        .filter(
            FieldValue.company_id == company_id,
            FieldValue.entity_type == entity_type.upper(),
            FieldValue.entity_id == entity_id,
        )
        .order_by(FieldValue.id.asc())
        .all()
    )
    return {fv.field_definition.name: typed_value(fv) for fv in rows}


def create_form_template(s: Session, company_id: int | None, payload: dict[str, Any], *, user: User | None) -> FormTemplate:
    name = clean_str(payload.get("name"))
    if not name:
        raise ValueError("name is required")
    fields = payload.get("fields") or []
    if not isinstance(fields, list):
        raise ValueError("fields must be a list")
    for f in fields:
        if not isinstance(f, dict) or not clean_str(f.get("name")):
            raise ValueError("every template field needs a name")
    ft = FormTemplate(
        company_id=company_id,
        name=name,
        description=clean_str(payload.get("description")),
        category=(clean_str(payload.get("category")) or "GENERAL").upper(),
        fields=fields,
        version="1.0",
        created_by_user_id=user.id if user else None,
    )
    s.add(ft)
    s.flush()
    record_event(
        s,
        actor=user,
        action="form_template.create",
        entity_type="FormTemplate",
        entity_id=str(ft.id),
        company_id=company_id,
        metadata={"name": ft.name, "category": ft.category, "field_count": len(fields)},
    )
    return ft


def list_form_templates(s: Session, company_id: int | None = None, *, category: str | None = None, is_active: bool = True) -> list[FormTemplate]:
    q = s.query(FormTemplate).filter(FormTemplate.is_active.is_(is_active))
    if company_id is not None:
        q = q.filter(or_(FormTemplate.company_id == company_id, FormTemplate.company_id.is_(None)))
    if category:
        q = q.filter(FormTemplate.category == category.upper())
    return q.order_by(FormTemplate.created_at.desc(), FormTemplate.id.desc()).all()


def publish_form_template(s: Session, ft: FormTemplate, *, user: User | None) -> FormTemplate:
    ft.is_published = True
    ft.published_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="form_template.publish",
        entity_type="FormTemplate",
        entity_id=str(ft.id),
        company_id=ft.company_id,
    )
    logger.info("Form template published id=%s", ft.id)
    return ft


def validate_form_submission(ft: FormTemplate, data: dict[str, Any]) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    for f in ft.fields or []:
        if f.get("is_required") and data.get(f["name"]) in (None, ""):
            errors.append({"field": f["name"], "message": f"{f.get('label') or f['name']} is required"})
    return errors


def submit_form(s: Session, form_template_id: int, data: dict[str, Any], *, company_id: int, user: User | None) -> FormSubmission:
    """Store a submission. Invalid submissions are kept too, flagged with their errors."""
    ft = s.get(FormTemplate, form_template_id)
    if not ft or ft.company_id not in (company_id, None):
        raise NotFoundError(f"Form template {form_template_id} not found")
    errors = validate_form_submission(ft, data or {})
    sub = FormSubmission(
        company_id=company_id,
        form_template_id=ft.id,
        submission_data=data or {},
        is_valid=not errors,
        validation_errors=errors or None,
        submitted_by_user_id=user.id if user else None,
    )
    s.add(sub)
    s.flush()
    record_event(
        s,
        actor=user,
        action="form.submit",
        entity_type="FormSubmission",
        entity_id=str(sub.id),
        company_id=company_id,
        metadata={"form_template_id": ft.id, "is_valid": sub.is_valid},
    )
    if errors:
        logger.info("Form submission %s stored with %s validation error(s)", sub.id, len(errors))
    return sub
