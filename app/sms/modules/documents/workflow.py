"""
Declarative document workflow engine.

A workflow definition is plain JSON stored on DocumentWorkflow.definition:

    {
      "states": [{"id": "draft", "name": "Draft", "type": "start", "actions": [...]}, ...],
      "transitions": [
        {"id": "t1", "from_state": "draft", "to_state": "review", "trigger": "submit",
         "conditions": [{"field": "title", "operator": "not_equals", "value": ""}],
         "actions": [{"type": "notify", "parameters": {...}}]}
      ]
    }

Everything here is pure: parsing, validation, condition evaluation and the
state -> document status mapping. Side effects (actions, persistence) live in
the documents service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

STATE_TYPES = ("start", "intermediate", "end")
OPERATORS = ("equals", "not_equals", "contains", "greater_than", "less_than")
ACTION_TYPES = ("notify", "assign", "update_status", "create_task", "send_email", "webhook")

DOCUMENT_STATUSES = (
    "DRAFT",
    "UNDER_REVIEW",
    "PENDING_APPROVAL",
    "APPROVED",
    "PUBLISHED",
    "ARCHIVED",
    "DELETED",
)

STATE_STATUS = {
    "draft": "DRAFT",
    "review": "UNDER_REVIEW",
    "approval": "PENDING_APPROVAL",
    "approved": "APPROVED",
    "published": "PUBLISHED",
    "rejected": "DRAFT",
    "archived": "ARCHIVED",
}


@dataclass(frozen=True)
class WorkflowAction:
    type: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowCondition:
    field: str
    operator: str
    value: Any = None


@dataclass(frozen=True)
class WorkflowState:
    id: str
    name: str
    type: str = "intermediate"
    actions: tuple[WorkflowAction, ...] = ()


@dataclass(frozen=True)
class WorkflowTransition:
    id: str
    from_state: str
    to_state: str
    trigger: str
    conditions: tuple[WorkflowCondition, ...] = ()
    actions: tuple[WorkflowAction, ...] = ()


@dataclass(frozen=True)
class WorkflowDefinition:
    states: tuple[WorkflowState, ...]
    transitions: tuple[WorkflowTransition, ...]

    @property
    def start_state(self) -> WorkflowState | None:
        for st in self.states:
            if st.type == "start":
                return st
        return None

    def state(self, state_id: str | None) -> WorkflowState | None:
        for st in self.states:
            if st.id == state_id:
                return st
        return None

    def find_transition(self, from_state: str | None, trigger: str) -> WorkflowTransition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.trigger == trigger:
                return t
        return None

    def triggers_from(self, state_id: str | None) -> list[str]:
        return [t.trigger for t in self.transitions if t.from_state == state_id]


def _actions(raw: Any) -> tuple[WorkflowAction, ...]:
    out = []
    for a in raw or []:
        if not isinstance(a, dict):
            continue
        out.append(WorkflowAction(type=str(a.get("type") or ""), parameters=dict(a.get("parameters") or {})))
    return tuple(out)


def parse_definition(raw: dict[str, Any] | None) -> WorkflowDefinition:
    """Build a WorkflowDefinition from stored JSON. Does not validate; see validate_definition()."""
    raw = raw or {}
    states = tuple(
        WorkflowState(
            id=str(s.get("id") or ""),
            name=str(s.get("name") or s.get("id") or ""),
            type=str(s.get("type") or "intermediate"),
            actions=_actions(s.get("actions")),
        )
        for s in (raw.get("states") or [])
        if isinstance(s, dict)
    )
    transitions = tuple(
        WorkflowTransition(
            id=str(t.get("id") or ""),
            from_state=str(t.get("from_state") or ""),
            to_state=str(t.get("to_state") or ""),
            trigger=str(t.get("trigger") or ""),
            conditions=tuple(
                WorkflowCondition(field=str(c.get("field") or ""), operator=str(c.get("operator") or ""), value=c.get("value"))
                for c in (t.get("conditions") or [])
                if isinstance(c, dict)
            ),
            actions=_actions(t.get("actions")),
        )
        for t in (raw.get("transitions") or [])
        if isinstance(t, dict)
    )
    return WorkflowDefinition(states=states, transitions=transitions)


def validate_definition(raw: dict[str, Any] | None) -> list[str]:
    errors: list[str] = []
    if not isinstance(raw, dict):
        return ["definition must be an object"]
    if not isinstance(raw.get("states"), list) or not raw["states"]:
        errors.append("definition.states must be a non-empty list")
    if not isinstance(raw.get("transitions", []), list):
        errors.append("definition.transitions must be a list")
    if errors:
        return errors

    defn = parse_definition(raw)
    ids = [s.id for s in defn.states]
    if any(not i for i in ids):
        errors.append("every state needs an id")
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        errors.append(f"duplicate state id(s): {', '.join(dupes)}")
    starts = [s for s in defn.states if s.type == "start"]
    if len(starts) != 1:
        errors.append(f"definition must have exactly one start state (found {len(starts)})")
    for s in defn.states:
        if s.type not in STATE_TYPES:
            errors.append(f"state {s.id!r} has unknown type {s.type!r}")
        errors.extend(_validate_actions(s.actions, f"state {s.id!r}"))

    known = set(ids)
    seen: set[tuple[str, str]] = set()
    for t in defn.transitions:
        label = f"transition {t.id or t.trigger!r}"
        if not t.trigger:
            errors.append(f"{label} needs a trigger")
        if t.from_state not in known:
            errors.append(f"{label} starts at unknown state {t.from_state!r}")
        if t.to_state not in known:
            errors.append(f"{label} ends at unknown state {t.to_state!r}")
        key = (t.from_state, t.trigger)
        if key in seen:
            errors.append(f"{label}: trigger {t.trigger!r} is defined twice from state {t.from_state!r}")
        seen.add(key)
        for c in t.conditions:
            if not c.field:
                errors.append(f"{label} has a condition without a field")
            if c.operator not in OPERATORS:
                errors.append(f"{label} uses unknown operator {c.operator!r}")
        errors.extend(_validate_actions(t.actions, label))
    return errors


def _validate_actions(actions: tuple[WorkflowAction, ...], where: str) -> list[str]:
    errors: list[str] = []
    for a in actions:
        if a.type not in ACTION_TYPES:
            errors.append(f"{where} uses unknown action type {a.type!r}")
        elif a.type == "update_status" and str(a.parameters.get("status") or "").upper() not in DOCUMENT_STATUSES:
            errors.append(f"{where}: update_status needs a known status")
        elif a.type == "webhook" and not a.parameters.get("url"):
            errors.append(f"{where}: webhook needs a url")
    return errors


def _as_number(v: Any) -> float | None:
    if isinstance(v, bool) or v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _strict_equals(a: Any, b: Any) -> bool:
    # bool is an int subclass; True must not equal 1
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    return a == b


def evaluate_condition(operator: str, actual: Any, expected: Any) -> bool:
    """
    Evaluate one condition.

    equals/not_equals compare strictly, contains is string containment,
    greater_than/less_than are numeric (non-numeric operands -> False).
    Unknown operators evaluate to False.
    """
    if operator == "equals":
        return _strict_equals(actual, expected)
    if operator == "not_equals":
        return not _strict_equals(actual, expected)
    if operator == "contains":
        if actual is None or expected is None:
            return False
        return str(expected) in str(actual)
    if operator in ("greater_than", "less_than"):
        a, b = _as_number(actual), _as_number(expected)
        if a is None or b is None:
            return False
        return a > b if operator == "greater_than" else a < b
    logger.warning("Unknown workflow condition operator: %s", operator)
    return False


def conditions_met(conditions: tuple[WorkflowCondition, ...], lookup) -> bool:
    """`lookup(field_name)` resolves the actual value for a condition field."""
    return all(evaluate_condition(c.operator, lookup(c.field), c.value) for c in conditions)


def status_for_state(state_id: str | None) -> str:
    return STATE_STATUS.get((state_id or "").lower(), "DRAFT")


DEFAULT_WORKFLOW_DEFINITION: dict[str, Any] = {
    "states": [
        {"id": "draft", "name": "Draft", "type": "start"},
        {"id": "review", "name": "Review", "type": "intermediate"},
        {"id": "approval", "name": "Approval", "type": "intermediate"},
        {"id": "approved", "name": "Approved", "type": "intermediate"},
        {"id": "published", "name": "Published", "type": "intermediate"},
        {"id": "rejected", "name": "Rejected", "type": "intermediate"},
        {"id": "archived", "name": "Archived", "type": "end"},
    ],
    "transitions": [
        {"id": "submit", "from_state": "draft", "to_state": "review", "trigger": "submit"},
        {"id": "review_ok", "from_state": "review", "to_state": "approval", "trigger": "complete_review"},
        {"id": "review_reject", "from_state": "review", "to_state": "rejected", "trigger": "reject"},
        {"id": "approve", "from_state": "approval", "to_state": "approved", "trigger": "approve"},
        {"id": "approval_reject", "from_state": "approval", "to_state": "rejected", "trigger": "reject"},
        {"id": "publish", "from_state": "approved", "to_state": "published", "trigger": "publish"},
        {"id": "rework", "from_state": "rejected", "to_state": "draft", "trigger": "rework"},
        {"id": "archive", "from_state": "published", "to_state": "archived", "trigger": "archive"},
    ],
}
