"""
Unit tests for the document workflow engine (no database).

Covers definition validation, condition operators and the state -> status map.
"""

import copy

import pytest

from app.sms.modules.documents.workflow import (
    DEFAULT_WORKFLOW_DEFINITION,
    WorkflowCondition,
    conditions_met,
    evaluate_condition,
    parse_definition,
    status_for_state,
    validate_definition,
)


def _minimal(**extra):
    d = {
        "states": [
            {"id": "draft", "name": "Draft", "type": "start"},
            {"id": "done", "name": "Done", "type": "end"},
        ],
        "transitions": [{"id": "t1", "from_state": "draft", "to_state": "done", "trigger": "finish"}],
    }
    d.update(extra)
    return d


class TestValidateDefinition:
    """Tests for validate_definition()"""

    def test_default_definition_is_valid(self):
        assert validate_definition(DEFAULT_WORKFLOW_DEFINITION) == []

    def test_minimal_definition_is_valid(self):
        assert validate_definition(_minimal()) == []

    def test_non_object(self):
        assert validate_definition(["states"]) == ["definition must be an object"]
        assert validate_definition(None) == ["definition must be an object"]

    def test_states_required(self):
        errors = validate_definition({"states": [], "transitions": []})
        assert any("states" in e for e in errors)

    def test_exactly_one_start_state(self):
        d = _minimal()
        d["states"][1]["type"] = "start"
        assert any("exactly one start state" in e for e in validate_definition(d))

        d = _minimal()
        d["states"][0]["type"] = "intermediate"
        assert any("exactly one start state" in e for e in validate_definition(d))

    def test_duplicate_state_ids(self):
        d = _minimal()
        d["states"].append({"id": "done", "name": "Done again", "type": "end"})
        assert any("duplicate state id" in e for e in validate_definition(d))

    def test_unknown_state_type(self):
        d = _minimal()
        d["states"][1]["type"] = "terminal"
        assert any("unknown type" in e for e in validate_definition(d))

    def test_transition_to_unknown_state(self):
        d = _minimal()
        d["transitions"][0]["to_state"] = "nowhere"
        assert any("unknown state 'nowhere'" in e for e in validate_definition(d))

    def test_duplicate_trigger_from_same_state(self):
        d = _minimal()
        d["transitions"].append({"id": "t2", "from_state": "draft", "to_state": "draft", "trigger": "finish"})
        assert any("defined twice" in e for e in validate_definition(d))

    def test_unknown_operator(self):
        d = _minimal()
        d["transitions"][0]["conditions"] = [{"field": "title", "operator": "matches", "value": "x"}]
        assert any("unknown operator" in e for e in validate_definition(d))

    def test_unknown_action_type(self):
        d = _minimal()
        d["states"][1]["actions"] = [{"type": "sms"}]
        assert any("unknown action type" in e for e in validate_definition(d))

    def test_update_status_needs_known_status(self):
        d = _minimal()
        d["transitions"][0]["actions"] = [{"type": "update_status", "parameters": {"status": "SHREDDED"}}]
        assert any("update_status" in e for e in validate_definition(d))

    def test_webhook_needs_url(self):
        d = _minimal()
        d["transitions"][0]["actions"] = [{"type": "webhook", "parameters": {}}]
        assert any("webhook needs a url" in e for e in validate_definition(d))


class TestParseDefinition:
    """Tests for parse_definition() and the WorkflowDefinition helpers"""

    def test_start_state(self):
        defn = parse_definition(DEFAULT_WORKFLOW_DEFINITION)
        assert defn.start_state.id == "draft"

    def test_find_transition(self):
        defn = parse_definition(DEFAULT_WORKFLOW_DEFINITION)
        t = defn.find_transition("approval", "reject")
        assert t.to_state == "rejected"
        assert defn.find_transition("draft", "approve") is None

    def test_triggers_from(self):
        defn = parse_definition(DEFAULT_WORKFLOW_DEFINITION)
        assert sorted(defn.triggers_from("review")) == ["complete_review", "reject"]
        assert defn.triggers_from("archived") == []

    def test_input_not_mutated(self):
        raw = copy.deepcopy(DEFAULT_WORKFLOW_DEFINITION)
        parse_definition(raw)
        assert raw == DEFAULT_WORKFLOW_DEFINITION


class TestEvaluateCondition:
    """Tests for evaluate_condition()"""

    def test_equals_is_strict(self):
        assert evaluate_condition("equals", "A", "A") is True
        assert evaluate_condition("equals", "1", 1) is False
        assert evaluate_condition("equals", True, 1) is False
        assert evaluate_condition("equals", 0, False) is False
        assert evaluate_condition("equals", True, True) is True
        assert evaluate_condition("equals", 2, 2.0) is True
        assert evaluate_condition("not_equals", True, 1) is True

    def test_not_equals(self):
        assert evaluate_condition("not_equals", "DRAFT", "PUBLISHED") is True
        assert evaluate_condition("not_equals", 3, 3) is False

    def test_contains(self):
        assert evaluate_condition("contains", "Safety Manual", "Manual") is True
        assert evaluate_condition("contains", "Safety Manual", "manual") is False
        assert evaluate_condition("contains", None, "x") is False

    def test_numeric_comparisons(self):
        assert evaluate_condition("greater_than", 5, 3) is True
        assert evaluate_condition("greater_than", "5", "3") is True
        assert evaluate_condition("less_than", 2.5, 3) is True
        assert evaluate_condition("less_than", 3, 3) is False

    def test_non_numeric_comparisons_are_false(self):
        assert evaluate_condition("greater_than", "abc", 1) is False
        assert evaluate_condition("greater_than", None, 1) is False
        assert evaluate_condition("less_than", True, 5) is False

    def test_unknown_operator_is_false(self):
        assert evaluate_condition("between", 1, 2) is False

    def test_conditions_met_all_must_hold(self):
        values = {"priority": 4, "category": "SAFETY"}
        conds = (
            WorkflowCondition(field="priority", operator="greater_than", value=3),
            WorkflowCondition(field="category", operator="equals", value="SAFETY"),
        )
        assert conditions_met(conds, values.get) is True
        assert conditions_met(conds + (WorkflowCondition("category", "equals", "OTHER"),), values.get) is False
        assert conditions_met((), values.get) is True


class TestStatusForState:
    """Tests for status_for_state()"""

    @pytest.mark.parametrize(
        "state,status",
        [
            ("draft", "DRAFT"),
            ("review", "UNDER_REVIEW"),
            ("approval", "PENDING_APPROVAL"),
            ("approved", "APPROVED"),
            ("published", "PUBLISHED"),
            ("rejected", "DRAFT"),
            ("archived", "ARCHIVED"),
        ],
    )
    def test_known_states(self, state, status):
        assert status_for_state(state) == status

    def test_unknown_state_defaults_to_draft(self):
        assert status_for_state("custom_step") == "DRAFT"
        assert status_for_state(None) == "DRAFT"
