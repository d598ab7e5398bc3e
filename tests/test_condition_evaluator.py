"""Tests for the condition evaluator."""

import pytest

from automation_engine.core.condition_evaluator import ConditionEvaluator, evaluate
from automation_engine.models.core import ConditionClause


CONTEXT = {
    "record": {
        "status": "won",
        "amount": 150,
        "amount_text": "150.5",
        "tags": ["vip", "renewal"],
        "email": "ada@example.com",
        "notes": "",
        "owner": None,
        "active": True,
    },
    "vars": {"threshold": 100},
}


class TestOperators:
    """Test cases for single comparisons."""

    @pytest.mark.parametrize("field,operator,value,expected", [
        ("record.status", "equals", "won", True),
        ("record.status", "equals", "lost", False),
        ("record.amount", "equals", "150", True),
        ("record.active", "equals", "true", True),
        ("record.status", "not_equals", "lost", True),
        ("record.email", "contains", "@example", True),
        ("record.tags", "contains", "vip", True),
        ("record.tags", "not_contains", "churned", True),
        ("record.email", "starts_with", "ada", True),
        ("record.email", "ends_with", ".org", False),
        ("record.amount", "greater_than", 100, True),
        ("record.amount", "less_than", "100", False),
        ("record.amount_text", "greater_or_equal", 150.5, True),
        ("record.amount", "less_or_equal", 150, True),
        ("record.notes", "is_empty", None, True),
        ("record.owner", "is_empty", None, True),
        ("record.missing", "is_empty", None, True),
        ("record.tags", "is_not_empty", None, True),
        ("record.status", "in", "open, won", True),
        ("record.status", "in", ["open", "lost"], False),
        ("record.status", "not_in", ["open", "lost"], True),
    ])
    def test_operator(self, field, operator, value, expected):
        assert evaluate(field, operator, value, CONTEXT) is expected

    def test_field_may_be_a_template(self):
        assert evaluate("{{record.status}}", "equals", "won", CONTEXT) is True

    def test_value_tokens_are_resolved(self):
        assert evaluate("record.amount", "greater_than", "{{vars.threshold}}", CONTEXT) is True

    def test_non_numeric_operand_is_false(self):
        assert evaluate("record.status", "greater_than", 10, CONTEXT) is False
        assert evaluate("record.status", "less_or_equal", 10, CONTEXT) is False

    def test_missing_operand_is_false_for_numeric_operators(self):
        assert evaluate("record.missing", "greater_than", 0, CONTEXT) is False
        assert evaluate("record.missing", "less_than", 0, CONTEXT) is False

    def test_boolean_is_not_numeric(self):
        assert evaluate("record.active", "greater_than", 0, CONTEXT) is False

    def test_unknown_operator_is_false(self):
        assert evaluate("record.status", "matches_regex", ".*", CONTEXT) is False

    def test_operator_is_case_insensitive(self):
        assert evaluate("record.status", "EQUALS", "won", CONTEXT) is True


class TestClauseChains:
    """Test cases for left-to-right AND/OR combination."""

    def setup_method(self):
        self.evaluator = ConditionEvaluator()

    def clause(self, value, logic=None):
        return ConditionClause(field="record.status", operator="equals", value=value, logic=logic)

    def test_empty_chain_is_true(self):
        assert self.evaluator.evaluate_clauses([], CONTEXT) is True

    def test_and_is_default(self):
        clauses = [self.clause("won"), self.clause("lost")]
        assert self.evaluator.evaluate_clauses(clauses, CONTEXT) is False

    def test_or(self):
        clauses = [self.clause("lost"), self.clause("won", logic="OR")]
        assert self.evaluator.evaluate_clauses(clauses, CONTEXT) is True

    def test_no_precedence(self):
        # (true OR false) AND false -> false; with AND precedence it would be true
        clauses = [self.clause("won"), self.clause("lost", logic="OR"), self.clause("lost", logic="AND")]
        assert self.evaluator.evaluate_clauses(clauses, CONTEXT) is False

        # (false AND true) OR true -> true
        clauses = [self.clause("lost"), self.clause("won", logic="AND"), self.clause("won", logic="or")]
        assert self.evaluator.evaluate_clauses(clauses, CONTEXT) is True
