"""
Unit tests for condition evaluation.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_rules.app.rules.conditions import (
    MISSING_UPPER_BOUND, UNKNOWN_OPERATOR, UNPARSABLE_CONDITION_VALUE,
    UNPARSABLE_RECORD_VALUE, evaluate, to_number
)
from service_rules.app.rules.models import ConditionOperator


class IssueLog:
    """Collects data-quality issues reported by evaluate."""

    def __init__(self):
        self.kinds = []

    def __call__(self, kind, details):
        self.kinds.append(kind)


class TestStringOperators:
    """Test cases for string operators."""

    def test_equals_is_case_insensitive(self):
        assert evaluate("RIX-FRA", ConditionOperator.EQUALS, "rix-fra") is True
        assert evaluate("RIX-FRA", ConditionOperator.EQUALS, "RIX-MUC") is False

    def test_equals_trims_whitespace(self):
        assert evaluate(" ua ", "equals", "UA") is True

    def test_contains(self):
        assert evaluate("fra", ConditionOperator.CONTAINS, "RIX-FRA") is True
        assert evaluate("muc", ConditionOperator.CONTAINS, "RIX-FRA") is False

    def test_starts_with(self):
        assert evaluate("BT", ConditionOperator.STARTS_WITH, "bt651") is True
        assert evaluate("LH", ConditionOperator.STARTS_WITH, "bt651") is False

    def test_ends_with(self):
        assert evaluate("651", ConditionOperator.ENDS_WITH, "BT651") is True
        assert evaluate("650", ConditionOperator.ENDS_WITH, "BT651") is False

    def test_equals_against_integral_float(self):
        """Weights stored as 12.0 compare equal to the condition text '12'."""
        assert evaluate("12", ConditionOperator.EQUALS, 12.0) is True

    def test_operator_given_as_text(self):
        assert evaluate("A", "EQUALS", "a") is True

    def test_absent_record_value_never_matches(self):
        assert evaluate("", ConditionOperator.EQUALS, None) is False
        assert evaluate("x", ConditionOperator.CONTAINS, None) is False


class TestEmptinessOperators:
    """Test cases for is_empty and not_empty."""

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_is_empty(self, value):
        assert evaluate("", ConditionOperator.IS_EMPTY, value) is True
        assert evaluate("", ConditionOperator.NOT_EMPTY, value) is False

    def test_not_empty(self):
        assert evaluate("", ConditionOperator.NOT_EMPTY, "UA") is True
        assert evaluate("", ConditionOperator.IS_EMPTY, "UA") is False

    def test_zero_is_not_empty(self):
        assert evaluate("", ConditionOperator.NOT_EMPTY, 0.0) is True


class TestNumericOperators:
    """Test cases for greater_than, less_than and between."""

    def test_greater_than(self):
        assert evaluate("50", ConditionOperator.GREATER_THAN, 60.0) is True
        assert evaluate("50", ConditionOperator.GREATER_THAN, 40.0) is False
        assert evaluate("50", ConditionOperator.GREATER_THAN, 50.0) is False

    def test_less_than(self):
        assert evaluate("50", ConditionOperator.LESS_THAN, "12.5") is True
        assert evaluate("50", ConditionOperator.LESS_THAN, "50") is False

    def test_between_is_inclusive(self):
        assert evaluate("10", ConditionOperator.BETWEEN, 10.0, value2="20") is True
        assert evaluate("10", ConditionOperator.BETWEEN, 20.0, value2="20") is True
        assert evaluate("10", ConditionOperator.BETWEEN, 15.0, value2="20") is True
        assert evaluate("10", ConditionOperator.BETWEEN, 21.0, value2="20") is False

    @pytest.mark.parametrize("operator", [
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
        ConditionOperator.BETWEEN,
    ])
    @pytest.mark.parametrize("record_value", ["abc", "", "12kg", True])
    def test_non_numeric_record_value_is_false(self, operator, record_value):
        """Numeric operators degrade to no match on non-numeric record values."""
        assert evaluate("10", operator, record_value, value2="20") is False

    def test_non_numeric_record_value_reported(self):
        issues = IssueLog()

        assert evaluate("10", ConditionOperator.GREATER_THAN, "heavy", on_issue=issues) is False
        assert issues.kinds == [UNPARSABLE_RECORD_VALUE]

    def test_unparsable_upper_bound(self):
        """A 'between' with bound 'abc' never matches and never raises."""
        issues = IssueLog()

        for record_value in ("10", "15", "1000", "abc", None, 10.0):
            assert evaluate("10", ConditionOperator.BETWEEN, record_value, value2="abc", on_issue=issues) is False

        assert UNPARSABLE_CONDITION_VALUE in issues.kinds

    def test_missing_upper_bound(self):
        issues = IssueLog()

        assert evaluate("10", ConditionOperator.BETWEEN, 15.0, on_issue=issues) is False
        assert issues.kinds == [MISSING_UPPER_BOUND]

    def test_unparsable_condition_value(self):
        issues = IssueLog()

        assert evaluate("fifty", ConditionOperator.GREATER_THAN, 60.0, on_issue=issues) is False
        assert issues.kinds == [UNPARSABLE_CONDITION_VALUE]


class TestUnknownOperator:
    """Test cases for operators outside the supported set."""

    def test_unknown_operator_is_false(self):
        issues = IssueLog()

        assert evaluate("x", "regex", "x", on_issue=issues) is False
        assert issues.kinds == [UNKNOWN_OPERATOR]

    def test_unknown_operator_without_callback(self):
        assert evaluate("x", "sounds_like", "x") is False


class TestToNumber:
    """Test cases for numeric parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("12", 12.0),
        (" 12.5 ", 12.5),
        (7, 7.0),
        ("-3", -3.0),
    ])
    def test_parses(self, value, expected):
        assert to_number(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", "nan", "inf", True, False])
    def test_rejects(self, value):
        assert to_number(value) is None
