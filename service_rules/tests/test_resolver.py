"""
Unit tests for PriorityResolver.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.metrics import MetricsCollector
from service_rules.app.rules.matcher import RuleMatcher
from service_rules.app.rules.models import (
    ConditionOperator, CustomerOutcome, Rule, RuleCondition
)
from service_rules.app.rules.resolver import PriorityResolver


def route_is(route):
    return RuleCondition(field="route", operator=ConditionOperator.EQUALS, value=route)


def customer_rule(rule_id, priority, conditions=None, is_active=True):
    return Rule(
        rule_id=rule_id,
        name=f"Rule {rule_id}",
        outcome=CustomerOutcome(customer=f"customer-{rule_id}"),
        priority=priority,
        conditions=conditions or [],
        is_active=is_active,
    )


class TestPriorityResolver:
    """Test cases for PriorityResolver."""

    @pytest.fixture
    def resolver(self):
        return PriorityResolver(RuleMatcher(metrics=MetricsCollector("test")))

    @pytest.fixture
    def record(self):
        return {"id": "rec-1", "route": "RIX-FRA"}

    def test_catch_all_with_lower_priority_wins(self, resolver, record):
        """Priority 1 wins even though the priority 2 rule also matches."""
        rules = [
            customer_rule("B", 2, [route_is("RIX-FRA")]),
            customer_rule("A", 1),
        ]

        decision = resolver.resolve(rules, record)

        assert decision.matched is True
        assert decision.rule_id == "A"
        assert decision.priority == 1
        assert decision.outcome.customer == "customer-A"
        assert decision.record_id == "rec-1"

    def test_first_match_wins_regardless_of_input_order(self, resolver, record):
        first = customer_rule("R1", 1, [route_is("RIX-FRA")])
        second = customer_rule("R2", 2, [route_is("RIX-FRA")])

        assert resolver.resolve([first, second], record).rule_id == "R1"
        assert resolver.resolve([second, first], record).rule_id == "R1"

    def test_skips_non_matching_rules(self, resolver, record):
        rules = [
            customer_rule("A", 1, [route_is("VNO-CDG")]),
            customer_rule("B", 2, [route_is("RIX-FRA")]),
        ]

        assert resolver.resolve(rules, record).rule_id == "B"

    def test_no_match(self, resolver, record):
        decision = resolver.resolve([customer_rule("A", 1, [route_is("VNO-CDG")])], record)

        assert decision.matched is False
        assert decision.rule_id is None
        assert decision.outcome is None

    def test_empty_rule_set(self, resolver, record):
        assert resolver.resolve([], record).matched is False

    def test_inactive_rules_ignored(self, resolver, record):
        rules = [
            customer_rule("A", 1, is_active=False),
            customer_rule("B", 2),
        ]

        assert resolver.resolve(rules, record).rule_id == "B"

    def test_duplicate_priorities_break_ties_by_id(self, resolver, record):
        rules = [customer_rule("b", 5), customer_rule("a", 5)]

        assert [rule.rule_id for rule in resolver.ordered(rules)] == ["a", "b"]
        assert resolver.resolve(rules, record).rule_id == "a"

    def test_record_identifier_from_position(self, resolver):
        decision = resolver.resolve([customer_rule("A", 1)], {"route": "RIX-FRA"}, index=4)

        assert decision.record_id == "#4"

    def test_resolve_all_lists_every_match_in_order(self, resolver, record):
        rules = [
            customer_rule("C", 3, [route_is("RIX-FRA")]),
            customer_rule("A", 1),
            customer_rule("B", 2, [route_is("VNO-CDG")]),
            customer_rule("D", 4, is_active=False),
        ]

        assert [rule.rule_id for rule in resolver.resolve_all(rules, record)] == ["A", "C"]
