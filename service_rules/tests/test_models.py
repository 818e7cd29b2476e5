"""
Unit tests for rule request models.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_rules.app.rules.fields import CargoField
from service_rules.app.rules.models import (
    ConditionModel, ConditionOperator, LogicMode, PriorityReorderRequest, PriorityUpdate,
    RateOutcome, RateType, RuleCondition, RuleCreateRequest, RuleSetKind
)


class TestConditionModel:
    """Test cases for ConditionModel."""

    def test_alias_normalised(self):
        condition = ConditionModel(field="total_kg", operator="greater_than", value=50)

        assert condition.field == "weight"
        assert condition.value == "50"
        assert condition.to_condition().field == CargoField.WEIGHT

    def test_unknown_field_rejected(self):
        with pytest.raises(PydanticValidationError):
            ConditionModel(field="colour", operator="equals", value="red")

    def test_unknown_operator_rejected(self):
        with pytest.raises(PydanticValidationError):
            ConditionModel(field="route", operator="regex", value="RIX.*")

    def test_between_requires_upper_bound(self):
        with pytest.raises(PydanticValidationError):
            ConditionModel(field="weight", operator="between", value="10")

    def test_between_with_bounds(self):
        condition = ConditionModel(field="weight", operator="between", value="10", value2=20)

        assert condition.to_condition().value2 == "20"


class TestRuleCreateRequest:
    """Test cases for RuleCreateRequest."""

    def test_customer_rule(self):
        request = RuleCreateRequest(
            name="Latvian post",
            conditions=[{"field": "route", "operator": "starts_with", "value": "RIX"}],
            customer={"customer": "LATVIJAS PASTS"},
        )

        assert request.kind == RuleSetKind.CUSTOMER
        assert request.logic == LogicMode.AND
        assert request.to_outcome().customer == "LATVIJAS PASTS"

    def test_rate_rule(self):
        request = RuleCreateRequest(
            name="EMS per kg",
            logic="OR",
            rate={"rate_id": "rate-ems", "base_rate": "2.35", "rate_type": "per_kg"},
        )

        outcome = request.to_outcome()
        assert request.kind == RuleSetKind.RATE
        assert isinstance(outcome, RateOutcome)
        assert outcome.base_rate == Decimal("2.35")
        assert outcome.rate_type == RateType.PER_KG

    def test_requires_exactly_one_outcome(self):
        with pytest.raises(PydanticValidationError):
            RuleCreateRequest(name="Nothing")

        with pytest.raises(PydanticValidationError):
            RuleCreateRequest(
                name="Both",
                customer={"customer": "X"},
                rate={"rate_id": "r", "base_rate": "1"},
            )

    def test_negative_priority_rejected(self):
        with pytest.raises(PydanticValidationError):
            RuleCreateRequest(name="Staged", priority=-1, customer={"customer": "X"})


class TestPriorityRequests:
    """Test cases for priority payloads."""

    def test_reorder_requires_ids(self):
        with pytest.raises(PydanticValidationError):
            PriorityReorderRequest(rule_ids=[])

    def test_reorder_rejects_duplicates(self):
        with pytest.raises(PydanticValidationError):
            PriorityReorderRequest(rule_ids=["A", "B", "A"])

    def test_priority_update_non_negative(self):
        with pytest.raises(PydanticValidationError):
            PriorityUpdate(id="A", priority=-5)


class TestRuleCondition:
    """Test cases for the RuleCondition dataclass."""

    def test_coerces_stored_values(self):
        condition = RuleCondition(field="mail_category", operator="EQUALS", value=7)

        assert condition.field == CargoField.MAIL_CAT
        assert condition.operator == ConditionOperator.EQUALS
        assert condition.value == "7"
