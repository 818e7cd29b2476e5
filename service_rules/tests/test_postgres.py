"""
Unit tests for the PostgreSQL rule store.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import RuleNotFoundError, StoreError
from service_rules.app.persistence.postgres import PostgreSQLRecordSource, PostgreSQLRuleStore
from service_rules.app.rules.fields import CargoField
from service_rules.app.rules.models import (
    AssignmentResult, AssignmentStatus, ConditionOperator, LogicMode, RateOutcome, RateType,
    RuleCreateRequest, RuleSetKind
)


def rule_row(**overrides):
    now = datetime(2024, 3, 1, tzinfo=timezone.utc)
    row = {
        "id": "5f1c8a52-8f3e-4b0c-9a55-0a4c9d1e7b10",
        "name": "EMS per kg",
        "description": None,
        "conditions": [
            {"field": "mail_category", "operator": "equals", "value": "E", "value2": None},
        ],
        "logic": "OR",
        "priority": 3,
        "is_active": True,
        "match_count": 12,
        "last_run": None,
        "created_at": now,
        "updated_at": now,
        "rate_id": "rate-ems",
        "rate_name": "EMS",
        "rate_type": "per_kg",
        "base_rate": Decimal("2.3500"),
        "multiplier": Decimal("1.0000"),
        "currency": "EUR",
    }
    row.update(overrides)
    return row


class TestPostgreSQLRuleStore:
    """Test cases for PostgreSQLRuleStore."""

    @pytest.fixture
    def conn(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, conn):
        store = PostgreSQLRuleStore("postgres://localhost/test")
        store.pool = MagicMock()
        store.pool.acquire.return_value.__aenter__.return_value = conn
        return store

    def test_row_to_rate_rule(self, store):
        rule = store._row_to_rule(RuleSetKind.RATE, rule_row())

        assert rule.kind == RuleSetKind.RATE
        assert rule.logic == LogicMode.OR
        assert rule.conditions[0].field == CargoField.MAIL_CAT
        assert rule.conditions[0].operator == ConditionOperator.EQUALS
        assert isinstance(rule.outcome, RateOutcome)
        assert rule.outcome.rate_type == RateType.PER_KG
        assert rule.outcome.base_rate == Decimal("2.35")

    def test_row_to_customer_rule(self, store):
        rule = store._row_to_rule(RuleSetKind.CUSTOMER, rule_row(assign_to="LATVIJAS PASTS"))

        assert rule.outcome.customer == "LATVIJAS PASTS"

    @pytest.mark.asyncio
    async def test_list_active_rules_excludes_staged(self, store, conn):
        conn.fetch.return_value = [rule_row()]

        rules = await store.list_active_rules(RuleSetKind.RATE)

        query = conn.fetch.call_args[0][0]
        assert "rate_rules" in query
        assert "priority >= 0" in query
        assert len(rules) == 1

    @pytest.mark.asyncio
    async def test_write_priority(self, store, conn):
        conn.execute.return_value = "UPDATE 1"

        await store.write_priority(RuleSetKind.CUSTOMER, "rule-1", -1000)

        args = conn.execute.call_args[0]
        assert "customer_rules" in args[0]
        assert args[1:] == ("rule-1", -1000)

    @pytest.mark.asyncio
    async def test_write_priority_unique_violation(self, store, conn):
        conn.execute.side_effect = asyncpg.UniqueViolationError("duplicate key value")

        with pytest.raises(StoreError) as exc_info:
            await store.write_priority(RuleSetKind.CUSTOMER, "rule-1", 1)

        assert exc_info.value.details["priority"] == 1

    @pytest.mark.asyncio
    async def test_write_priority_missing_rule(self, store, conn):
        conn.execute.return_value = "UPDATE 0"

        with pytest.raises(RuleNotFoundError):
            await store.write_priority(RuleSetKind.CUSTOMER, "rule-1", 1)

    @pytest.mark.asyncio
    async def test_increment_match_counts(self, store, conn):
        await store.increment_match_counts(RuleSetKind.RATE, {"a": 2, "b": 1})

        args = conn.executemany.call_args[0]
        assert [(rule_id, delta) for rule_id, delta, _ in args[1]] == [("a", 2), ("b", 1)]

    @pytest.mark.asyncio
    async def test_write_assignment(self, store, conn):
        conn.execute.return_value = "UPDATE 1"
        result = AssignmentResult(
            record_id="42", status=AssignmentStatus.ASSIGNED, rule_id="rule-1", customer="cust-001"
        )

        await store.write_assignment(RuleSetKind.CUSTOMER, result)

        args = conn.execute.call_args[0]
        assert "cargo_data" in args[0]
        assert args[1:3] == ("42", "cust-001")

    @pytest.mark.asyncio
    async def test_write_assignment_without_matching_record(self, store, conn):
        conn.execute.return_value = "UPDATE 0"
        result = AssignmentResult(
            record_id="#3", status=AssignmentStatus.ASSIGNED, rule_id="rule-1", rate_id="rate-ems"
        )

        with pytest.raises(StoreError) as exc_info:
            await store.write_assignment(RuleSetKind.RATE, result)

        assert exc_info.value.details == {"record_id": "#3", "status": "UPDATE 0"}

    @pytest.mark.asyncio
    async def test_create_rule_appends_after_live_priorities(self, store, conn):
        conn.transaction = MagicMock()
        conn.fetchval.return_value = 1
        conn.fetchrow.return_value = rule_row(priority=1, assign_to="Y")

        rule = await store.create_rule(RuleCreateRequest(name="New", customer={"customer": "Y"}))

        query = conn.fetchval.call_args[0][0]
        assert "FILTER (WHERE priority >= 0)" in query
        assert conn.fetchrow.call_args[0][5] == 1
        assert rule.priority == 1

    @pytest.mark.asyncio
    async def test_get_rule_not_found(self, store, conn):
        conn.fetchrow.return_value = None

        with pytest.raises(RuleNotFoundError):
            await store.get_rule(RuleSetKind.RATE, "rule-1")


class TestPostgreSQLRecordSource:
    """Test cases for PostgreSQLRecordSource."""

    @pytest.mark.asyncio
    async def test_pages_until_short_page(self):
        conn = AsyncMock()
        conn.fetch.side_effect = [
            [{"id": 1}, {"id": 2}],
            [{"id": 3}],
        ]
        store = PostgreSQLRuleStore("postgres://localhost/test")
        store.pool = MagicMock()
        store.pool.acquire.return_value.__aenter__.return_value = conn

        pages = [page async for page in PostgreSQLRecordSource(store).fetch_records(page_size=2)]

        assert pages == [[{"id": 1}, {"id": 2}], [{"id": 3}]]
        assert conn.fetch.call_count == 2
