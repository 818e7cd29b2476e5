"""
PostgreSQL persistence layer for customer and rate rules.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import asyncpg

from shared.errors import RuleNotFoundError, StoreError
from shared.logging import get_logger

from ..rules.models import (
    AssignmentResult, CustomerOutcome, LogicMode, RateOutcome, Rule, RuleCondition,
    RuleCreateRequest, RuleSetKind, RuleUpdateRequest, utcnow
)
from .store import RecordSource, RuleStore

TABLES = {
    RuleSetKind.CUSTOMER: "customer_rules",
    RuleSetKind.RATE: "rate_rules",
}

_RULE_COLUMNS = """
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name VARCHAR(255) NOT NULL,
    description TEXT,
    conditions JSONB NOT NULL DEFAULT '[]',
    logic VARCHAR(3) NOT NULL DEFAULT 'AND',
    priority INTEGER NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    match_count INTEGER NOT NULL DEFAULT 0,
    last_run TIMESTAMP WITH TIME ZONE,
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
"""


async def _init_connection(conn) -> None:
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


class PostgreSQLRuleStore(RuleStore):
    """asyncpg-backed rule store. ``priority`` carries a unique index per table."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10, command_timeout: float = 30):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("rules.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
                init=_init_connection
            )
            await self._create_tables()
            self.logger.info("PostgreSQL rule store started")

        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error("Failed to start PostgreSQL rule store", error=str(e))
            raise StoreError("Failed to start PostgreSQL rule store", {"error": str(e)})

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL rule store stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS customer_rules (
                    {_RULE_COLUMNS},
                    assign_to VARCHAR(255) NOT NULL
                );
            """)
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS rate_rules (
                    {_RULE_COLUMNS},
                    rate_id VARCHAR(255) NOT NULL,
                    rate_name VARCHAR(255),
                    rate_type VARCHAR(20) NOT NULL DEFAULT 'fixed',
                    base_rate NUMERIC(14, 4),
                    multiplier NUMERIC(14, 4) NOT NULL DEFAULT 1,
                    currency VARCHAR(3)
                );
            """)
            for table in TABLES.values():
                await conn.execute(f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_priority ON {table}(priority);
                """)
                await conn.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_active ON {table}(is_active);
                """)

    async def list_rules(self, rule_set: RuleSetKind) -> List[Rule]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT * FROM {TABLES[rule_set]} ORDER BY priority ASC, id ASC
            """)
        return [self._row_to_rule(rule_set, row) for row in rows]

    async def list_active_rules(self, rule_set: RuleSetKind) -> List[Rule]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT * FROM {TABLES[rule_set]}
                WHERE is_active = TRUE AND priority >= 0
                ORDER BY priority ASC, id ASC
            """)
        return [self._row_to_rule(rule_set, row) for row in rows]

    async def get_rule(self, rule_set: RuleSetKind, rule_id: str) -> Rule:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                SELECT * FROM {TABLES[rule_set]} WHERE id = $1
            """, rule_id)
        if not row:
            raise RuleNotFoundError(rule_id, rule_set.value)
        return self._row_to_rule(rule_set, row)

    async def create_rule(self, request: RuleCreateRequest) -> Rule:
        rule_set = request.kind
        table = TABLES[rule_set]
        conditions = [c.model_dump(mode="json") for c in request.conditions]

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    priority = request.priority
                    if priority is None:
                        priority = await conn.fetchval(
                            f"SELECT COALESCE(MAX(priority) FILTER (WHERE priority >= 0), 0) + 1 FROM {table}"
                        )

                    if rule_set == RuleSetKind.RATE:
                        rate = request.rate
                        row = await conn.fetchrow(f"""
                            INSERT INTO {table} (
                                name, description, conditions, logic, priority, is_active,
                                rate_id, rate_name, rate_type, base_rate, multiplier, currency
                            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                            RETURNING *
                        """,
                            request.name, request.description, conditions, request.logic.value,
                            priority, request.is_active, rate.rate_id, rate.name,
                            rate.rate_type.value, rate.base_rate, rate.multiplier, rate.currency
                        )
                    else:
                        row = await conn.fetchrow(f"""
                            INSERT INTO {table} (
                                name, description, conditions, logic, priority, is_active, assign_to
                            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                            RETURNING *
                        """,
                            request.name, request.description, conditions, request.logic.value,
                            priority, request.is_active, request.customer.customer
                        )
        except asyncpg.UniqueViolationError as e:
            raise StoreError("Priority already taken", {"priority": request.priority, "error": str(e)})

        rule = self._row_to_rule(rule_set, row)
        self.logger.info("Rule created", rule_id=rule.rule_id, name=rule.name, priority=rule.priority)
        return rule

    async def update_rule(self, rule_set: RuleSetKind, rule_id: str, request: RuleUpdateRequest) -> Rule:
        updates: Dict[str, Any] = {}
        if request.name is not None:
            updates["name"] = request.name
        if request.description is not None:
            updates["description"] = request.description
        if request.conditions is not None:
            updates["conditions"] = [c.model_dump(mode="json") for c in request.conditions]
        if request.logic is not None:
            updates["logic"] = LogicMode(request.logic).value
        if request.is_active is not None:
            updates["is_active"] = request.is_active
        if request.customer is not None and rule_set == RuleSetKind.CUSTOMER:
            updates["assign_to"] = request.customer.customer
        if request.rate is not None and rule_set == RuleSetKind.RATE:
            updates.update({
                "rate_id": request.rate.rate_id,
                "rate_name": request.rate.name,
                "rate_type": request.rate.rate_type.value,
                "base_rate": request.rate.base_rate,
                "multiplier": request.rate.multiplier,
                "currency": request.rate.currency,
            })

        if not updates:
            return await self.get_rule(rule_set, rule_id)

        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(updates, start=2))
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                UPDATE {TABLES[rule_set]}
                SET {assignments}, updated_at = NOW()
                WHERE id = $1
                RETURNING *
            """, rule_id, *updates.values())

        if not row:
            raise RuleNotFoundError(rule_id, rule_set.value)
        self.logger.info("Rule updated", rule_id=rule_id, fields=list(updates))
        return self._row_to_rule(rule_set, row)

    async def delete_rule(self, rule_set: RuleSetKind, rule_id: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(f"""
                DELETE FROM {TABLES[rule_set]} WHERE id = $1
            """, rule_id)

        if result == "DELETE 1":
            self.logger.info("Rule deleted", rule_id=rule_id)
            return True
        self.logger.warning("Rule not found for deletion", rule_id=rule_id)
        return False

    async def toggle_active(self, rule_set: RuleSetKind, rule_id: str, is_active: bool) -> Rule:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                UPDATE {TABLES[rule_set]}
                SET is_active = $2, updated_at = NOW()
                WHERE id = $1
                RETURNING *
            """, rule_id, is_active)
        if not row:
            raise RuleNotFoundError(rule_id, rule_set.value)
        return self._row_to_rule(rule_set, row)

    async def write_priority(self, rule_set: RuleSetKind, rule_id: str, priority: int) -> None:
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(f"""
                    UPDATE {TABLES[rule_set]}
                    SET priority = $2, updated_at = NOW()
                    WHERE id = $1
                """, rule_id, priority)
        except asyncpg.UniqueViolationError as e:
            raise StoreError(
                "duplicate key value violates unique constraint on priority",
                {"rule_id": rule_id, "priority": priority, "error": str(e)}
            )
        except asyncpg.PostgresError as e:
            raise StoreError("Priority update failed", {"rule_id": rule_id, "error": str(e)})

        if result != "UPDATE 1":
            raise RuleNotFoundError(rule_id, rule_set.value)

    async def increment_match_counts(
        self,
        rule_set: RuleSetKind,
        deltas: Mapping[str, int],
        last_run: Optional[datetime] = None,
    ) -> None:
        stamp = last_run or utcnow()
        async with self.pool.acquire() as conn:
            await conn.executemany(f"""
                UPDATE {TABLES[rule_set]}
                SET match_count = match_count + $2, last_run = $3
                WHERE id = $1
            """, [(rule_id, delta, stamp) for rule_id, delta in deltas.items()])

    async def write_assignment(self, rule_set: RuleSetKind, result: AssignmentResult) -> None:
        async with self.pool.acquire() as conn:
            if rule_set == RuleSetKind.RATE:
                status = await conn.execute("""
                    UPDATE cargo_data
                    SET rate_id = $2, rate_value = $3, rate_currency = $4, assigned_at = $5
                    WHERE id = $1
                """, result.record_id, result.rate_id, result.amount, result.currency, result.assigned_at)
            else:
                status = await conn.execute("""
                    UPDATE cargo_data
                    SET assigned_customer = $2, assigned_at = $3
                    WHERE id = $1
                """, result.record_id, result.customer, result.assigned_at)

        if status != "UPDATE 1":
            raise StoreError(
                "Assignment did not update exactly one cargo record",
                {"record_id": result.record_id, "status": status}
            )

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except (OSError, asyncpg.PostgresError):
            return False

    def _row_to_rule(self, rule_set: RuleSetKind, row) -> Rule:
        """Convert database row to Rule object."""
        conditions = [
            RuleCondition(
                field=c["field"],
                operator=c["operator"],
                value=c.get("value", ""),
                value2=c.get("value2"),
            )
            for c in row["conditions"]
        ]

        if rule_set == RuleSetKind.RATE:
            outcome = RateOutcome(
                rate_id=row["rate_id"],
                base_rate=row["base_rate"],
                rate_type=row["rate_type"],
                multiplier=row["multiplier"] if row["multiplier"] is not None else Decimal("1"),
                currency=row["currency"],
                name=row["rate_name"],
            )
        else:
            outcome = CustomerOutcome(customer=row["assign_to"])

        return Rule(
            rule_id=str(row["id"]),
            name=row["name"],
            description=row["description"],
            outcome=outcome,
            priority=row["priority"],
            is_active=row["is_active"],
            conditions=conditions,
            logic=row["logic"],
            match_count=row["match_count"],
            last_run=row["last_run"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class PostgreSQLRecordSource(RecordSource):
    """Pages through the ``cargo_data`` table."""

    def __init__(self, store: PostgreSQLRuleStore):
        self.store = store

    async def fetch_records(self, page_size: int = 1000) -> AsyncIterator[List[Dict[str, Any]]]:
        offset = 0
        while True:
            async with self.store.pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM cargo_data ORDER BY id LIMIT $1 OFFSET $2
                """, page_size, offset)
            if not rows:
                return
            yield [dict(row) for row in rows]
            if len(rows) < page_size:
                return
            offset += page_size
