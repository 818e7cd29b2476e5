"""
Rule store and record source interfaces, plus an in-memory rule store.

The in-memory store enforces the same unique constraint on ``priority``
per rule set that the database does, so reorder behaviour can be
exercised without PostgreSQL.
"""

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from shared.errors import RuleNotFoundError, StoreError
from shared.logging import get_logger

from ..rules.models import (
    AssignmentResult, RateOutcome, Rule, RuleCreateRequest, RuleSetKind, RuleUpdateRequest,
    LogicMode, utcnow
)


class RuleStore(ABC):
    """Persistence collaborator for rule sets and assignments."""

    @abstractmethod
    async def list_rules(self, rule_set: RuleSetKind) -> List[Rule]:
        """All rules of a rule set, ordered by priority."""

    @abstractmethod
    async def list_active_rules(self, rule_set: RuleSetKind) -> List[Rule]:
        """Active rules holding a live (non-negative) priority."""

    @abstractmethod
    async def get_rule(self, rule_set: RuleSetKind, rule_id: str) -> Rule:
        """Fetch one rule; raises ``RuleNotFoundError``."""

    @abstractmethod
    async def create_rule(self, request: RuleCreateRequest) -> Rule:
        """Create a rule, appending it after the last live priority if none given."""

    @abstractmethod
    async def update_rule(self, rule_set: RuleSetKind, rule_id: str, request: RuleUpdateRequest) -> Rule:
        """Update rule fields in place (priority excluded)."""

    @abstractmethod
    async def delete_rule(self, rule_set: RuleSetKind, rule_id: str) -> bool:
        """Delete a rule; priorities of the others are left as they are."""

    @abstractmethod
    async def toggle_active(self, rule_set: RuleSetKind, rule_id: str, is_active: bool) -> Rule:
        """Activate or deactivate a rule."""

    @abstractmethod
    async def write_priority(self, rule_set: RuleSetKind, rule_id: str, priority: int) -> None:
        """Set one rule's priority; raises ``StoreError`` on a unique-constraint collision."""

    async def write_priorities(self, rule_set: RuleSetKind, priorities: Mapping[str, int]) -> None:
        """Set several priorities sequentially."""
        for rule_id, priority in priorities.items():
            await self.write_priority(rule_set, rule_id, priority)

    @abstractmethod
    async def increment_match_counts(
        self,
        rule_set: RuleSetKind,
        deltas: Mapping[str, int],
        last_run: Optional[datetime] = None,
    ) -> None:
        """Add match-count deltas and stamp ``last_run``."""

    @abstractmethod
    async def write_assignment(self, rule_set: RuleSetKind, result: AssignmentResult) -> None:
        """Persist one record's assigned customer or rate."""


class RecordSource(ABC):
    """Supplies cargo records in pages."""

    @abstractmethod
    def fetch_records(self, page_size: int = 1000) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield pages of records until the source is exhausted."""


class InMemoryRecordSource(RecordSource):
    """Record source over a list held in memory."""

    def __init__(self, records: Sequence[Dict[str, Any]]):
        self.records = list(records)

    async def fetch_records(self, page_size: int = 1000) -> AsyncIterator[List[Dict[str, Any]]]:
        for start in range(0, len(self.records), page_size):
            yield self.records[start:start + page_size]


class InMemoryRuleStore(RuleStore):
    """Dict-backed rule store with a unique priority constraint per rule set."""

    def __init__(self, rules: Optional[Sequence[Rule]] = None):
        self.logger = get_logger("rules.persistence.memory")
        self._rules: Dict[RuleSetKind, Dict[str, Rule]] = {kind: {} for kind in RuleSetKind}
        self.assignments: Dict[str, AssignmentResult] = {}
        self._lock = asyncio.Lock()
        for rule in rules or []:
            self._check_unique(rule.kind, rule.rule_id, rule.priority)
            self._rules[rule.kind][rule.rule_id] = copy.deepcopy(rule)

    def priorities(self, rule_set: RuleSetKind) -> Dict[str, int]:
        """Current priority of every rule in a set."""
        return {rule_id: rule.priority for rule_id, rule in self._rules[rule_set].items()}

    async def list_rules(self, rule_set: RuleSetKind) -> List[Rule]:
        rules = sorted(self._rules[rule_set].values(), key=lambda r: (r.priority, r.rule_id))
        return [copy.deepcopy(rule) for rule in rules]

    async def list_active_rules(self, rule_set: RuleSetKind) -> List[Rule]:
        return [
            rule for rule in await self.list_rules(rule_set)
            if rule.is_active and rule.priority >= 0
        ]

    async def get_rule(self, rule_set: RuleSetKind, rule_id: str) -> Rule:
        return copy.deepcopy(self._get(rule_set, rule_id))

    async def create_rule(self, request: RuleCreateRequest) -> Rule:
        rule_set = request.kind
        async with self._lock:
            priority = request.priority
            if priority is None:
                # Staged (negative) rules are outside the live range.
                live = (r.priority for r in self._rules[rule_set].values() if r.priority >= 0)
                priority = max(live, default=0) + 1
            rule_id = str(uuid.uuid4())
            self._check_unique(rule_set, rule_id, priority)

            rule = Rule(
                rule_id=rule_id,
                name=request.name,
                description=request.description,
                outcome=request.to_outcome(),
                priority=priority,
                is_active=request.is_active,
                conditions=[c.to_condition() for c in request.conditions],
                logic=request.logic,
            )
            self._rules[rule_set][rule_id] = rule

        self.logger.info("Rule created", rule_id=rule_id, name=rule.name, priority=priority)
        return copy.deepcopy(rule)

    async def update_rule(self, rule_set: RuleSetKind, rule_id: str, request: RuleUpdateRequest) -> Rule:
        async with self._lock:
            rule = self._get(rule_set, rule_id)
            if request.name is not None:
                rule.name = request.name
            if request.description is not None:
                rule.description = request.description
            if request.conditions is not None:
                rule.conditions = [c.to_condition() for c in request.conditions]
            if request.logic is not None:
                rule.logic = LogicMode(request.logic)
            if request.is_active is not None:
                rule.is_active = request.is_active
            if request.customer is not None and rule_set == RuleSetKind.CUSTOMER:
                rule.outcome.customer = request.customer.customer
            if request.rate is not None and rule_set == RuleSetKind.RATE:
                rule.outcome = RateOutcome(**request.rate.model_dump())
            rule.updated_at = utcnow()

        self.logger.info("Rule updated", rule_id=rule_id, name=rule.name)
        return copy.deepcopy(rule)

    async def delete_rule(self, rule_set: RuleSetKind, rule_id: str) -> bool:
        async with self._lock:
            if self._rules[rule_set].pop(rule_id, None) is None:
                self.logger.warning("Rule not found for deletion", rule_id=rule_id)
                return False
        self.logger.info("Rule deleted", rule_id=rule_id)
        return True

    async def toggle_active(self, rule_set: RuleSetKind, rule_id: str, is_active: bool) -> Rule:
        async with self._lock:
            rule = self._get(rule_set, rule_id)
            rule.is_active = is_active
            rule.updated_at = utcnow()
        return copy.deepcopy(rule)

    async def write_priority(self, rule_set: RuleSetKind, rule_id: str, priority: int) -> None:
        async with self._lock:
            rule = self._get(rule_set, rule_id)
            self._check_unique(rule_set, rule_id, priority)
            rule.priority = priority
            rule.updated_at = utcnow()

    async def increment_match_counts(
        self,
        rule_set: RuleSetKind,
        deltas: Mapping[str, int],
        last_run: Optional[datetime] = None,
    ) -> None:
        async with self._lock:
            for rule_id, delta in deltas.items():
                rule = self._rules[rule_set].get(rule_id)
                if rule is None:
                    self.logger.warning("Match count for unknown rule", rule_id=rule_id)
                    continue
                rule.match_count += delta
                rule.last_run = last_run or utcnow()

    async def write_assignment(self, rule_set: RuleSetKind, result: AssignmentResult) -> None:
        self.assignments[result.record_id] = result

    def _get(self, rule_set: RuleSetKind, rule_id: str) -> Rule:
        rule = self._rules[rule_set].get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id, rule_set.value)
        return rule

    def _check_unique(self, rule_set: RuleSetKind, rule_id: str, priority: int) -> None:
        for other in self._rules[rule_set].values():
            if other.rule_id != rule_id and other.priority == priority:
                raise StoreError(
                    "duplicate key value violates unique constraint on priority",
                    {"rule_id": rule_id, "priority": priority, "conflicts_with": other.rule_id}
                )
