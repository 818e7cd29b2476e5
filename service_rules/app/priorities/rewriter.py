"""
Two-phase priority rewriting for drag-and-drop reordering.

The rule store keeps ``priority`` unique per rule set, so writing a new
order row by row can collide with a value another rule still holds
(swapping 1 and 2 writes A=2 while B is still 2). The rewrite therefore
runs in two phases:

1. Stage: every rule in the batch moves to ``-(index + offset)``. These
   values are negative, distinct per rule and outside the live range.
2. Commit: every rule moves to its final priority.

Writes inside a phase run concurrently. Phase 2 starts only after every
Phase 1 write succeeded. Running the same reorder again is safe and
converges to the same priorities.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from shared.errors import PriorityCommitFailure, PriorityStageFailure, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector

from ..persistence.store import RuleStore
from ..rules.models import PriorityUpdate, ReorderResult, RuleSetKind

DEFAULT_STAGE_OFFSET = 1000


@dataclass(frozen=True)
class PriorityPlan:
    """Staged and final priority per rule ID."""
    staged: Dict[str, int]
    final: Dict[str, int]


class TwoPhasePriorityRewriter:
    """Persists a new rule order without violating the unique priority constraint."""

    def __init__(
        self,
        store: RuleStore,
        stage_offset: int = DEFAULT_STAGE_OFFSET,
        start: int = 1,
        metrics: Optional[MetricsCollector] = None,
    ):
        if stage_offset < 1:
            raise ValueError("stage_offset must be positive")
        self.store = store
        self.stage_offset = stage_offset
        self.start = start
        self.logger = get_logger("rules.priorities.rewriter")
        self.metrics = metrics or get_metrics_collector()

    def plan(self, ordered_rule_ids: Sequence[str]) -> PriorityPlan:
        """Position 0 gets priority ``start``, position 1 ``start + 1``, and so on."""
        self._validate_ids(ordered_rule_ids)
        return PriorityPlan(
            staged={rule_id: self.staged_value(index) for index, rule_id in enumerate(ordered_rule_ids)},
            final={rule_id: index + self.start for index, rule_id in enumerate(ordered_rule_ids)},
        )

    def staged_value(self, index: int) -> int:
        return -(index + self.stage_offset)

    async def reorder(self, rule_set: RuleSetKind, ordered_rule_ids: Sequence[str]) -> ReorderResult:
        """Apply a new total order given as rule IDs, highest precedence first."""
        return await self.apply_plan(rule_set, self.plan(ordered_rule_ids))

    async def reorder_positions(self, rule_set: RuleSetKind, updates: Sequence[PriorityUpdate]) -> ReorderResult:
        """Apply explicit ``{id, priority}`` pairs as sent by the rule list UI."""
        self._validate_ids([update.id for update in updates])

        final = {update.id: update.priority for update in updates}
        if len(set(final.values())) != len(final):
            raise ValidationError("Final priorities must be unique", {"priorities": final})
        if any(priority < 0 for priority in final.values()):
            raise ValidationError("Negative priorities are reserved for staging", {"priorities": final})

        plan = PriorityPlan(
            staged={update.id: self.staged_value(index) for index, update in enumerate(updates)},
            final=final,
        )
        return await self.apply_plan(rule_set, plan)

    async def apply_plan(self, rule_set: RuleSetKind, plan: PriorityPlan) -> ReorderResult:
        """Run both phases; raises ``PriorityStageFailure`` or ``PriorityCommitFailure``."""
        start_time = time.time()
        self.logger.info("Reordering rules", rule_set=rule_set.value, rules=len(plan.final))

        with self.metrics.time_operation("reorder_phase_duration_seconds", rule_set=rule_set.value, phase="stage"):
            stage_failures = await self._write_phase(rule_set, plan.staged)

        if stage_failures:
            staged = [rule_id for rule_id in plan.staged if rule_id not in stage_failures]
            self.logger.error(
                "Priority staging failed; reorder aborted before commit",
                rule_set=rule_set.value,
                failed=stage_failures,
                staged=staged
            )
            self.metrics.increment_counter("reorders_total", rule_set=rule_set.value, result="stage_failed")
            raise PriorityStageFailure(stage_failures, staged)

        with self.metrics.time_operation("reorder_phase_duration_seconds", rule_set=rule_set.value, phase="commit"):
            commit_failures = await self._write_phase(rule_set, plan.final)

        if commit_failures:
            committed = [rule_id for rule_id in plan.final if rule_id not in commit_failures]
            self.logger.critical(
                "Priority commit partially failed; rules left staged",
                rule_set=rule_set.value,
                failed=commit_failures,
                committed=committed
            )
            self.metrics.increment_counter("reorders_total", rule_set=rule_set.value, result="commit_failed")
            raise PriorityCommitFailure(commit_failures, committed)

        duration_ms = (time.time() - start_time) * 1000
        self.metrics.increment_counter("reorders_total", rule_set=rule_set.value, result="success")
        self.logger.info(
            "Rules reordered",
            rule_set=rule_set.value,
            rules=len(plan.final),
            duration_ms=duration_ms
        )

        return ReorderResult(
            rule_set=rule_set,
            priorities=dict(plan.final),
            staged=dict(plan.staged),
            duration_ms=duration_ms,
        )

    async def _write_phase(self, rule_set: RuleSetKind, values: Dict[str, int]) -> Dict[str, str]:
        """Issue all writes of one phase concurrently; return failures by rule ID."""
        rule_ids: List[str] = list(values)
        results = await asyncio.gather(
            *(self.store.write_priority(rule_set, rule_id, values[rule_id]) for rule_id in rule_ids),
            return_exceptions=True
        )

        failures: Dict[str, str] = {}
        for rule_id, result in zip(rule_ids, results):
            if isinstance(result, Exception):
                failures[rule_id] = str(result)
            elif isinstance(result, BaseException):
                raise result
        return failures

    def _validate_ids(self, rule_ids: Sequence[str]) -> None:
        if not rule_ids:
            raise ValidationError("Reorder requires at least one rule ID")
        if len(set(rule_ids)) != len(rule_ids):
            raise ValidationError("Reorder contains duplicate rule IDs", {"rule_ids": list(rule_ids)})
