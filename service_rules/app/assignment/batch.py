"""
Batch assignment: runs a rule set over cargo records and persists the result.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from shared.logging import get_logger, set_batch_context
from shared.metrics import MetricsCollector, get_metrics_collector

from ..persistence.store import RecordSource, RuleStore
from ..rules.fields import Record, record_identifier
from ..rules.models import (
    AssignmentResult, AssignmentStatus, BatchResult, MatchDecision, Rule,
    RuleRunSummary, RuleSetKind, utcnow
)
from ..rules.resolver import PriorityResolver
from .executor import AssignmentExecutor

ProgressCallback = Callable[[int, int], None]

_ASSIGNED_MARKERS = {
    RuleSetKind.CUSTOMER: ("assigned_customer",),
    RuleSetKind.RATE: ("rate_id", "assigned_rate"),
}


def already_assigned(rule_set: RuleSetKind, record: Record) -> bool:
    """Whether a record already carries an outcome for this rule set."""
    return any(record.get(key) not in (None, "") for key in _ASSIGNED_MARKERS[rule_set])


class AssignmentBatch:
    """Resolves, assigns and persists one batch of records."""

    def __init__(
        self,
        resolver: Optional[PriorityResolver] = None,
        executor: Optional[AssignmentExecutor] = None,
        store: Optional[RuleStore] = None,
        record_source: Optional[RecordSource] = None,
        write_batch_size: int = 50,
        record_page_size: int = 1000,
        progress_interval: int = 100,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.logger = get_logger("rules.assignment.batch")
        self.resolver = resolver or PriorityResolver()
        self.executor = executor or AssignmentExecutor()
        self.store = store
        self.record_source = record_source
        self.write_batch_size = max(1, write_batch_size)
        self.record_page_size = record_page_size
        self.progress_interval = max(1, progress_interval)
        self.metrics = metrics or get_metrics_collector()

    def run(
        self,
        rule_set: RuleSetKind,
        records: Sequence[Record],
        rules: Iterable[Rule],
        progress: Optional[ProgressCallback] = None,
        skip_assigned: bool = False,
    ) -> BatchResult:
        """Match and assign in memory; no store writes."""
        start_time = time.time()
        batch_id = set_batch_context(rule_set=rule_set.value)
        ordered = self.resolver.ordered(rules)
        total = len(records)

        self.logger.info(
            "Running rule set",
            rules=[(rule.name, rule.priority) for rule in ordered],
            records=total
        )

        # One slot per input record; decided records are filled in after apply.
        slots: List[Optional[AssignmentResult]] = []
        decided: List[Tuple[MatchDecision, Record]] = []
        decided_slots: List[int] = []
        seen: Set[str] = set()

        for index, record in enumerate(records):
            record_id = record_identifier(record, index)
            if skip_assigned and already_assigned(rule_set, record):
                slots.append(AssignmentResult(
                    record_id=record_id,
                    status=AssignmentStatus.SKIPPED,
                    reason="already assigned",
                ))
            elif record_id in seen:
                # Assignments are written by identifier; a repeat would overwrite the first.
                self.logger.warning("Duplicate record identifier", record_id=record_id, index=index)
                slots.append(AssignmentResult(
                    record_id=record_id,
                    status=AssignmentStatus.FAILED,
                    reason=f"duplicate record identifier {record_id!r}",
                ))
            else:
                seen.add(record_id)
                decided_slots.append(len(slots))
                slots.append(None)
                decided.append((self.resolver.resolve_ordered(ordered, record, index), record))

            processed = index + 1
            if progress is not None and (processed % self.progress_interval == 0 or processed == total):
                progress(processed, total)

        outcome = self.executor.apply(decided)
        for slot, item in zip(decided_slots, outcome.results):
            slots[slot] = item

        summaries = [
            RuleRunSummary(
                rule_id=rule.rule_id,
                rule_name=rule.name,
                priority=rule.priority,
                matches=outcome.match_count_deltas.get(rule.rule_id, 0),
            )
            for rule in ordered
        ]

        result = BatchResult(
            batch_id=batch_id,
            rule_set=rule_set,
            results=slots,
            rule_summaries=summaries,
            match_count_deltas=outcome.match_count_deltas,
            updated_records=outcome.updated_records,
            duration_ms=(time.time() - start_time) * 1000,
        )
        self._record_metrics(result)

        self.logger.info(
            "Rule set run complete",
            processed=result.total_processed,
            assigned=result.total_assigned,
            unmatched=len(result.unmatched),
            failed=len(result.failed),
            skipped=len(result.skipped),
            duration_ms=result.duration_ms
        )
        return result

    async def execute(
        self,
        rule_set: RuleSetKind,
        records: Optional[Sequence[Record]] = None,
        *,
        dry_run: bool = False,
        rule_ids: Optional[Sequence[str]] = None,
        progress: Optional[ProgressCallback] = None,
        skip_assigned: bool = False,
    ) -> BatchResult:
        """Load active rules, run the batch and, unless ``dry_run``, persist it."""
        if self.store is None:
            raise RuntimeError("AssignmentBatch.execute requires a rule store")

        rules = await self.store.list_active_rules(rule_set)
        if rule_ids:
            wanted = set(rule_ids)
            rules = [rule for rule in rules if rule.rule_id in wanted]

        if records is None:
            records = await self._fetch_records()

        result = self.run(rule_set, records, rules, progress=progress, skip_assigned=skip_assigned)
        result.dry_run = dry_run

        if dry_run or not result.assigned:
            return result

        await self._write_assignments(rule_set, result)
        await self._write_match_counts(rule_set, result)
        return result

    async def _fetch_records(self) -> List[Dict[str, Any]]:
        if self.record_source is None:
            raise RuntimeError("No records given and no record source configured")
        return [
            record
            async for page in self.record_source.fetch_records(self.record_page_size)
            for record in page
        ]

    async def _write_assignments(self, rule_set: RuleSetKind, result: BatchResult) -> None:
        assigned = result.assigned
        self.logger.info("Writing assignments", count=len(assigned))

        for start in range(0, len(assigned), self.write_batch_size):
            chunk = assigned[start:start + self.write_batch_size]
            outcomes = await asyncio.gather(
                *(self.store.write_assignment(rule_set, item) for item in chunk),
                return_exceptions=True
            )

            for item, outcome in zip(chunk, outcomes):
                if not isinstance(outcome, Exception):
                    continue
                self.logger.error(
                    "Assignment write failed",
                    record_id=item.record_id,
                    rule_id=item.rule_id,
                    error=str(outcome)
                )
                result.match_count_deltas[item.rule_id] -= 1
                if result.match_count_deltas[item.rule_id] == 0:
                    del result.match_count_deltas[item.rule_id]
                result.updated_records.pop(item.record_id, None)
                item.status = AssignmentStatus.FAILED
                item.reason = f"write failed: {outcome}"

        for summary in result.rule_summaries:
            summary.matches = result.match_count_deltas.get(summary.rule_id, 0)

    async def _write_match_counts(self, rule_set: RuleSetKind, result: BatchResult) -> None:
        if not result.match_count_deltas:
            return
        try:
            await self.store.increment_match_counts(rule_set, result.match_count_deltas, last_run=utcnow())
        except Exception as e:
            # Match counts are telemetry; the assignments already stand.
            self.logger.warning("Failed to update rule match counts", error=str(e))
            self.metrics.record_error("match_count_write")

    def _record_metrics(self, result: BatchResult) -> None:
        rule_set = result.rule_set.value
        self.metrics.increment_counter("records_evaluated_total", result.total_processed, rule_set=rule_set)
        for status in AssignmentStatus:
            count = sum(1 for r in result.results if r.status == status)
            if count:
                self.metrics.increment_counter(
                    "assignment_decisions_total", count, rule_set=rule_set, status=status.value
                )
        self.metrics.get_metric("batch_duration_seconds").labels(rule_set=rule_set).observe(
            result.duration_ms / 1000
        )
