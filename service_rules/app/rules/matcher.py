"""
Rule matching: combines a rule's conditions under its logic mode.
"""

import threading
from typing import Any, Dict, Optional, Set, Tuple

from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector

from .conditions import UNPARSABLE_RECORD_VALUE, evaluate
from .fields import Record, read_field
from .models import LogicMode, Rule, RuleCondition


class RuleMatcher:
    """Decides whether a single rule matches a single record."""

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self.logger = get_logger("rules.matcher")
        self.metrics = metrics or get_metrics_collector()
        self._reported: Set[Tuple[str, int, str]] = set()
        self._lock = threading.Lock()

    def matches(self, rule: Rule, record: Record) -> bool:
        """Check a rule against a record. A rule without conditions matches everything."""
        if not rule.conditions:
            return True

        if rule.logic == LogicMode.OR:
            return any(
                self._check(rule, index, condition, record)
                for index, condition in enumerate(rule.conditions)
            )

        return all(
            self._check(rule, index, condition, record)
            for index, condition in enumerate(rule.conditions)
        )

    def reset_issue_log(self) -> None:
        """Forget which malformed conditions were already reported."""
        with self._lock:
            self._reported.clear()

    def _check(self, rule: Rule, index: int, condition: RuleCondition, record: Record) -> bool:
        def on_issue(kind: str, details: Dict[str, Any]) -> None:
            self._report_issue(rule, index, condition, kind, details)

        return evaluate(
            condition.value,
            condition.operator,
            read_field(record, condition.field),
            value2=condition.value2,
            on_issue=on_issue,
        )

    def _report_issue(
        self,
        rule: Rule,
        index: int,
        condition: RuleCondition,
        kind: str,
        details: Dict[str, Any],
    ) -> None:
        self.metrics.increment_counter("data_quality_issues_total", kind=kind)

        # Bad record values are per-record noise; bad conditions are reported once per rule.
        if kind == UNPARSABLE_RECORD_VALUE:
            self.logger.debug(
                "Non-numeric record value for numeric condition",
                rule_id=rule.rule_id,
                field=condition.field.value,
                **details
            )
            return

        key = (rule.rule_id, index, kind)
        with self._lock:
            if key in self._reported:
                return
            self._reported.add(key)

        self.logger.warning(
            "Malformed rule condition treated as non-match",
            rule_id=rule.rule_id,
            rule_name=rule.name,
            condition_index=index,
            field=condition.field.value,
            issue=kind,
            **details
        )
