"""
Priority resolution: first matching active rule wins.
"""

from typing import Iterable, List, Optional, Sequence

from shared.logging import get_logger

from .fields import Record, record_identifier
from .matcher import RuleMatcher
from .models import MatchDecision, Rule


def precedence_key(rule: Rule):
    """Lower priority first; rule ID breaks ties deterministically."""
    return (rule.priority, str(rule.rule_id))


class PriorityResolver:
    """Orders a rule set by priority and picks the winning rule per record."""

    def __init__(self, matcher: Optional[RuleMatcher] = None):
        self.logger = get_logger("rules.resolver")
        self.matcher = matcher or RuleMatcher()

    def ordered(self, rules: Iterable[Rule]) -> List[Rule]:
        """Active rules in evaluation order."""
        active = [rule for rule in rules if rule.is_active]
        active.sort(key=precedence_key)

        priorities = [rule.priority for rule in active]
        if len(set(priorities)) != len(priorities):
            self.logger.warning(
                "Duplicate rule priorities; falling back to rule ID order",
                priorities=priorities
            )

        return active

    def resolve(self, rules: Iterable[Rule], record: Record, index: int = 0) -> MatchDecision:
        """Decision for one record against an unsorted rule set."""
        return self.resolve_ordered(self.ordered(rules), record, index)

    def resolve_ordered(self, ordered_rules: Sequence[Rule], record: Record, index: int = 0) -> MatchDecision:
        """Decision for one record against rules already passed through ``ordered``."""
        record_id = record_identifier(record, index)

        for rule in ordered_rules:
            if self.matcher.matches(rule, record):
                return MatchDecision(
                    record_id=record_id,
                    rule_id=rule.rule_id,
                    priority=rule.priority,
                    outcome=rule.outcome,
                )

        return MatchDecision.no_match(record_id)

    def resolve_all(self, rules: Iterable[Rule], record: Record) -> List[Rule]:
        """Every matching active rule, highest precedence first (preview/report mode)."""
        return [rule for rule in self.ordered(rules) if self.matcher.matches(rule, record)]
