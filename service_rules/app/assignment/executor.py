"""
Assignment execution: turns match decisions into stamped records.

The executor performs no I/O. It returns the stamped records, one result
per decision and the per-rule match-count increments; persisting them is
left to the caller.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from shared.logging import get_logger

from ..rules.conditions import to_number
from ..rules.fields import CargoField, Record, read_field
from ..rules.models import (
    AssignmentResult, AssignmentStatus, CustomerOutcome, MatchDecision,
    RateOutcome, WEIGHT_BASED_RATES, utcnow
)


class OutcomeError(Exception):
    """A matched record cannot receive its rule's outcome."""


@dataclass
class AssignmentOutcome:
    """Everything ``apply`` produced for one batch of decisions."""
    results: List[AssignmentResult] = field(default_factory=list)
    updated_records: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    match_count_deltas: Dict[str, int] = field(default_factory=dict)


class AssignmentExecutor:
    """Applies the winning rule's outcome to each record."""

    def __init__(
        self,
        precision: int = 2,
        default_currency: str = "EUR",
        customer_lookup: Optional[Mapping[str, str]] = None,
    ):
        self.logger = get_logger("rules.assignment.executor")
        self.quantum = Decimal(1).scaleb(-precision)
        self.default_currency = default_currency
        self.customer_lookup = dict(customer_lookup or {})

    def apply(self, decided: Iterable[Tuple[MatchDecision, Record]]) -> AssignmentOutcome:
        """
        Stamp each matched record and fold per-rule match counts.

        ``decided`` pairs every decision with the record it was made for;
        ``results`` keeps that order, one entry per pair.
        """
        outcome = AssignmentOutcome()

        for decision, record in decided:
            if not decision.matched:
                outcome.results.append(
                    AssignmentResult(record_id=decision.record_id, status=AssignmentStatus.UNMATCHED)
                )
                continue

            try:
                result, stamped = self._assign(decision, record)
            except OutcomeError as e:
                self.logger.info(
                    "Record left unassigned",
                    record_id=decision.record_id,
                    rule_id=decision.rule_id,
                    reason=str(e)
                )
                outcome.results.append(
                    AssignmentResult(
                        record_id=decision.record_id,
                        status=AssignmentStatus.FAILED,
                        rule_id=decision.rule_id,
                        priority=decision.priority,
                        reason=str(e),
                    )
                )
                continue

            outcome.results.append(result)
            outcome.updated_records[decision.record_id] = stamped
            outcome.match_count_deltas[decision.rule_id] = (
                outcome.match_count_deltas.get(decision.rule_id, 0) + 1
            )

        return outcome

    def compute_amount(self, rate: RateOutcome, record: Record) -> Decimal:
        """Amount charged for a record under a rate outcome."""
        if rate.base_rate is None:
            raise OutcomeError(f"Rate {rate.rate_id} has no base rate")

        amount = rate.base_rate * rate.multiplier
        if rate.rate_type in WEIGHT_BASED_RATES:
            weight = to_number(read_field(record, CargoField.WEIGHT))
            if weight is None:
                raise OutcomeError(f"Missing weight for {rate.rate_type.value} rate {rate.rate_id}")
            try:
                amount = Decimal(str(weight)) * amount
            except InvalidOperation:
                raise OutcomeError(f"Invalid weight {weight!r}") from None

        return amount.quantize(self.quantum, rounding=ROUND_HALF_UP)

    def resolve_customer(self, customer: str) -> str:
        """Customer names resolve to IDs when known; anything else is taken as an ID."""
        return self.customer_lookup.get(customer, customer)

    def _assign(self, decision: MatchDecision, record: Record):
        assigned_at = decision.decided_at or utcnow()
        stamped = dict(record)
        stamped["matched_rule_id"] = decision.rule_id
        stamped["matched_priority"] = decision.priority
        stamped["assigned_at"] = assigned_at.isoformat()

        result = AssignmentResult(
            record_id=decision.record_id,
            status=AssignmentStatus.ASSIGNED,
            rule_id=decision.rule_id,
            priority=decision.priority,
            assigned_at=assigned_at,
        )

        rule_outcome = decision.outcome
        if isinstance(rule_outcome, RateOutcome):
            amount = self.compute_amount(rule_outcome, record)
            currency = rule_outcome.currency or self.default_currency
            result.rate_id = rule_outcome.rate_id
            result.amount = amount
            result.currency = currency
            stamped["rate_id"] = rule_outcome.rate_id
            stamped["rate_value"] = amount
            stamped["rate_currency"] = currency
        elif isinstance(rule_outcome, CustomerOutcome):
            customer = self.resolve_customer(rule_outcome.customer)
            result.customer = customer
            stamped["assigned_customer"] = customer
        else:
            raise OutcomeError(f"Rule {decision.rule_id} has no outcome")

        return result, stamped
