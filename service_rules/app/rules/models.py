"""
Rule data models for the cargo billing rules service.
"""

from decimal import Decimal
from typing import Dict, Any, Optional, List, Union
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from shared.errors import UnknownFieldError

from .fields import CargoField, parse_field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RuleSetKind(str, Enum):
    """Rule sets evaluated independently of each other."""
    CUSTOMER = "customer"
    RATE = "rate"


class ConditionOperator(str, Enum):
    """Rule condition operators."""
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"
    NOT_EMPTY = "not_empty"
    IS_EMPTY = "is_empty"


class LogicMode(str, Enum):
    """How a rule combines its conditions."""
    AND = "AND"
    OR = "OR"


class RateType(str, Enum):
    """How a rate outcome turns into an amount."""
    FIXED = "fixed"
    PER_KG = "per_kg"
    MULTIPLIER = "multiplier"


WEIGHT_BASED_RATES = frozenset({RateType.PER_KG, RateType.MULTIPLIER})


def coerce_operator(operator: Union[str, ConditionOperator]) -> Union[str, ConditionOperator]:
    """Map stored operator text onto the enum, keeping unknown text as-is."""
    if isinstance(operator, ConditionOperator):
        return operator
    try:
        return ConditionOperator(str(operator).strip().lower())
    except ValueError:
        return str(operator)


@dataclass
class RuleCondition:
    """
    A single field test.

    ``value`` and ``value2`` are always held as text; numeric operators
    parse them at evaluation time. Operators outside ``ConditionOperator``
    are kept as raw text and evaluate to no match.
    """
    field: CargoField
    operator: Union[ConditionOperator, str]
    value: str = ""
    value2: Optional[str] = None

    def __post_init__(self):
        self.field = parse_field(self.field)
        self.operator = coerce_operator(self.operator)
        self.value = "" if self.value is None else str(self.value)
        if self.value2 is not None:
            self.value2 = str(self.value2)


@dataclass
class CustomerOutcome:
    """Assigns a customer (by name or ID) to matched records."""
    customer: str


@dataclass
class RateOutcome:
    """Assigns a rate to matched records."""
    rate_id: str
    base_rate: Optional[Decimal]
    rate_type: RateType = RateType.FIXED
    multiplier: Decimal = Decimal("1")
    currency: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        self.rate_type = RateType(self.rate_type)
        if self.base_rate is not None:
            self.base_rate = Decimal(str(self.base_rate))
        self.multiplier = Decimal(str(self.multiplier if self.multiplier is not None else 1))


Outcome = Union[CustomerOutcome, RateOutcome]


@dataclass
class Rule:
    """Customer or rate assignment rule."""
    rule_id: str
    name: str
    outcome: Outcome
    description: Optional[str] = None
    priority: int = 0
    is_active: bool = True
    conditions: List[RuleCondition] = field(default_factory=list)
    logic: LogicMode = LogicMode.AND
    match_count: int = 0
    last_run: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not isinstance(self.logic, LogicMode):
            self.logic = LogicMode(str(self.logic).upper())

    @property
    def kind(self) -> RuleSetKind:
        if isinstance(self.outcome, RateOutcome):
            return RuleSetKind.RATE
        return RuleSetKind.CUSTOMER


@dataclass
class MatchDecision:
    """Which rule, if any, won for one record."""
    record_id: str
    rule_id: Optional[str] = None
    priority: Optional[int] = None
    outcome: Optional[Outcome] = None
    decided_at: datetime = field(default_factory=utcnow)

    @property
    def matched(self) -> bool:
        return self.rule_id is not None

    @classmethod
    def no_match(cls, record_id: str) -> "MatchDecision":
        return cls(record_id=record_id)


class AssignmentStatus(str, Enum):
    """Per-record status in a batch result."""
    ASSIGNED = "assigned"
    UNMATCHED = "unmatched"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class AssignmentResult:
    """Outcome of one record in an assignment batch."""
    record_id: str
    status: AssignmentStatus
    rule_id: Optional[str] = None
    priority: Optional[int] = None
    customer: Optional[str] = None
    rate_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    reason: Optional[str] = None
    assigned_at: Optional[datetime] = None


@dataclass
class RuleRunSummary:
    """How many records one rule claimed in a batch."""
    rule_id: str
    rule_name: str
    priority: int
    matches: int = 0


@dataclass
class BatchResult:
    """Result of running a rule set over a batch of records."""
    batch_id: str
    rule_set: RuleSetKind
    results: List[AssignmentResult] = field(default_factory=list)
    rule_summaries: List[RuleRunSummary] = field(default_factory=list)
    match_count_deltas: Dict[str, int] = field(default_factory=dict)
    updated_records: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    dry_run: bool = False
    generated_at: datetime = field(default_factory=utcnow)
    duration_ms: float = 0.0

    def _with_status(self, status: AssignmentStatus) -> List[AssignmentResult]:
        return [r for r in self.results if r.status == status]

    @property
    def assigned(self) -> List[AssignmentResult]:
        return self._with_status(AssignmentStatus.ASSIGNED)

    @property
    def unmatched(self) -> List[AssignmentResult]:
        return self._with_status(AssignmentStatus.UNMATCHED)

    @property
    def failed(self) -> List[AssignmentResult]:
        return self._with_status(AssignmentStatus.FAILED)

    @property
    def skipped(self) -> List[AssignmentResult]:
        return self._with_status(AssignmentStatus.SKIPPED)

    @property
    def total_processed(self) -> int:
        return len(self.results)

    @property
    def total_assigned(self) -> int:
        return len(self.assigned)

    @property
    def total_skipped(self) -> int:
        return self.total_processed - self.total_assigned


@dataclass
class ReorderResult:
    """Priorities committed by a two-phase reorder."""
    rule_set: RuleSetKind
    priorities: Dict[str, int]
    staged: Dict[str, int]
    duration_ms: float = 0.0


class ConditionModel(BaseModel):
    """Condition as submitted by the rule editor."""
    field: str = Field(..., description="Cargo field name or alias")
    operator: ConditionOperator = Field(..., description="Condition operator")
    value: str = Field("", description="Comparison value, stored as text")
    value2: Optional[str] = Field(None, description="Upper bound for 'between'")

    @field_validator("field")
    @classmethod
    def _known_field(cls, value: str) -> str:
        try:
            return parse_field(value).value
        except UnknownFieldError as e:
            raise ValueError(e.message) from None

    @field_validator("value", "value2", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @model_validator(mode="after")
    def _between_needs_upper_bound(self) -> "ConditionModel":
        if self.operator == ConditionOperator.BETWEEN and self.value2 is None:
            raise ValueError("'between' conditions require value2")
        return self

    def to_condition(self) -> RuleCondition:
        return RuleCondition(
            field=CargoField(self.field),
            operator=self.operator,
            value=self.value,
            value2=self.value2,
        )


class CustomerOutcomeModel(BaseModel):
    customer: str = Field(..., min_length=1, description="Customer name or ID")


class RateOutcomeModel(BaseModel):
    rate_id: str = Field(..., description="Rate ID")
    base_rate: Decimal = Field(..., description="Base rate")
    rate_type: RateType = Field(RateType.FIXED, description="Rate type")
    multiplier: Decimal = Field(Decimal("1"), description="Rate multiplier")
    currency: Optional[str] = Field(None, description="Currency code")
    name: Optional[str] = Field(None, description="Rate display name")


class RuleCreateRequest(BaseModel):
    """Request model for creating a rule."""
    name: str = Field(..., description="Rule name")
    description: Optional[str] = Field(None, description="Rule description")
    conditions: List[ConditionModel] = Field(default_factory=list, description="Rule conditions")
    logic: LogicMode = Field(LogicMode.AND, description="How conditions combine")
    is_active: bool = Field(True, description="Whether rule is active")
    priority: Optional[int] = Field(None, ge=0, description="Explicit priority; appended when omitted")
    customer: Optional[CustomerOutcomeModel] = Field(None, description="Customer outcome")
    rate: Optional[RateOutcomeModel] = Field(None, description="Rate outcome")

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "RuleCreateRequest":
        if (self.customer is None) == (self.rate is None):
            raise ValueError("Exactly one of 'customer' or 'rate' outcome is required")
        return self

    @property
    def kind(self) -> RuleSetKind:
        return RuleSetKind.RATE if self.rate is not None else RuleSetKind.CUSTOMER

    def to_outcome(self) -> Outcome:
        if self.rate is not None:
            return RateOutcome(**self.rate.model_dump())
        return CustomerOutcome(customer=self.customer.customer)


class RuleUpdateRequest(BaseModel):
    """Request model for updating a rule."""
    name: Optional[str] = Field(None, description="Rule name")
    description: Optional[str] = Field(None, description="Rule description")
    conditions: Optional[List[ConditionModel]] = Field(None, description="Rule conditions")
    logic: Optional[LogicMode] = Field(None, description="How conditions combine")
    is_active: Optional[bool] = Field(None, description="Whether rule is active")
    customer: Optional[CustomerOutcomeModel] = Field(None, description="Customer outcome")
    rate: Optional[RateOutcomeModel] = Field(None, description="Rate outcome")


class PriorityUpdate(BaseModel):
    """One entry of a drag-and-drop priority payload."""
    id: str = Field(..., description="Rule ID")
    priority: int = Field(..., ge=0, description="Final priority")


class PriorityReorderRequest(BaseModel):
    """Desired final order of a rule set, highest precedence first."""
    rule_ids: List[str] = Field(..., min_length=1, description="Rule IDs in desired order")

    @field_validator("rule_ids")
    @classmethod
    def _unique_ids(cls, value: List[str]) -> List[str]:
        if len(set(value)) != len(value):
            raise ValueError("rule_ids must not contain duplicates")
        return value
