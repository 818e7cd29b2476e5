"""
Condition evaluation for cargo rules.

``evaluate`` never raises: malformed conditions (unknown operator,
unparsable numeric operand, missing ``between`` bound) evaluate to no
match and are reported through the optional ``on_issue`` callback so the
caller can log them as data-quality problems.
"""

import math
from typing import Any, Callable, Dict, Optional, Union

from .fields import FieldValue, as_text
from .models import ConditionOperator, coerce_operator

IssueCallback = Callable[[str, Dict[str, Any]], None]

UNKNOWN_OPERATOR = "unknown_operator"
UNPARSABLE_CONDITION_VALUE = "unparsable_condition_value"
UNPARSABLE_RECORD_VALUE = "unparsable_record_value"
MISSING_UPPER_BOUND = "missing_upper_bound"

STRING_OPERATORS = frozenset({
    ConditionOperator.EQUALS,
    ConditionOperator.CONTAINS,
    ConditionOperator.STARTS_WITH,
    ConditionOperator.ENDS_WITH,
})


def _trimmed_text(value: Any) -> str:
    """Comparison form: ``as_text`` stripped, with ``None`` as empty."""
    text = as_text(value)
    return "" if text is None else text.strip()


def to_number(value: Any) -> Optional[float]:
    """Parse a finite float, or return ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _report(on_issue: Optional[IssueCallback], kind: str, **details: Any) -> None:
    if on_issue is not None:
        on_issue(kind, details)


def evaluate(
    condition_value: Any,
    operator: Union[ConditionOperator, str],
    record_value: FieldValue,
    value2: Any = None,
    on_issue: Optional[IssueCallback] = None,
) -> bool:
    """Evaluate one condition against one record value."""
    op = coerce_operator(operator)

    if op == ConditionOperator.IS_EMPTY:
        return _trimmed_text(record_value) == ""
    if op == ConditionOperator.NOT_EMPTY:
        return _trimmed_text(record_value) != ""

    if not isinstance(op, ConditionOperator):
        _report(on_issue, UNKNOWN_OPERATOR, operator=op)
        return False

    # Absent values never compare.
    if record_value is None:
        return False

    if op in STRING_OPERATORS:
        actual = _trimmed_text(record_value).lower()
        expected = _trimmed_text(condition_value).lower()
        if op == ConditionOperator.EQUALS:
            return actual == expected
        if op == ConditionOperator.CONTAINS:
            return expected in actual
        if op == ConditionOperator.STARTS_WITH:
            return actual.startswith(expected)
        return actual.endswith(expected)

    actual_number = to_number(record_value)
    if actual_number is None:
        _report(on_issue, UNPARSABLE_RECORD_VALUE, operator=op.value, value=record_value)
        return False

    lower = to_number(condition_value)
    if lower is None:
        _report(on_issue, UNPARSABLE_CONDITION_VALUE, operator=op.value, value=condition_value)
        return False

    if op == ConditionOperator.GREATER_THAN:
        return actual_number > lower
    if op == ConditionOperator.LESS_THAN:
        return actual_number < lower

    # BETWEEN
    if value2 is None or _trimmed_text(value2) == "":
        _report(on_issue, MISSING_UPPER_BOUND, operator=op.value)
        return False
    upper = to_number(value2)
    if upper is None:
        _report(on_issue, UNPARSABLE_CONDITION_VALUE, operator=op.value, value=value2)
        return False
    return lower <= actual_number <= upper
