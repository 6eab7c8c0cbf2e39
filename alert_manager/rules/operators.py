"""
Threshold comparison and priority scoring.

Comparison semantics are fixed, including how missing data behaves:

    operator        both present        either missing
    >  <  >=  <=    numeric compare     False
    ==              numeric equality    True only if both missing
    !=              numeric inequality  True unless both missing

Operands are coerced to float. Anything that does not parse as a number
(None, "abc", NaN) counts as missing rather than raising.
"""

import math
import operator as _op
from enum import Enum
from typing import Any, Callable, Optional, Union


class Operator(Enum):
    """Supported rule operators, keyed by their symbol."""
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "=="
    NE = "!="

    @classmethod
    def parse(cls, value: Union["Operator", str]) -> "Operator":
        """Accept either an Operator or its symbol."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            raise ValueError(
                f"operator must be one of: {', '.join(o.value for o in cls)}, got {value!r}"
            ) from None

    @property
    def is_greater(self) -> bool:
        return self in (Operator.GT, Operator.GE)

    @property
    def is_lesser(self) -> bool:
        return self in (Operator.LT, Operator.LE)


_NUMERIC: dict[Operator, Callable[[float, float], bool]] = {
    Operator.GT: _op.gt,
    Operator.LT: _op.lt,
    Operator.GE: _op.ge,
    Operator.LE: _op.le,
    Operator.EQ: _op.eq,
    Operator.NE: _op.ne,
}

assert set(_NUMERIC) == set(Operator)


def to_number(value: Any) -> Optional[float]:
    """Coerce a value to float, or None if it is not a usable number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def compare(operator: Union[Operator, str], observed: Any, threshold: Any) -> bool:
    """
    Evaluate `observed <operator> threshold`.

    Args:
        operator: Operator or its symbol
        observed: Current value (may be missing)
        threshold: Rule threshold (may be missing)

    Returns:
        True if the condition holds
    """
    op = Operator.parse(operator)
    left = to_number(observed)
    right = to_number(threshold)

    if left is None or right is None:
        both_missing = left is None and right is None
        if op is Operator.EQ:
            return both_missing
        if op is Operator.NE:
            return not both_missing
        return False

    return _NUMERIC[op](left, right)


def priority_score(operator: Union[Operator, str], threshold: float) -> float:
    """
    Urgency score used to pick one alert out of a group.

    Greater-than rules score their threshold (crossing a higher bar is
    worse). Less-than rules score ``100 - threshold`` (crossing a lower bar
    is worse). Equality rules have no direction and score their threshold.
    """
    op = Operator.parse(operator)
    value = float(threshold)
    if op.is_greater:
        return value
    if op.is_lesser:
        return 100.0 - value
    return value
