"""Predicate evaluation for Condition nodes.

Evaluation is fail-open: a missing or unrecognised predicate evaluates to
``True`` so that a badly configured condition routes along the matched branch
instead of stranding the workflow.
"""

from __future__ import annotations

import logging
import operator
from typing import Any, Callable, Dict, Optional, Union

from .contracts import InstanceMetadata, PaymentRequest, Predicate

logger = logging.getLogger(__name__)

_NUMERIC_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "gte": operator.ge,
    "gt": operator.gt,
    "lte": operator.le,
    "lt": operator.lt,
    "eq": operator.eq,
    "ne": operator.ne,
}

_EQUALITY_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
}

_OPERATOR_ALIASES = {
    ">=": "gte",
    ">": "gt",
    "<=": "lte",
    "<": "lt",
    "==": "eq",
    "=": "eq",
    "!=": "ne",
}

_FIELD_OPERATORS = {
    "amount": _NUMERIC_OPERATORS,
    "category": _EQUALITY_OPERATORS,
}


def evaluate(
    predicate: Optional[Predicate], subject: Union[PaymentRequest, InstanceMetadata]
) -> bool:
    """Return whether ``subject`` satisfies ``predicate``."""
    if predicate is None:
        return True

    operators = _FIELD_OPERATORS.get(predicate.field)
    if operators is None:
        logger.warning(f"Unsupported condition field {predicate.field!r}; treating as met")
        return True

    op_name = _OPERATOR_ALIASES.get(predicate.operator, predicate.operator)
    compare = operators.get(op_name)
    if compare is None:
        logger.warning(
            f"Unsupported operator {predicate.operator!r} for field {predicate.field!r}; "
            "treating as met"
        )
        return True

    value = getattr(subject, predicate.field, None)
    if value is None or predicate.threshold is None:
        logger.warning(
            f"Condition on {predicate.field!r} has nothing to compare; treating as met"
        )
        return True

    if predicate.field == "amount":
        try:
            return compare(float(value), float(predicate.threshold))
        except (TypeError, ValueError):
            logger.warning(
                f"Non-numeric amount threshold {predicate.threshold!r}; treating as met"
            )
            return True
    return compare(value, predicate.threshold)
