"""
Segment rule evaluation.

Rule tree format:
{
    "and": [
        {"field": "spend", "op": ">", "value": 1000},
        {
            "or": [
                {"field": "visits", "op": "<", "value": 3},
                {"field": "inactive_days", "op": ">=", "value": 90}
            ]
        }
    ]
}

A leaf compares a numeric customer attribute against ``value``.
``inactive_days`` is derived from ``last_active`` and is infinite for a
customer who was never active. A group with neither a leaf shape nor
``and``/``or`` keys matches everyone unless strict evaluation is on.
"""

import math
import operator
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from crm_api.utils.time import as_utc, utcnow

RuleNode = dict

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}

FIELDS = ("spend", "visits", "inactive_days")

# Older clients and the AI fallback parser emit this name
FIELD_ALIASES = {"last_active_days": "inactive_days"}


class UnrecognizedRuleError(ValueError):
    """Raised by strict evaluation for a node it cannot interpret."""

    def __init__(self, message: str, node: Any = None):
        super().__init__(message)
        self.node = node


def _get(customer: Any, name: str) -> Any:
    if isinstance(customer, dict):
        return customer.get(name)
    return getattr(customer, name, None)


def inactive_days(customer: Any, now: Optional[datetime] = None) -> float:
    """Whole days since ``last_active``; ``math.inf`` when never active."""
    last_active = _get(customer, "last_active")
    if last_active is None:
        return math.inf
    if isinstance(last_active, str):
        last_active = datetime.fromisoformat(last_active)
    return ((now or utcnow()) - as_utc(last_active)).days


def _field_value(customer: Any, field: str, now: Optional[datetime]) -> Any:
    if field == "inactive_days":
        return inactive_days(customer, now)
    value = _get(customer, field)
    return 0 if value is None else value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _evaluate_leaf(customer: Any, node: RuleNode, strict: bool, now: Optional[datetime]) -> bool:
    field = node["field"]
    if not isinstance(field, str):
        if strict:
            raise UnrecognizedRuleError(f"Rule field must be a string: {field!r}", node)
        return True
    field = FIELD_ALIASES.get(field, field)
    op = node.get("op")
    value = node.get("value")

    if strict:
        if field not in FIELDS:
            raise UnrecognizedRuleError(f"Unknown rule field: {field!r}", node)
        if not isinstance(op, str) or op not in OPERATORS:
            raise UnrecognizedRuleError(f"Unknown rule operator: {op!r}", node)
        if not _is_number(value):
            raise UnrecognizedRuleError(f"Rule value must be numeric: {value!r}", node)

    compare = OPERATORS.get(op) if isinstance(op, str) else None
    if compare is None or not _is_number(value):
        return False

    actual = _field_value(customer, field, now)
    if not _is_number(actual):
        return False
    return compare(actual, value)


def evaluate(
    customer: Any,
    node: RuleNode,
    *,
    strict: bool = False,
    now: Optional[datetime] = None,
) -> bool:
    """
    Return True if ``customer`` satisfies the rule tree ``node``.

    ``customer`` may be an ORM object or a plain dict. Pure: the same
    inputs always give the same answer (pass ``now`` to pin the clock
    used for ``inactive_days``).

    Raises:
        UnrecognizedRuleError: only when ``strict`` is set.
    """
    if not isinstance(node, dict):
        if strict:
            raise UnrecognizedRuleError("Rule node must be an object", node)
        return True

    if "field" in node:
        return _evaluate_leaf(customer, node, strict, now)

    has_and = "and" in node
    has_or = "or" in node
    if not has_and and not has_or:
        if strict:
            raise UnrecognizedRuleError("Rule node has neither 'field' nor 'and'/'or'", node)
        return True

    and_branches = node.get("and") or []
    or_branches = node.get("or") or []
    if not isinstance(and_branches, list) or not isinstance(or_branches, list):
        if strict:
            raise UnrecognizedRuleError("'and'/'or' must be lists", node)
        return True

    if has_and:
        if not all(evaluate(customer, child, strict=strict, now=now) for child in and_branches):
            return False
    if has_or:
        # An empty 'or' is vacuously true, same as an empty 'and'
        if or_branches and not any(evaluate(customer, child, strict=strict, now=now) for child in or_branches):
            return False
    return True


def filter_customers(
    customers: Iterable[Any],
    node: RuleNode,
    *,
    strict: bool = False,
    now: Optional[datetime] = None,
) -> list:
    """Customers matching ``node``, in input order."""
    now = now or utcnow()
    return [c for c in customers if evaluate(c, node, strict=strict, now=now)]


def validate_rules(node: RuleNode) -> None:
    """Walk the whole tree in strict mode without a customer."""
    if not isinstance(node, dict):
        raise UnrecognizedRuleError("Rule node must be an object", node)
    if "field" in node:
        _evaluate_leaf({}, node, strict=True, now=None)
        return
    if "and" not in node and "or" not in node:
        raise UnrecognizedRuleError("Rule node has neither 'field' nor 'and'/'or'", node)
    for key in ("and", "or"):
        children = node.get(key)
        if children is None:
            continue
        if not isinstance(children, list):
            raise UnrecognizedRuleError(f"'{key}' must be a list", node)
        for child in children:
            validate_rules(child)


def normalize_rules(node: Any) -> Any:
    """Copy of ``node`` with field aliases and ``operator`` rewritten to canonical names."""
    if not isinstance(node, dict):
        return node
    normalized = {}
    for key, value in node.items():
        if key == "field" and isinstance(value, str):
            normalized[key] = FIELD_ALIASES.get(value, value)
        elif key == "operator" and "op" not in node:
            normalized["op"] = value
        elif key in ("and", "or") and isinstance(value, list):
            normalized[key] = [normalize_rules(child) for child in value]
        else:
            normalized[key] = value
    return normalized
