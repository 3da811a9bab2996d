"""Cell-level validation rules and type coercion.

Each rule checker receives a (coerced) cell value and the rule's comparison
value and returns True if the value satisfies the rule.
"""

from datetime import date, datetime
from typing import Any, Callable, Dict, Optional, Tuple
import logging
import re

import pandas as pd

from prism_ingest.schemas.registry import ValidationRule

logger = logging.getLogger(__name__)

RuleChecker = Callable[[Any, Any], bool]


class CoercionError(ValueError):
    """Raised when a cell value cannot be converted to the column type."""


def check_min_length(value: Any, limit: Any) -> bool:
    return isinstance(value, str) and len(value) >= int(limit)


def check_max_length(value: Any, limit: Any) -> bool:
    return isinstance(value, str) and len(value) <= int(limit)


def check_min(value: Any, limit: Any) -> bool:
    return _is_number(value) and value >= float(limit)


def check_max(value: Any, limit: Any) -> bool:
    return _is_number(value) and value <= float(limit)


def check_regex(value: Any, pattern: Any) -> bool:
    return isinstance(value, str) and re.search(str(pattern), value) is not None


def check_one_of(value: Any, choices: Any) -> bool:
    return str(value) in {str(choice) for choice in choices}


RULE_CHECKS: Dict[str, RuleChecker] = {
    "minLength": check_min_length,
    "maxLength": check_max_length,
    "min": check_min,
    "max": check_max,
    "regex": check_regex,
    "oneOf": check_one_of,
}


def apply_rule(value: Any, rule: ValidationRule) -> bool:
    """Apply a single validation rule to a value.

    Args:
        value: Coerced cell value
        rule: Rule to apply

    Returns:
        True if the value satisfies the rule
    """
    checker = RULE_CHECKS.get(rule.kind)
    if checker is None:
        logger.warning(f"No checker registered for rule kind '{rule.kind}'")
        return True
    try:
        return checker(value, rule.value)
    except (TypeError, ValueError, re.error) as e:
        logger.debug(f"Rule '{rule.kind}' raised on value {value!r}: {e}")
        return False


def is_empty(value: Any) -> bool:
    """Return True for None and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def coerce_value(value: Any, value_type: str) -> Any:
    """Convert a raw cell value to the declared column type.

    Args:
        value: Raw value as decoded from the workbook
        value_type: 'string', 'number' or 'date'

    Returns:
        The converted value

    Raises:
        CoercionError: If the value cannot be represented as ``value_type``
    """
    if value_type == "number":
        return _to_number(value)
    if value_type == "date":
        return _to_date(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> float:
    if _is_number(value):
        return value
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        try:
            return float(cleaned)
        except ValueError:
            raise CoercionError(f"Invalid number format: {value!r}") from None
    raise CoercionError(f"Invalid number format: {value!r}")


def _to_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if _is_number(value):
        # Excel serial date, 1900 date system
        return (pd.Timestamp("1899-12-30") + pd.to_timedelta(value, unit="D")).to_pydatetime()
    if isinstance(value, str):
        try:
            return pd.to_datetime(value.strip()).to_pydatetime()
        except (ValueError, TypeError):
            raise CoercionError(f"Invalid date format: {value!r}") from None
    raise CoercionError(f"Invalid date format: {value!r}")


def first_failed_rule(value: Any, rules: Tuple[ValidationRule, ...]) -> Optional[ValidationRule]:
    """Return the first rule the value violates, or None."""
    for rule in rules:
        if not apply_rule(value, rule):
            return rule
    return None
