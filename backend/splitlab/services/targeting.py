"""Audience targeting rule evaluation.

Pure functions only: the result depends on the rules and the context passed
in, nothing else, so they are safe to call from any number of concurrent
requests.

Missing context is permissive. A filter category whose context attribute is
absent passes, and so does a custom rule whose field is absent. Clients that
do not send every attribute still get bucketed instead of being silently
excluded.
"""
import re
from typing import Any, Dict, Mapping, Optional, Union

from splitlab.schemas.experiment import AssignmentContext, CustomRule, TargetingRules

ContextLike = Union[AssignmentContext, Mapping[str, Any], None]


def context_as_dict(context: ContextLike) -> Dict[str, Any]:
    """Normalize a context to a plain dict without unset attributes."""
    if context is None:
        return {}
    if isinstance(context, AssignmentContext):
        return context.model_dump(exclude_none=True)
    return {k: v for k, v in context.items() if v is not None}


def satisfies(rules: Optional[TargetingRules], context: ContextLike) -> bool:
    """
    Check whether a visitor context matches every targeting filter.

    Args:
        rules: Experiment targeting block (None or empty means everyone)
        context: Request attributes of the visitor

    Returns:
        True if all present filter categories match
    """
    if rules is None:
        return True

    attrs = context_as_dict(context)

    device_type = attrs.get("device_type")
    if rules.device_types and device_type is not None:
        if device_type not in rules.device_types:
            return False

    browser = attrs.get("browser")
    if rules.browsers and browser is not None:
        browser = str(browser).lower()
        if not any(b.lower() in browser for b in rules.browsers):
            return False

    country = attrs.get("country")
    if rules.countries and country is not None:
        if country not in rules.countries:
            return False

    url = attrs.get("url")
    if rules.url_patterns and url is not None:
        if not any(matches_url_pattern(p, str(url)) for p in rules.url_patterns):
            return False

    return all(evaluate_custom_rule(rule, attrs) for rule in rules.custom_rules)


def matches_url_pattern(pattern: str, url: str) -> bool:
    """Match a glob where `*` stands for any substring, anywhere in the URL."""
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.search(regex, url) is not None


def evaluate_custom_rule(rule: CustomRule, attrs: Mapping[str, Any]) -> bool:
    """Evaluate one custom rule against context attributes."""
    if rule.field not in attrs:
        return True

    value = attrs[rule.field]
    operator = rule.operator

    if operator == "eq":
        return value == rule.value
    if operator == "neq":
        return value != rule.value
    if operator in ("gt", "lt", "gte", "lte"):
        return _compare(operator, value, rule.value)
    if operator == "contains":
        return str(rule.value) in str(value)
    if operator == "not_contains":
        return str(rule.value) not in str(value)
    if operator == "in":
        return value in _as_collection(rule.value)
    if operator == "not_in":
        return value not in _as_collection(rule.value)
    return True


def _compare(operator: str, left: Any, right: Any) -> bool:
    try:
        return _COMPARATORS[operator](left, right)
    except TypeError:
        pass

    # "42" vs 40: fall back to numeric comparison when both sides parse
    try:
        return _COMPARATORS[operator](float(left), float(right))
    except (TypeError, ValueError):
        return False


def _as_collection(value: Any):
    if isinstance(value, (list, tuple, set, frozenset)):
        return value
    return [value]


_COMPARATORS = {
    "gt": lambda a, b: a > b,
    "lt": lambda a, b: a < b,
    "gte": lambda a, b: a >= b,
    "lte": lambda a, b: a <= b,
}
