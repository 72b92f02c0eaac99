"""
Single-criterion evaluation.

``evaluate_criterion`` compares one asset's fundamental against one rule and
returns a ``CriterionResult`` trace. It never raises: a missing fundamental is
reported as ``skipped_reason="missing_fundamental"`` and an unparseable value
as a plain non-match, so one bad data point cannot abort a scoring run.

Evaluation order
----------------
1. Every metric in ``required_fundamentals`` must be present (not ``None``),
   otherwise the criterion is skipped, whatever the operator.
2. ``exists`` matches on presence of ``metric`` alone.
3. Comparison operators parse both sides as ``Decimal`` and compare exactly.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Optional

from portfolio_calc.models.criteria import (
    MISSING_FUNDAMENTAL,
    CriterionOperator,
    CriterionResult,
    CriterionRule,
)
from portfolio_calc.utils.decimal_utils import decimal_context, try_parse_decimal


def _compare(op: CriterionOperator, actual: Decimal, rule: CriterionRule) -> bool:
    threshold = try_parse_decimal(rule.value)
    if threshold is None:
        return False

    if op == CriterionOperator.GT:
        return actual > threshold
    if op == CriterionOperator.LT:
        return actual < threshold
    if op == CriterionOperator.GTE:
        return actual >= threshold
    if op == CriterionOperator.LTE:
        return actual <= threshold
    if op == CriterionOperator.EQUALS:
        return actual == threshold
    if op == CriterionOperator.BETWEEN:
        upper = try_parse_decimal(rule.value2)
        if upper is None:
            return False
        return threshold <= actual <= upper
    return False


def has_required_fundamentals(
    rule: CriterionRule, fundamentals: Mapping[str, Optional[str]]
) -> bool:
    """True when every required metric is present and not ``None``."""
    required = rule.required_fundamentals or [rule.metric]
    return all(fundamentals.get(metric) is not None for metric in required)


def evaluate_criterion(
    rule: CriterionRule, fundamentals: Mapping[str, Optional[str]]
) -> CriterionResult:
    """Evaluate ``rule`` against one asset's fundamentals.

    Args:
        rule:         The criterion to apply.
        fundamentals: Metric key → decimal string (or ``None`` when unknown).

    Returns:
        A ``CriterionResult``; ``points_awarded`` is ``rule.points`` on match
        and 0 otherwise.
    """
    if not has_required_fundamentals(rule, fundamentals):
        return CriterionResult(
            criterion_id=rule.id,
            criterion_name=rule.name,
            matched=False,
            points_awarded=0,
            actual_value=None,
            skipped_reason=MISSING_FUNDAMENTAL,
        )

    raw = fundamentals.get(rule.metric)

    if rule.operator == CriterionOperator.EXISTS:
        matched = raw is not None
    else:
        actual = try_parse_decimal(raw)
        if actual is None:
            matched = False
        else:
            with decimal_context():
                matched = _compare(rule.operator, actual, rule)

    return CriterionResult(
        criterion_id=rule.id,
        criterion_name=rule.name,
        matched=matched,
        points_awarded=rule.points if matched else 0,
        actual_value=raw,
    )
