"""
Visibility resolver.

Rules evaluate to a three-valued Visibility instead of a bool so that an
unanswered dependency (UNKNOWN) is never confused with a legitimately falsy
answer such as 0 or "". Only VISIBLE shows a field: unknown dependencies hide
their dependents (closed world), which gives progressive disclosure.
"""
from __future__ import annotations

import enum
from typing import Any, Iterable, Iterator, List, Mapping, Optional

from cardflow.engine.conditions import PRESENCE_OPERATORS, compare, is_unanswered
from cardflow.engine.types import Condition, ConditionBlock, ConditionGroup, FormField, Rule


class Visibility(str, enum.Enum):
    UNKNOWN = "unknown"
    HIDDEN = "hidden"
    VISIBLE = "visible"


def _from_bool(flag: bool) -> Visibility:
    return Visibility.VISIBLE if flag else Visibility.HIDDEN


def _combine(operator: str, results: List[Visibility]) -> Visibility:
    if not results:
        return Visibility.VISIBLE
    if operator == "AND":
        if Visibility.HIDDEN in results:
            return Visibility.HIDDEN
        if Visibility.UNKNOWN in results:
            return Visibility.UNKNOWN
        return Visibility.VISIBLE
    # OR
    if Visibility.VISIBLE in results:
        return Visibility.VISIBLE
    if Visibility.UNKNOWN in results:
        return Visibility.UNKNOWN
    return Visibility.HIDDEN


def evaluate_condition(
    condition: Condition,
    answers: Mapping[str, Any],
    known_ids: Optional[set] = None,
) -> Visibility:
    if known_ids is not None and condition.field_id not in known_ids:
        return Visibility.UNKNOWN
    value = answers.get(condition.field_id)
    if is_unanswered(value) and condition.operator not in PRESENCE_OPERATORS:
        return Visibility.UNKNOWN
    return _from_bool(compare(condition.operator, value, condition.value))


def evaluate_rule(
    rule: Rule,
    answers: Mapping[str, Any],
    known_ids: Optional[set] = None,
) -> Visibility:
    if isinstance(rule, ConditionBlock):
        return _combine(rule.operator, [evaluate_rule(g, answers, known_ids) for g in rule.groups])
    if isinstance(rule, ConditionGroup):
        return _combine(rule.operator, [evaluate_condition(c, answers, known_ids) for c in rule.conditions])
    return evaluate_condition(rule, answers, known_ids)


def rule_matches(rule: Rule, answers: Mapping[str, Any], known_ids: Optional[set] = None) -> bool:
    return evaluate_rule(rule, answers, known_ids) is Visibility.VISIBLE


def field_visibility(field: FormField, answers: Mapping[str, Any], known_ids: Optional[set] = None) -> Visibility:
    # a hide rule only hides once it resolves to a match; UNKNOWN leaves the field alone
    if field.hide_rule is not None and rule_matches(field.hide_rule, answers, known_ids):
        return Visibility.HIDDEN
    if field.visibility_rule is None:
        return Visibility.VISIBLE
    return evaluate_rule(field.visibility_rule, answers, known_ids)


def iter_visible(fields: Iterable[FormField], answers: Mapping[str, Any]) -> Iterator[FormField]:
    """Lazily yield the currently relevant fields, in authored order."""
    fields = list(fields)
    known_ids = {f.id for f in fields}
    for field in fields:
        if field_visibility(field, answers, known_ids) is Visibility.VISIBLE:
            yield field


def visible(fields: Iterable[FormField], answers: Mapping[str, Any]) -> List[FormField]:
    return list(iter_visible(fields, answers))
