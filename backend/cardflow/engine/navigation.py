"""
Navigation over the visible field list.

Indexes handed to and returned from next_index/prev_index are positions in
`visible_fields`. The index a session stores is a position in the full
schema; clamp_to_visible converts the stored one into a visible position.
"""
from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence

from cardflow.engine.types import BranchRule, FormField
from cardflow.engine.conditions import compare, is_empty, is_unanswered
from cardflow.engine.visibility import rule_matches

logger = logging.getLogger(__name__)

TERMINAL = -1  # past the last visible card


def branch_matches(rule: BranchRule, field: FormField, answers: Mapping[str, Any]) -> bool:
    if rule.conditions is not None and not rule_matches(rule.conditions, answers):
        return False
    if rule.value is not None:
        answer = answers.get(field.id)
        if is_unanswered(answer):
            return False
        op = "one_of" if isinstance(rule.value, (list, tuple)) else "equals"
        return compare(op, answer, rule.value)
    return True


def branch_target(field: FormField, answers: Mapping[str, Any]) -> Optional[str]:
    """First matching branch rule's target field id, or None."""
    for rule in field.branch_rules:
        if branch_matches(rule, field, answers):
            return rule.target_field_id
    return None


def next_index(current_visible_index: int, visible_fields: Sequence[FormField], answers: Mapping[str, Any]) -> int:
    if current_visible_index < 0 or current_visible_index >= len(visible_fields):
        return TERMINAL

    current = visible_fields[current_visible_index]
    target_id = branch_target(current, answers)
    if target_id is not None:
        for idx, field in enumerate(visible_fields):
            if field.id == target_id:
                return idx
        # target got hidden by a later answer: fall through to sequential order
        logger.debug("Branch target %s from %s is not visible, using sequential order", target_id, current.id)

    nxt = current_visible_index + 1
    return nxt if nxt < len(visible_fields) else TERMINAL


def prev_index(current_visible_index: int) -> int:
    return current_visible_index - 1 if current_visible_index > 0 else current_visible_index


def clamp_to_visible(schema: Sequence[FormField], visible_fields: Sequence[FormField], stored_index: int) -> int:
    """
    Forward-bias clamp: map a stored schema index onto visible_fields.
    A hidden field resolves to the nearest visible field *before* it, so
    shrinking visibility never silently skips content. Never past the end.
    """
    if not visible_fields or not schema:
        return 0
    positions = {f.id: i for i, f in enumerate(visible_fields)}
    idx = min(max(stored_index, 0), len(schema) - 1)
    for i in range(idx, -1, -1):
        pos = positions.get(schema[i].id)
        if pos is not None:
            return pos
    return 0


def schema_index(schema: Sequence[FormField], field_id: str) -> int:
    for i, field in enumerate(schema):
        if field.id == field_id:
            return i
    return -1


def missing_required(fields: List[FormField], answers: Mapping[str, Any]) -> List[FormField]:
    return [f for f in fields if f.required and f.type != "statement" and is_empty(answers.get(f.id))]


def traversed_fields(visible_fields: Sequence[FormField], answers: Mapping[str, Any]) -> List[FormField]:
    """
    The cards a respondent passes through from the first card to the end,
    following branch rules. Cards a branch jumps over are not on the path.
    """
    path: List[FormField] = []
    seen = set()
    idx = 0 if visible_fields else TERMINAL
    while idx != TERMINAL and idx not in seen:
        seen.add(idx)
        path.append(visible_fields[idx])
        idx = next_index(idx, visible_fields, answers)
    return path
