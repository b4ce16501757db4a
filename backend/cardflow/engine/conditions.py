# Operator table shared by visibility rules, branch rules, dynamic labels and scoring rules.
from __future__ import annotations

from typing import Any, Callable, Dict

from cardflow.engine.types import FileReference

# Operators that are decided even when the referenced field has no answer.
PRESENCE_OPERATORS = ("is_answered", "is_empty", "is_not_empty")


def is_unanswered(value: Any) -> bool:
    # only absence counts; 0, False and "" are real answers
    return value is None


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def as_text(value: Any) -> str:
    """Render an answer value as display text (used by piping and AI prompts)."""
    if value is None:
        return ""
    if isinstance(value, FileReference):
        return value.original_name
    if isinstance(value, dict) and "originalName" in value:
        return str(value["originalName"])
    if isinstance(value, (list, tuple)):
        return ", ".join(as_text(v) for v in value)
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _norm(value: Any) -> str:
    return as_text(value).strip().lower()


def _number(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _equals(answer: Any, expected: Any) -> bool:
    # a multi-select answer equals `expected` when it contains it
    if isinstance(answer, (list, tuple)) and not isinstance(expected, (list, tuple)):
        return any(_norm(a) == _norm(expected) for a in answer)
    if isinstance(answer, (list, tuple)) and isinstance(expected, (list, tuple)):
        return sorted(_norm(a) for a in answer) == sorted(_norm(e) for e in expected)
    return _norm(answer) == _norm(expected)


def _one_of(answer: Any, expected: Any) -> bool:
    choices = expected if isinstance(expected, (list, tuple)) else [expected]
    if isinstance(answer, (list, tuple)):
        return any(_equals(a, c) for a in answer for c in choices)
    return any(_equals(answer, c) for c in choices)


def _contains(answer: Any, expected: Any) -> bool:
    needle = _norm(expected)
    if isinstance(answer, (list, tuple)):
        return any(needle in _norm(a) for a in answer)
    return needle in _norm(answer)


def _greater_than(answer: Any, expected: Any) -> bool:
    a, b = _number(answer), _number(expected)
    return a is not None and b is not None and a > b


def _less_than(answer: Any, expected: Any) -> bool:
    a, b = _number(answer), _number(expected)
    return a is not None and b is not None and a < b


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "not_equals": lambda a, e: not _equals(a, e),
    "one_of": _one_of,
    "contains": _contains,
    "not_contains": lambda a, e: not _contains(a, e),
    "greater_than": _greater_than,
    "less_than": _less_than,
    "starts_with": lambda a, e: _norm(a).startswith(_norm(e)),
    "ends_with": lambda a, e: _norm(a).endswith(_norm(e)),
    "is_answered": lambda a, _e: not is_unanswered(a),
    "is_empty": lambda a, _e: is_empty(a),
    "is_not_empty": lambda a, _e: not is_empty(a),
}


def compare(operator: str, answer: Any, expected: Any) -> bool:
    try:
        op = OPERATORS[operator]
    except KeyError as exc:
        raise ValueError(f"Unsupported condition operator '{operator}'") from exc
    return op(answer, expected)
