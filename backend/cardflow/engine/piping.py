"""
Piping: {{token}} substitution of earlier answers into card text.

    "Hi {{name}}"              -> "Hi Sam"
    "Hi {{name:there}}"        -> "Hi there"   (unanswered, fallback used)

A token resolves by the field's pipingKey first, then by its id. Unresolved
tokens render as the fallback or "" and never as raw {{...}}; authoring tools
use extract_piping_references to flag dangling ones.
"""
from __future__ import annotations

import logging
import re
from typing import Any, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from cardflow.engine.conditions import as_text, is_empty
from cardflow.engine.types import FormField
from cardflow.engine.visibility import rule_matches

logger = logging.getLogger(__name__)

_PIPE_RE = re.compile(r"\{\{\s*([^}:]+?)\s*(?::([^}]*))?\}\}")


class PipingReference(BaseModel):
    token: str
    field_id: str
    fallback: Optional[str] = None
    exists: bool
    value: Any = None
    resolved: str
    field_label: Optional[str] = None


def resolve_field_by_token(token: str, fields: Sequence[FormField]) -> Optional[FormField]:
    token = token.strip()
    for field in fields:
        if field.piping_key and field.piping_key.strip() == token:
            return field
    for field in fields:
        if field.id == token:
            return field
    return None


def piping_display_token(field: FormField) -> str:
    return field.piping_key.strip() if field.piping_key and field.piping_key.strip() else field.id


def _resolve(token: str, fallback: Optional[str], answers: Mapping[str, Any], fields: Sequence[FormField]):
    field = resolve_field_by_token(token, fields)
    value = answers.get(field.id) if field else None
    resolved = (fallback or "") if is_empty(value) else as_text(value)
    return field, value, resolved


def apply_piping(text: str, answers: Mapping[str, Any], fields: Sequence[FormField]) -> str:
    if not text or "{{" not in text:
        return text

    def _sub(match: re.Match) -> str:
        token, fallback = match.group(1), match.group(2)
        field, _value, resolved = _resolve(token, fallback, answers, fields)
        if field is None:
            logger.debug("Piping token '%s' does not match any field", token)
        return resolved

    return _PIPE_RE.sub(_sub, text)


def extract_piping_references(
    text: str,
    answers: Mapping[str, Any],
    fields: Sequence[FormField],
) -> List[PipingReference]:
    refs: List[PipingReference] = []
    seen = set()
    for match in _PIPE_RE.finditer(text or ""):
        token, fallback = match.group(1).strip(), match.group(2)
        key = (token, fallback or "")
        if key in seen:
            continue
        seen.add(key)

        field, value, resolved = _resolve(token, fallback, answers, fields)
        refs.append(
            PipingReference(
                token=token,
                field_id=field.id if field else token,
                fallback=fallback,
                exists=field is not None,
                value=value,
                resolved=resolved,
                field_label=field.label if field else None,
            )
        )
    return refs


def dynamic_label(field: FormField, answers: Mapping[str, Any]) -> str:
    for rule in field.dynamic_labels:
        if rule_matches(rule.conditions, answers):
            return rule.label
    return field.label


def pipe_field(field: FormField, answers: Mapping[str, Any], fields: Sequence[FormField]) -> FormField:
    """Display copy of `field`: dynamic label first, then piping on label and placeholder."""
    label = dynamic_label(field, answers)
    placeholder = field.placeholder
    if field.enable_piping:
        label = apply_piping(label, answers, fields)
        if placeholder:
            placeholder = apply_piping(placeholder, answers, fields)
    if label == field.label and placeholder == field.placeholder:
        return field
    return field.model_copy(update={"label": label, "placeholder": placeholder})
