from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter
from sqlalchemy.orm import Session

from cardflow.db.models import FormTemplate
from cardflow.engine.compiler import compile_graph, decompile, validate_graph
from cardflow.engine.types import PROFILE_CONFIG_ADAPTER, FormField, Graph

logger = logging.getLogger(__name__)

_FIELDS = TypeAdapter(List[FormField])


class TemplateError(ValueError):
    """Authoring problem with a template; carries every message found."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


def save_template(
    db: Session,
    form_id: str,
    *,
    title: str = "",
    fields: Optional[List[FormField]] = None,
    graph: Optional[Graph] = None,
    profile_config=None,
    success_message: Optional[str] = None,
) -> FormTemplate:
    """
    Create or replace a template. When a graph is given it wins: it is
    validated and the flat schema is compiled from it.
    """
    if graph is not None:
        errors = validate_graph(graph)
        if errors:
            raise TemplateError(errors)
        fields = compile_graph(graph).fields
    if fields is None:
        raise TemplateError(["Either 'schema' or 'graph' is required"])

    ids = [f.id for f in fields]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        raise TemplateError([f"Duplicate field id(s): {', '.join(dupes)}"])

    row = db.get(FormTemplate, form_id)
    if row is None:
        row = FormTemplate(id=form_id)
        db.add(row)
    row.title = title
    row.schema = [f.to_wire() for f in fields]
    row.graph = graph.to_wire() if graph is not None else None
    row.profile_config = profile_config.to_wire() if profile_config is not None else None
    row.success_message = success_message
    db.flush()
    logger.info("Saved template %s (%d fields, graph=%s)", form_id, len(fields), graph is not None)
    return row


def get_template(db: Session, form_id: str) -> Optional[FormTemplate]:
    return db.get(FormTemplate, form_id)


def load_fields(row: FormTemplate) -> List[FormField]:
    return _FIELDS.validate_python(row.schema or [])


def load_graph(row: FormTemplate) -> Graph:
    if row.graph:
        return Graph.model_validate(row.graph)
    return decompile(load_fields(row))


def load_profile_config(row: FormTemplate):
    if not row.profile_config:
        return None
    return PROFILE_CONFIG_ADAPTER.validate_python(row.profile_config)


def template_to_wire(row: FormTemplate) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "id": row.id,
        "title": row.title,
        "schema": row.schema or [],
    }
    if row.profile_config:
        body["profileEstimation"] = row.profile_config
    if row.success_message:
        body["successMessage"] = row.success_message
    return body
