"""
Graph compiler: authored flowchart <-> flat runtime schema.

compile_graph walks nodes in authored (source) order; that order is the
sequential fallback whenever no branch applies. Edges never reorder the
flat list. Labelled edges are routing hints: they are returned in
CompiledForm.routes and folded into the source field's branch rules.

decompile builds the default linear graph for a schema (one node per field,
start -> f1 -> ... -> fn -> end) and satisfies

    compile_graph(decompile(fields)).fields == fields
"""
from __future__ import annotations

import logging
from collections import deque
from typing import Dict, List, Optional, Sequence

from cardflow.engine.types import (
    END_NODE_ID,
    OPTION_FIELD_TYPES,
    START_NODE_ID,
    BranchRule,
    CompiledForm,
    Edge,
    EndNode,
    FormField,
    Graph,
    NodeData,
    Position,
    QuestionNode,
    StartNode,
    StatementNode,
    Viewport,
)

logger = logging.getLogger(__name__)

# canonical layout: start at (400, 0), first card at y=100, then +120 per card
LAYOUT_X = 400
FIRST_CARD_Y = 100
STEP_Y = 120


def edge_id(source: str, target: str, n: int = 0) -> str:
    return f"e-{source}-{target}" if n == 0 else f"e-{source}-{target}-{n}"


def _question_field(node: QuestionNode) -> Optional[FormField]:
    data = node.data
    if data.field is None:
        logger.warning("Question node %s has no field payload, skipping", node.id)
        return None
    field = data.field
    update = {}
    if data.field_type and data.field_type != field.type:
        update["type"] = data.field_type
    if data.media is not None and field.media is None:
        update["media"] = data.media
    return field.model_copy(update=update) if update else field


def _statement_field(node: StatementNode) -> FormField:
    data = node.data
    if data.field is not None:
        return data.field
    return FormField(
        id=data.field_id or node.id,
        type="statement",
        label=data.statement_text or data.label or "Statement",
        placeholder=data.label,
        required=False,
        media=data.media,
    )


def _edge_rule(edge: Edge) -> Optional[BranchRule]:
    if edge.condition is not None:
        return BranchRule(target_field_id=edge.target, conditions=edge.condition)
    if edge.label:
        return BranchRule(target_field_id=edge.target, value=edge.label)
    return None


def compile_graph(graph: Graph) -> CompiledForm:
    fields: List[FormField] = []
    success_node: Optional[StatementNode] = None
    node_to_field: Dict[str, int] = {}

    for node in graph.nodes:
        if isinstance(node, QuestionNode):
            field = _question_field(node)
        elif isinstance(node, StatementNode):
            if node.data.is_success_card:
                if success_node is None:
                    success_node = node
                continue
            field = _statement_field(node)
        else:
            continue  # start / end
        if field is None:
            continue
        node_to_field[node.id] = len(fields)
        fields.append(field)

    # node ids and field ids usually match; edges address node ids
    node_field_ids = {nid: fields[i].id for nid, i in node_to_field.items()}

    routes: Dict[str, List[Edge]] = {}
    for edge in graph.edges:
        rule = _edge_rule(edge)
        if rule is None:
            continue
        routes.setdefault(edge.source, []).append(edge)
        pos = node_to_field.get(edge.source)
        if pos is None:
            continue
        rule.target_field_id = node_field_ids.get(edge.target, edge.target)
        field = fields[pos]
        if rule in field.branch_rules:
            continue
        fields[pos] = field.model_copy(update={"branch_rules": [*field.branch_rules, rule]})

    logger.debug("Compiled graph: %d fields, success card=%s", len(fields), success_node.id if success_node else None)
    return CompiledForm(fields=fields, success_node=success_node, routes=routes)


def decompile(fields: Sequence[FormField], viewport: Optional[Viewport] = None) -> Graph:
    nodes: list = [StartNode(position=Position(x=LAYOUT_X, y=0))]
    edges: List[Edge] = []
    y = FIRST_CARD_Y
    prev = START_NODE_ID

    for field in fields:
        if field.type == "statement":
            data = NodeData(
                field_id=field.id,
                label=field.label,
                statement_text=field.label,
                is_success_card=False,
                media=field.media,
                field=field,
            )
            nodes.append(StatementNode(id=field.id, position=Position(x=LAYOUT_X, y=y), data=data))
        else:
            data = NodeData(
                field_id=field.id,
                label=field.label,
                field_type=field.type,
                media=field.media,
                field=field,
            )
            nodes.append(QuestionNode(id=field.id, position=Position(x=LAYOUT_X, y=y), data=data))
        edges.append(Edge(id=edge_id(prev, field.id), source=prev, target=field.id))
        prev = field.id
        y += STEP_Y

    nodes.append(EndNode(position=Position(x=LAYOUT_X, y=y)))
    edges.append(Edge(id=edge_id(prev, END_NODE_ID), source=prev, target=END_NODE_ID))
    return Graph(nodes=nodes, edges=edges, viewport=viewport)


def validate_graph(graph: Graph) -> List[str]:
    """Authoring checks. An empty list means every consumer can load the graph."""
    errors: List[str] = []
    node_ids = set()
    starts = ends = 0

    for i, node in enumerate(graph.nodes):
        if not node.id:
            errors.append(f"nodes[{i}]: missing id")
        elif node.id in node_ids:
            errors.append(f'nodes[{i}]: duplicate node id "{node.id}"')
        node_ids.add(node.id)

        if isinstance(node, StartNode):
            starts += 1
            if node.id != START_NODE_ID:
                errors.append(f'Node with type "start" must have id "{START_NODE_ID}" (found "{node.id}")')
        elif isinstance(node, EndNode):
            ends += 1
            if node.id != END_NODE_ID:
                errors.append(f'Node with type "end" must have id "{END_NODE_ID}" (found "{node.id}")')
        elif isinstance(node, QuestionNode):
            field = node.data.field
            if field is None:
                errors.append(f"nodes[{i}] (question): missing 'data.field'")
            elif field.type in OPTION_FIELD_TYPES and not field.options:
                errors.append(f'nodes[{i}].data.field: type "{field.type}" needs at least one option')
        elif isinstance(node, StatementNode):
            if node.data.field is None and node.data.statement_text is None:
                errors.append(f"nodes[{i}] (statement): missing data.statementText")

    if starts != 1:
        errors.append(f'Exactly one "start" node required (found {starts})')
    if ends != 1:
        errors.append(f'Exactly one "end" node required (found {ends})')

    out_edges: Dict[str, List[str]] = {}
    for i, edge in enumerate(graph.edges):
        if edge.source not in node_ids:
            errors.append(f'edges[{i}]: source "{edge.source}" does not match any node id')
        if edge.target not in node_ids:
            errors.append(f'edges[{i}]: target "{edge.target}" does not match any node id')
        out_edges.setdefault(edge.source, []).append(edge.target)

    successes = [n for n in graph.nodes if isinstance(n, StatementNode) and n.data.is_success_card]
    if len(successes) > 1:
        errors.append(f"At most one success card allowed (found {len(successes)})")

    if not errors:
        # end must be reachable from start
        seen = {START_NODE_ID}
        queue = deque([START_NODE_ID])
        while queue:
            for target in out_edges.get(queue.popleft(), []):
                if target not in seen:
                    seen.add(target)
                    queue.append(target)
        if END_NODE_ID not in seen:
            errors.append("No path from start node to end node (graph is disconnected)")

    return errors
