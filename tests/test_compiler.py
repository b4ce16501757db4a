from cardflow.engine.compiler import FIRST_CARD_Y, LAYOUT_X, STEP_Y, compile_graph, decompile, validate_graph
from cardflow.engine.types import BranchRule, Graph


def _authored_graph():
    # node order differs from edge order on purpose: source order wins
    return Graph.model_validate({
        "nodes": [
            {"id": "start", "type": "start", "position": {"x": 0, "y": 0}},
            {"id": "q1", "type": "question", "data": {
                "field": {"id": "q1", "type": "radio", "label": "Ready?", "required": True, "options": ["yes", "no"]}}},
            {"id": "intro", "type": "statement", "data": {"statementText": "Some context before q2"}},
            {"id": "q2", "type": "question", "data": {"field": {"id": "q2", "type": "text", "label": "Why not?"}}},
            {"id": "done", "type": "statement", "data": {"statementText": "All done, thanks!", "isSuccessCard": True}},
            {"id": "end", "type": "end"},
        ],
        "edges": [
            {"id": "e-start-q1", "source": "start", "target": "q1"},
            {"id": "e-q1-done", "source": "q1", "target": "done", "label": "yes"},
            {"id": "e-q1-intro", "source": "q1", "target": "intro"},
            {"id": "e-intro-q2", "source": "intro", "target": "q2"},
            {"id": "e-q2-done", "source": "q2", "target": "done"},
            {"id": "e-done-end", "source": "done", "target": "end"},
        ],
    })


def test_compile_keeps_source_order_and_extracts_success_card():
    compiled = compile_graph(_authored_graph())

    assert [f.id for f in compiled.fields] == ["q1", "intro", "q2"]
    assert compiled.fields[1].type == "statement"
    assert compiled.fields[1].label == "Some context before q2"
    assert compiled.success_node is not None
    assert compiled.success_node.id == "done"


def test_labelled_edges_become_branch_rules():
    compiled = compile_graph(_authored_graph())

    q1 = compiled.fields[0]
    assert q1.branch_rules == [BranchRule(target_field_id="done", value="yes")]
    assert [e.id for e in compiled.routes["q1"]] == ["e-q1-done"]


def test_no_success_card_yields_none(survey_fields):
    compiled = compile_graph(decompile(survey_fields))
    assert compiled.success_node is None


def test_round_trip_is_stable():
    first = compile_graph(_authored_graph()).fields
    again = compile_graph(decompile(first)).fields
    assert again == first
    assert compile_graph(decompile(again)).fields == first


def test_round_trip_of_schema(survey_fields):
    assert compile_graph(decompile(survey_fields)).fields == survey_fields


def test_decompile_layout_and_edges(survey_fields):
    graph = decompile(survey_fields)

    assert graph.nodes[0].type == "start"
    assert graph.nodes[-1].type == "end"
    assert (graph.nodes[0].position.x, graph.nodes[0].position.y) == (LAYOUT_X, 0)
    assert graph.nodes[1].position.y == FIRST_CARD_Y
    assert graph.nodes[2].position.y == FIRST_CARD_Y + STEP_Y
    assert [e.id for e in graph.edges][:2] == ["e-start-name", "e-name-likes_pets"]
    assert graph.edges[-1].target == "end"
    assert validate_graph(graph) == []


def test_validate_graph_reports_problems():
    graph = Graph.model_validate({
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "q1", "type": "question", "data": {"field": {"id": "q1", "type": "select", "label": "Pick"}}},
            {"id": "q1", "type": "question"},
            {"id": "end", "type": "end"},
        ],
        "edges": [
            {"id": "e1", "source": "start", "target": "q1"},
            {"id": "e2", "source": "q1", "target": "nowhere"},
        ],
    })
    errors = validate_graph(graph)

    assert any("duplicate node id" in e for e in errors)
    assert any("needs at least one option" in e for e in errors)
    assert any("missing 'data.field'" in e for e in errors)
    assert any('"nowhere"' in e for e in errors)


def test_validate_graph_requires_path_to_end():
    graph = Graph.model_validate({
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "q1", "type": "question", "data": {"field": {"id": "q1", "type": "text", "label": "Hi"}}},
            {"id": "end", "type": "end"},
        ],
        "edges": [{"id": "e1", "source": "start", "target": "q1"}],
    })
    assert validate_graph(graph) == ["No path from start node to end node (graph is disconnected)"]
