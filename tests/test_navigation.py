import itertools

from cardflow.engine.navigation import (
    TERMINAL,
    branch_target,
    clamp_to_visible,
    missing_required,
    next_index,
    prev_index,
    traversed_fields,
)
from cardflow.engine.types import FormField
from cardflow.engine.visibility import visible


def _linear(n):
    return [FormField(id=f"f{i}", label=f"Field {i}") for i in range(n)]


def test_branch_skips_fields_in_between():
    q = FormField.model_validate({
        "id": "q", "type": "radio", "label": "Q", "options": ["yes", "no"],
        "branchRules": [{"targetFieldId": "r", "value": "yes"}],
    })
    fields = [q, FormField(id="a", label="A"), FormField(id="b", label="B"), FormField(id="r", label="R")]
    answers = {"q": "yes"}

    assert next_index(0, fields, answers) == 3
    assert next_index(0, fields, {"q": "no"}) == 1


def test_hidden_branch_target_falls_back_to_sequential():
    q = FormField.model_validate({
        "id": "q", "label": "Q",
        "branchRules": [{"targetFieldId": "r", "value": "yes"}],
    })
    fields = [q, FormField(id="a", label="A")]  # r is not visible
    assert next_index(0, fields, {"q": "yes"}) == 1


def test_branch_with_conditions_and_list_value():
    q = FormField.model_validate({
        "id": "q", "type": "checkbox", "label": "Q", "options": ["a", "b", "c"],
        "branchRules": [
            {"targetFieldId": "x", "conditions": {"fieldId": "age", "operator": "less_than", "value": 18}},
            {"targetFieldId": "y", "value": ["b", "c"]},
        ],
    })
    assert branch_target(q, {"q": ["a"], "age": 12}) == "x"
    assert branch_target(q, {"q": ["c"], "age": 40}) == "y"
    assert branch_target(q, {"q": ["a"], "age": 40}) is None


def test_next_past_end_is_terminal():
    fields = _linear(2)
    assert next_index(1, fields, {}) == TERMINAL
    assert next_index(5, fields, {}) == TERMINAL


def test_prev_is_noop_at_start():
    assert prev_index(0) == 0
    assert prev_index(3) == 2


def test_clamp_prefers_nearest_earlier_visible(survey_fields):
    shown = visible(survey_fields, {"likes_pets": "no"})
    # stored index 2 is pet_kind, hidden now: resolve to likes_pets
    assert shown[clamp_to_visible(survey_fields, shown, 2)].id == "likes_pets"
    assert clamp_to_visible(survey_fields, shown, 99) == len(shown) - 1
    assert clamp_to_visible(survey_fields, shown, -4) == 0
    assert clamp_to_visible(survey_fields, [], 3) == 0


def test_index_always_in_range(survey_fields):
    answer_sets = [{}, {"likes_pets": "yes"}, {"likes_pets": "no"}, {"likes_pets": "yes", "pet_kind": "cat"}]
    for answers, stored in itertools.product(answer_sets, range(-2, 8)):
        shown = visible(survey_fields, answers)
        idx = clamp_to_visible(survey_fields, shown, stored)
        assert 0 <= idx < len(shown)
        nxt = next_index(idx, shown, answers)
        assert nxt == TERMINAL or 0 <= nxt < len(shown)
        assert 0 <= prev_index(idx) < len(shown)


def test_missing_required_ignores_statements_and_accepts_zero():
    fields = [
        FormField(id="s", type="statement", label="Hello", required=True),
        FormField(id="n", label="Number", required=True),
        FormField(id="t", label="Text", required=True),
    ]
    missing = missing_required(fields, {"n": 0, "t": "   "})
    assert [f.id for f in missing] == ["t"]


def _branching(target="r"):
    q = FormField.model_validate({
        "id": "q", "type": "radio", "label": "Q", "options": ["yes", "no"],
        "branchRules": [{"targetFieldId": target, "value": "yes"}],
    })
    return [q, FormField(id="a", label="A", required=True), FormField(id="r", label="R")]


def test_traversed_fields_follow_branches():
    fields = _branching()
    assert [f.id for f in traversed_fields(fields, {"q": "yes"})] == ["q", "r"]
    assert [f.id for f in traversed_fields(fields, {"q": "no"})] == ["q", "a", "r"]
    assert [f.id for f in traversed_fields(fields, {})] == ["q", "a", "r"]
    assert traversed_fields([], {}) == []

    # jumped-over required cards are not missing
    assert missing_required(traversed_fields(fields, {"q": "yes"}), {"q": "yes"}) == []


def test_traversed_fields_stop_on_a_loop():
    fields = _branching(target="q")
    assert [f.id for f in traversed_fields(fields, {"q": "yes"})] == ["q"]
