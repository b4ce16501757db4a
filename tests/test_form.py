import asyncio

import pytest

from cardflow.engine.compiler import decompile
from cardflow.engine.errors import SubmissionError, ValidationError
from cardflow.engine.form import CardForm, CardTimer, FormStatus
from cardflow.engine.session import FormSessionController
from cardflow.engine.tokens import InMemoryTokenStore
from cardflow.engine.types import PROFILE_CONFIG_ADAPTER, FileReference, FormField, Graph, SessionPayload


class MemoryStore:
    def __init__(self, existing=None):
        self.sessions = dict(existing or {})
        self.updates = []
        self.completed = []

    async def create_session(self, form_id):
        payload = SessionPayload(session_token="tok", form_id=form_id)
        self.sessions["tok"] = payload
        return payload

    async def get_session(self, form_id, token):
        return self.sessions[token]

    async def update_session(self, form_id, token, current_index, partial_data):
        self.updates.append((current_index, dict(partial_data)))

    async def complete_session(self, form_id, token):
        self.completed.append(token)


class Submitter:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def submit(self, form_id, answers, session_token=None):
        self.calls.append((form_id, dict(answers), session_token))
        if self.error:
            raise self.error
        return {"id": "sub-1"}


class Analytics:
    def __init__(self):
        self.events = []

    async def track_card_time(self, form_id, *, token, card_id, time_seconds):
        self.events.append((card_id, time_seconds))


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _form(fields, store=None, tokens=None, **kwargs):
    store = store if store is not None else MemoryStore()
    session = FormSessionController("f1", store, tokens or InMemoryTokenStore())
    return CardForm.from_graph("f1", decompile(fields), session=session, **kwargs), store


def test_required_field_blocks_next(survey_fields):
    async def scenario():
        form, _ = _form(survey_fields)
        await form.start()
        with pytest.raises(ValidationError) as exc:
            form.go_next()
        return form, exc.value

    form, error = asyncio.run(scenario())
    assert error.field_id == "name"
    assert form.error == "What is your name? is required"
    assert form.current_field.id == "name"


def test_branch_no_skips_to_contact_and_pipes_label(survey_fields):
    async def scenario():
        form, store = _form(survey_fields)
        await form.start()
        form.set_answer("name", "Sam")
        assert form.go_next()
        assert form.current_field.label == "Do you like pets, Sam?"
        form.set_answer("likes_pets", "no")
        assert form.go_next()
        await form.drain()
        return form, store

    form, store = asyncio.run(scenario())
    assert form.current_field.id == "contact"
    assert form.is_last
    assert form.total_cards == 4
    # both moves happened before the first request went out, so they coalesced;
    # the stored index is a schema position, not a visible one
    assert store.updates == [(4, {"name": "Sam", "likes_pets": "no"})]


def test_yes_reveals_conditional_card(survey_fields):
    async def scenario():
        form, _ = _form(survey_fields)
        await form.start()
        form.set_answer("name", "Sam")
        form.go_next()
        form.set_answer("likes_pets", "yes")
        form.go_next()
        return form

    form = asyncio.run(scenario())
    assert form.current_field.id == "pet_kind"
    assert form.total_cards == 5
    assert form.current_visible_index == 2


def test_go_back_and_first_card(survey_fields):
    async def scenario():
        form, _ = _form(survey_fields)
        await form.start()
        assert form.is_first
        assert form.go_back() is False
        form.set_answer("name", "Sam")
        form.go_next()
        assert form.go_back()
        return form

    form = asyncio.run(scenario())
    assert form.current_field.id == "name"


def test_hiding_current_card_clamps_back(survey_fields):
    async def scenario():
        form, _ = _form(survey_fields)
        await form.start()
        form.set_answer("name", "Sam")
        form.go_next()
        form.set_answer("likes_pets", "yes")
        form.go_next()
        form.set_answer("likes_pets", "no")   # pet_kind disappears under us
        return form

    form = asyncio.run(scenario())
    assert form.current_field.id == "likes_pets"


def test_restore_merges_stored_answers(survey_fields):
    stored = SessionPayload(session_token="old", form_id="f1", current_card_index=3,
                            partial_data={"name": "Ana", "likes_pets": "yes"})
    tokens = InMemoryTokenStore()
    tokens.set("f1", "old")

    async def scenario():
        form, _ = _form(survey_fields, store=MemoryStore({"old": stored}), tokens=tokens)
        await form.start()
        return form

    form = asyncio.run(scenario())
    assert form.answers == {"name": "Ana", "likes_pets": "yes"}
    assert form.current_field.id == "pet_name"


def test_set_answer_helpers(survey_fields):
    form, _ = _form(survey_fields + [FormField(id="cv", type="file", label="CV")])

    with pytest.raises(KeyError):
        form.set_answer("nope", 1)

    form.toggle_option("likes_pets", "yes", True)
    form.toggle_option("likes_pets", "no", True)
    form.toggle_option("likes_pets", "yes", False)
    assert form.answers["likes_pets"] == ["no"]

    form.attach_file("cv", FileReference(url="https://files.example.com/a.pdf", original_name="a.pdf"))
    assert form.answers["cv"] == {"url": "https://files.example.com/a.pdf", "originalName": "a.pdf", "fieldId": "cv"}


def test_submit_validates_required_cards_on_the_path(survey_fields):
    async def scenario():
        form, _ = _form(survey_fields)
        await form.start()
        form.set_answer("name", "Sam")
        with pytest.raises(ValidationError):
            await form.handle_submit()
        return form

    form = asyncio.run(scenario())
    assert form.error == "Please fill in all required fields"
    assert form.status is FormStatus.IDLE


def test_submit_scores_submits_and_completes(survey_fields):
    profile = PROFILE_CONFIG_ADAPTER.validate_python({
        "type": "percentage",
        "fieldScoring": [{"fieldId": "likes_pets", "scoring": [{"answer": "yes", "points": 10}]}],
    })
    submitter = Submitter()
    tokens = InMemoryTokenStore()

    async def scenario():
        form, store = _form(survey_fields, tokens=tokens, profile_config=profile, submitter=submitter)
        await form.start()
        form.set_answer("name", "Sam")
        form.set_answer("likes_pets", "yes")
        form.set_answer("pet_kind", "cat")
        result = await form.handle_submit()
        await form.drain()
        return form, store, result

    form, store, result = asyncio.run(scenario())
    assert form.status is FormStatus.SUCCESS
    assert result.result.score == 100
    assert form.profile_result is result
    assert submitter.calls == [("f1", {"name": "Sam", "likes_pets": "yes", "pet_kind": "cat"}, "tok")]
    assert store.completed == ["tok"]
    assert tokens.get("f1") is None
    assert form.success_message == "Thank you! Your response has been recorded."


def test_required_card_jumped_over_does_not_block_submit():
    q = FormField.model_validate({
        "id": "q", "type": "radio", "label": "Q", "required": True, "options": ["yes", "no"],
        "branchRules": [{"targetFieldId": "r", "value": "yes"}],
    })
    fields = [q, FormField(id="a", label="A", required=True), FormField(id="r", label="R")]
    submitter = Submitter()

    async def scenario():
        form, _ = _form(fields, submitter=submitter)
        await form.start()
        form.set_answer("q", "yes")
        form.go_next()
        landed = form.current_field.id
        await form.handle_submit()
        return form, landed

    form, landed = asyncio.run(scenario())
    assert landed == "r"
    assert form.status is FormStatus.SUCCESS
    assert submitter.calls == [("f1", {"q": "yes"}, "tok")]


def test_required_card_on_the_path_still_blocks_submit():
    q = FormField.model_validate({
        "id": "q", "type": "radio", "label": "Q", "options": ["yes", "no"],
        "branchRules": [{"targetFieldId": "r", "value": "yes"}],
    })
    fields = [q, FormField(id="a", label="A", required=True), FormField(id="r", label="R")]

    async def scenario():
        form, _ = _form(fields)
        await form.start()
        form.set_answer("q", "no")
        with pytest.raises(ValidationError) as exc:
            await form.handle_submit()
        return exc.value

    assert asyncio.run(scenario()).field_id == "a"


def test_unexpected_submitter_failure_returns_to_idle(survey_fields):
    submitter = Submitter(error=RuntimeError("boom"))

    async def scenario():
        form, _ = _form(survey_fields, submitter=submitter)
        await form.start()
        form.set_answer("name", "Sam")
        form.set_answer("likes_pets", "no")
        with pytest.raises(RuntimeError):
            await form.handle_submit()
        return form

    assert asyncio.run(scenario()).status is FormStatus.IDLE

def test_submit_failure_keeps_answers_and_session(survey_fields):
    submitter = Submitter(error=SubmissionError("Server said no", status_code=500))

    async def scenario():
        form, store = _form(survey_fields, submitter=submitter)
        await form.start()
        form.set_answer("name", "Sam")
        form.set_answer("likes_pets", "no")
        with pytest.raises(SubmissionError):
            await form.handle_submit()
        return form, store

    form, store = asyncio.run(scenario())
    assert form.status is FormStatus.IDLE
    assert form.error == "Server said no"
    assert form.answers["name"] == "Sam"
    assert store.completed == []


def test_success_card_text_is_the_success_message():
    graph = Graph.model_validate({
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "q", "type": "question", "data": {"field": {"id": "q", "label": "Q"}}},
            {"id": "ok", "type": "statement", "data": {"statementText": "See you soon", "isSuccessCard": True}},
            {"id": "end", "type": "end"},
        ],
        "edges": [],
    })
    form = CardForm.from_graph("f1", graph)
    assert form.success_message == "See you soon"
    assert [f.id for f in form.schema] == ["q"]


def test_card_time_is_reported_per_card(survey_fields):
    clock = Clock()
    analytics = Analytics()

    async def scenario():
        form, _ = _form(survey_fields, analytics=analytics, clock=clock)
        await form.start()
        form.set_answer("name", "Sam")
        clock.now = 4.6
        form.go_next()                  # name: 5s
        await form.drain()
        form.set_answer("likes_pets", "no")
        clock.now = 5.0
        form.go_next()                  # likes_pets: 0s, dropped
        await form.drain()

    asyncio.run(scenario())
    assert analytics.events == [("name", 5)]


def test_card_timer_skips_while_request_pending():
    sent = []
    gate = None

    class SlowSink:
        async def track_card_time(self, form_id, *, token, card_id, time_seconds):
            sent.append(card_id)
            await gate.wait()

    clock = Clock()
    timer = CardTimer("f1", SlowSink(), clock=clock)

    async def scenario():
        nonlocal gate
        gate = asyncio.Event()
        timer.enter("a", "tok")
        clock.now = 2
        timer.enter("b", "tok")
        await asyncio.sleep(0)
        clock.now = 4
        timer.enter("c", "tok")         # "a" still in flight, "b" is dropped
        gate.set()
        await timer.drain()

    asyncio.run(scenario())
    assert sent == ["a"]
