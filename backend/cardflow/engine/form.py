"""
CardForm: the runtime surface a renderer talks to.

The renderer reads schema / current_field / current_visible_index /
total_cards / is_first / is_last and calls set_answer, go_next, go_back and
handle_submit. It never evaluates visibility, branching, piping or scoring
itself.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from pydantic import BaseModel

from cardflow.core import config
from cardflow.engine.compiler import compile_graph
from cardflow.engine.errors import PersistenceError, RateLimitError, SubmissionError, ValidationError
from cardflow.engine.navigation import (
    TERMINAL,
    clamp_to_visible,
    missing_required,
    next_index,
    prev_index,
    schema_index,
    traversed_fields,
)
from cardflow.engine.piping import pipe_field
from cardflow.engine.profile import ProfileScorer, estimate_profile
from cardflow.engine.session import FormSessionController
from cardflow.engine.types import CompiledForm, FileReference, FormField, Graph, SessionPayload, StatementNode
from cardflow.engine.visibility import visible

logger = logging.getLogger(__name__)


class Submitter(Protocol):
    async def submit(self, form_id: str, answers: Mapping[str, Any], session_token: Optional[str] = None) -> Any: ...


class AnalyticsSink(Protocol):
    async def track_card_time(self, form_id: str, *, token: str, card_id: str, time_seconds: int) -> None: ...


class FormStatus(str, enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCESS = "success"


class CardTimer:
    """Per-card dwell time, reported fire-and-forget with at most one request in flight."""

    def __init__(
        self,
        form_id: str,
        sink: Optional[AnalyticsSink],
        *,
        clock: Callable[[], float] = time.monotonic,
        min_seconds: int = config.MIN_TRACKING_TIME_SECONDS,
    ):
        self.form_id = form_id
        self._sink = sink
        self._clock = clock
        self._min_seconds = min_seconds
        self._card_id: Optional[str] = None
        self._started: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    def enter(self, card_id: Optional[str], token: Optional[str]) -> None:
        if card_id == self._card_id:
            return
        self._report(token)
        self._card_id = card_id
        self._started = self._clock() if card_id else None

    def flush(self, token: Optional[str]) -> None:
        self._report(token)
        self._card_id = None
        self._started = None

    def _report(self, token: Optional[str]) -> None:
        if self._sink is None or not token or self._card_id is None or self._started is None:
            return
        seconds = round(self._clock() - self._started)
        if seconds < self._min_seconds:
            logger.debug("Skipping card time for %s (%ss < %ss)", self._card_id, seconds, self._min_seconds)
            return
        if self._task is not None and not self._task.done():
            logger.debug("Card time request already pending, skipping %s", self._card_id)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._task = loop.create_task(self._send(token, self._card_id, seconds))

    async def _send(self, token: str, card_id: str, seconds: int) -> None:
        try:
            await self._sink.track_card_time(self.form_id, token=token, card_id=card_id, time_seconds=seconds)
        except RateLimitError:
            logger.debug("Rate limited, skipping analytics for card %s", card_id)
        except PersistenceError as exc:
            logger.error("Analytics error for card %s: %s", card_id, exc)

    async def drain(self) -> None:
        if self._task is not None:
            await self._task


class CardForm:
    def __init__(
        self,
        form_id: str,
        compiled: CompiledForm,
        *,
        session: Optional[FormSessionController] = None,
        profile_config=None,
        scorer: Optional[ProfileScorer] = None,
        submitter: Optional[Submitter] = None,
        analytics: Optional[AnalyticsSink] = None,
        clock: Callable[[], float] = time.monotonic,
        success_message: Optional[str] = None,
    ):
        self.form_id = form_id
        self.session = session
        self.profile_config = profile_config
        self.status = FormStatus.IDLE
        self.error: Optional[str] = None
        self.profile_result = None

        self._compiled = compiled
        self._field_ids = {f.id for f in compiled.fields}
        self._answers: Dict[str, Any] = {}
        self._current_index = 0          # position in the full schema, as persisted
        self._scorer = scorer
        self._submitter = submitter
        self._success_message = success_message
        self._timer = CardTimer(form_id, analytics, clock=clock)

    @classmethod
    def from_graph(cls, form_id: str, graph: Graph, **kwargs) -> "CardForm":
        return cls(form_id, compile_graph(graph), **kwargs)

    # ---- derived state ----

    @property
    def schema(self) -> List[FormField]:
        return list(self._compiled.fields)

    @property
    def success_card(self) -> Optional[StatementNode]:
        return self._compiled.success_node

    @property
    def success_message(self) -> str:
        node = self._compiled.success_node
        if node is not None:
            text = node.data.statement_text or node.data.label or (node.data.field.label if node.data.field else None)
            if text:
                return text
        return self._success_message or config.DEFAULT_SUCCESS_MESSAGE

    @property
    def answers(self) -> Dict[str, Any]:
        return dict(self._answers)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def visible_fields(self) -> List[FormField]:
        return visible(self._compiled.fields, self._answers)

    @property
    def current_visible_index(self) -> int:
        return clamp_to_visible(self._compiled.fields, self.visible_fields, self._current_index)

    @property
    def current_field(self) -> Optional[FormField]:
        fields = self.visible_fields
        if not fields:
            return None
        field = fields[clamp_to_visible(self._compiled.fields, fields, self._current_index)]
        return pipe_field(field, self._answers, self._compiled.fields)

    @property
    def total_cards(self) -> int:
        return len(self.visible_fields)

    @property
    def is_first(self) -> bool:
        return self.current_visible_index == 0

    @property
    def is_last(self) -> bool:
        return self.current_visible_index >= self.total_cards - 1

    @property
    def session_error(self) -> Optional[str]:
        return self.session.session_error if self.session else None

    # ---- lifecycle ----

    async def start(self) -> None:
        if self.session is not None:
            payload = await self.session.start()
            if payload is not None:
                self._restore(payload)
        self._track_current()

    def _restore(self, payload: SessionPayload) -> None:
        # answers typed before the restore finished win over the stored copy
        self._answers = {**payload.partial_data, **self._answers}
        self._current_index = max(0, payload.current_card_index)
        logger.debug("Restored %s at index %s with %d answers", self.form_id, self._current_index, len(self._answers))

    async def drain(self) -> None:
        """Wait for fire-and-forget work (checkpoints, telemetry) to settle."""
        if self.session is not None:
            await self.session.drain()
        await self._timer.drain()

    # ---- input handlers ----

    def set_answer(self, field_id: str, value: Any) -> None:
        if field_id not in self._field_ids:
            raise KeyError(f"Unknown field '{field_id}'")
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json", by_alias=True, exclude_none=True)
        self._answers[field_id] = value
        self.error = None

    def toggle_option(self, field_id: str, value: str, checked: bool) -> None:
        current = list(self._answers.get(field_id) or [])
        if checked and value not in current:
            current.append(value)
        elif not checked and value in current:
            current.remove(value)
        self.set_answer(field_id, current)

    def attach_file(self, field_id: str, ref: FileReference) -> None:
        if ref.field_id is None:
            ref = ref.model_copy(update={"field_id": field_id})
        self.set_answer(field_id, ref)

    # ---- navigation ----

    def _require(self, fields: List[FormField], message: Optional[str] = None) -> None:
        missing = missing_required(fields, self._answers)
        if not missing:
            return
        first = pipe_field(missing[0], self._answers, self._compiled.fields)
        self.error = message or f"{first.label} is required"
        raise ValidationError(self.error, field_id=first.id)

    def go_next(self) -> bool:
        fields = self.visible_fields
        if not fields:
            return False
        current = clamp_to_visible(self._compiled.fields, fields, self._current_index)
        if current >= len(fields) - 1:
            logger.debug("Already at last card of %s", self.form_id)
            return False

        self._require([fields[current]])

        nxt = next_index(current, fields, self._answers)
        if nxt == TERMINAL:
            return False
        self._move_to(fields[nxt])
        return True

    def go_back(self) -> bool:
        fields = self.visible_fields
        if not fields:
            return False
        current = clamp_to_visible(self._compiled.fields, fields, self._current_index)
        prev = prev_index(current)
        if prev == current:
            logger.debug("Already at first card of %s", self.form_id)
            return False
        self._move_to(fields[prev])
        return True

    def _move_to(self, field: FormField) -> None:
        self._current_index = schema_index(self._compiled.fields, field.id)
        self.error = None
        if self.session is not None:
            self.session.checkpoint(self._current_index, self._answers)
        self._track_current()

    def _track_current(self) -> None:
        field = self.current_field
        token = self.session.token if self.session else None
        self._timer.enter(field.id if field else None, token)

    # ---- submission ----

    async def handle_submit(self):
        """
        Validate, score, submit, then complete the session.

        Raises ValidationError when required fields on the path taken are
        empty and SubmissionError when the submitter fails; in both cases the
        answers stay in place so the respondent can retry.
        """
        if self.status is not FormStatus.IDLE:
            logger.debug("Submit ignored for %s, status=%s", self.form_id, self.status.value)
            return self.profile_result

        self._require(traversed_fields(self.visible_fields, self._answers), "Please fill in all required fields")

        self.status = FormStatus.SUBMITTING
        self.error = None
        answers = dict(self._answers)
        token = self.session.token if self.session else None
        try:
            profile = await estimate_profile(
                self.profile_config,
                answers,
                self._compiled.fields,
                form_id=self.form_id,
                scorer=self._scorer,
            )
            if self._submitter is not None:
                await self._submitter.submit(self.form_id, answers, token)
        except SubmissionError as exc:
            logger.error("Form submission failed for %s: %s", self.form_id, exc)
            self.status = FormStatus.IDLE
            self.error = str(exc) or "Submission failed"
            raise
        except Exception:
            self.status = FormStatus.IDLE
            raise

        self.profile_result = profile
        self._timer.flush(token)
        if self.session is not None:
            await self.session.complete()
        self.status = FormStatus.SUCCESS
        return profile
