"""
Session state machine: respondent progress <-> remote session store.

    UNINITIALIZED -> RESTORING -> ACTIVE -> COMPLETED

start() always converges to ACTIVE, either with a restored session, a
freshly created one, or without a token (persistence disabled, failed, or
rate limited). Persistence is best-effort: checkpoint failures are logged
and dropped, never raised to the respondent.
"""
from __future__ import annotations

import asyncio
import copy
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from cardflow.engine.errors import PersistenceError, RateLimitError
from cardflow.engine.tokens import TokenStore
from cardflow.engine.types import SessionPayload

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Rate limited - session persistence disabled"


class SessionStore(Protocol):
    async def create_session(self, form_id: str) -> SessionPayload: ...

    async def get_session(self, form_id: str, token: str) -> SessionPayload: ...

    async def update_session(self, form_id: str, token: str, current_index: int, partial_data: Dict[str, Any]) -> None: ...

    async def complete_session(self, form_id: str, token: str) -> None: ...


class SessionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    RESTORING = "restoring"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Checkpoint:
    current_index: int
    partial_data: Dict[str, Any]


class CheckpointQueue:
    """
    Single in-flight slot plus one pending slot. A snapshot submitted while a
    request is in flight replaces whatever was pending, so at most one stale
    checkpoint is ever skipped and requests never pile up.
    """

    def __init__(self, send: Callable[[Checkpoint], Awaitable[None]]):
        self._send = send
        self._pending: Optional[Checkpoint] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, checkpoint: Checkpoint) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, checkpoint at index %s not sent", checkpoint.current_index)
            return False
        self._pending = checkpoint
        if not self.in_flight:
            self._task = loop.create_task(self._run())
        return True

    async def _run(self) -> None:
        while self._pending is not None:
            checkpoint, self._pending = self._pending, None
            await self._send(checkpoint)

    def clear(self) -> None:
        # drops the queued snapshot; the in-flight request is left to finish
        self._pending = None

    async def drain(self) -> None:
        if self._task is not None:
            await self._task


class FormSessionController:
    def __init__(
        self,
        form_id: str,
        store: Optional[SessionStore],
        tokens: TokenStore,
        *,
        save_progress: bool = True,
    ):
        self.form_id = form_id
        self.state = SessionState.UNINITIALIZED
        self.session: Optional[SessionPayload] = None
        self.session_error: Optional[str] = None

        self._store = store
        self._tokens = tokens
        self._persistence_enabled = save_progress and store is not None
        self._init_task: Optional[asyncio.Future] = None
        self._completed = False
        self._checkpoints = CheckpointQueue(self._send_checkpoint)

    # ---- properties ----

    @property
    def token(self) -> Optional[str]:
        return self.session.session_token if self.session else None

    @property
    def persistence_enabled(self) -> bool:
        return self._persistence_enabled

    @property
    def restored(self) -> bool:
        return self.state in (SessionState.ACTIVE, SessionState.COMPLETED)

    # ---- lifecycle ----

    async def start(self) -> Optional[SessionPayload]:
        """Restore or create the session. Concurrent callers share one attempt."""
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> Optional[SessionPayload]:
        if not self._persistence_enabled:
            logger.debug("Session persistence disabled for %s, running local-only", self.form_id)
            self.state = SessionState.ACTIVE
            return None

        self.state = SessionState.RESTORING
        payload: Optional[SessionPayload] = None
        try:
            payload = await self._restore_or_create()
        except RateLimitError:
            logger.warning("Rate limited while initializing session for %s. Form will work without session persistence.", self.form_id)
            self._disable(RATE_LIMITED_MESSAGE)
        except PersistenceError as exc:
            logger.error("Session initialization failed for %s: %s", self.form_id, exc)
            self._disable(str(exc) or "Failed to initialize session")

        if payload is not None:
            self.session = payload
            if payload.session_token:
                self._tokens.set(self.form_id, payload.session_token)
            logger.debug("Session ready for %s at index %s (%d answers)",
                         self.form_id, payload.current_card_index, len(payload.partial_data))
        self.state = SessionState.ACTIVE
        return payload

    async def _restore_or_create(self) -> SessionPayload:
        token = self._tokens.get(self.form_id)
        if token:
            try:
                payload = await self._store.get_session(self.form_id, token)
                logger.debug("Restored session for %s", self.form_id)
                return payload
            except RateLimitError:
                raise
            except PersistenceError as exc:
                # unknown, expired or already completed: start over
                logger.warning("Failed to restore session for %s, creating new: %s", self.form_id, exc)
                self._tokens.remove(self.form_id)

        payload = await self._store.create_session(self.form_id)
        logger.debug("Created new session for %s", self.form_id)
        return payload

    def _disable(self, reason: str) -> None:
        # no re-enable for the lifetime of this controller; a reload gets a fresh one
        self._persistence_enabled = False
        self.session_error = reason
        self._checkpoints.clear()

    # ---- checkpoints ----

    def checkpoint(self, current_index: int, partial_data: Dict[str, Any]) -> bool:
        """Queue a non-blocking progress save. Returns False when nothing was queued."""
        if self.state is not SessionState.ACTIVE or not self._persistence_enabled or not self.token:
            return False
        return self._checkpoints.submit(Checkpoint(current_index, copy.deepcopy(dict(partial_data))))

    async def _send_checkpoint(self, checkpoint: Checkpoint) -> None:
        if self._completed or not self._persistence_enabled or not self.token:
            return
        try:
            await self._store.update_session(self.form_id, self.token, checkpoint.current_index, checkpoint.partial_data)
        except RateLimitError:
            logger.warning("Rate limited while saving progress for %s, persistence disabled", self.form_id)
            self._disable(RATE_LIMITED_MESSAGE)
        except PersistenceError as exc:
            logger.error("Failed to persist progress for %s: %s", self.form_id, exc)
        else:
            self.session = self.session.model_copy(
                update={"current_card_index": checkpoint.current_index, "partial_data": checkpoint.partial_data}
            )

    async def drain(self) -> None:
        await self._checkpoints.drain()

    # ---- completion ----

    async def complete(self) -> None:
        """Mark the session complete remotely (once) and forget the local token."""
        if self._completed:
            return
        self._completed = True
        self._checkpoints.clear()
        token = self.token
        try:
            if token and self._store is not None and self._persistence_enabled:
                await self._store.complete_session(self.form_id, token)
                logger.debug("Session completed for %s", self.form_id)
        except PersistenceError as exc:
            logger.error("Failed to complete session for %s: %s", self.form_id, exc)
        finally:
            self._tokens.remove(self.form_id)
            self.state = SessionState.COMPLETED

    def clear_stored_token(self) -> None:
        self._tokens.remove(self.form_id)
