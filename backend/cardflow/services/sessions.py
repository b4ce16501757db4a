from __future__ import annotations

import base64
import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from cardflow.core import config
from cardflow.core.meta import utc_now
from cardflow.db.models import FormSession, SessionStatus
from cardflow.engine.types import SessionPayload

logger = logging.getLogger(__name__)

# All session mutations go through this service so expiry and the
# active -> completed transition are enforced in one place.


def new_session_token() -> str:
    """URL-safe short token from 16 random bytes (~22 chars)."""
    return base64.urlsafe_b64encode(uuid4().bytes).rstrip(b"=").decode("ascii")


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def is_expired(row: FormSession, now: Optional[datetime] = None) -> bool:
    return _aware(row.expires_at) <= (now or utc_now())


def create_session(
    db: Session,
    form_id: str,
    client_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> FormSession:
    if now is None:
        now = utc_now()
    row = FormSession(
        token=new_session_token(),
        form_id=form_id,
        status=SessionStatus.ACTIVE,
        current_card_index=0,
        partial_data={},
        client_id=client_id,
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(hours=config.SESSION_TTL_HOURS),
    )
    db.add(row)
    db.flush()
    logger.info("Created session for form %s", form_id)
    return row


def get_session(db: Session, form_id: str, token: str, now: Optional[datetime] = None) -> Optional[FormSession]:
    """The session row, or None when it is unknown, belongs to another form, or has expired."""
    row = db.get(FormSession, token)
    if row is None or row.form_id != form_id:
        return None
    if is_expired(row, now):
        logger.info("Session %s... for form %s has expired", token[:6], form_id)
        return None
    return row


def update_progress(
    db: Session,
    row: FormSession,
    current_card_index: int,
    partial_data: Dict[str, Any],
    now: Optional[datetime] = None,
) -> FormSession:
    if current_card_index < 0:
        raise ValueError("current_card_index must be >= 0")
    if not isinstance(partial_data, dict):
        raise ValueError("partial_data must be a dict")
    if row.status is not SessionStatus.ACTIVE:
        raise ValueError(f"Session is {row.status.value}")

    if now is None:
        now = utc_now()
    row.current_card_index = current_card_index
    row.partial_data = copy.deepcopy(partial_data)  # fresh object so the JSON column is marked dirty
    row.updated_at = now
    row.expires_at = now + timedelta(hours=config.SESSION_TTL_HOURS)  # activity keeps a session alive
    db.flush()
    return row


def complete_session(db: Session, row: FormSession, now: Optional[datetime] = None) -> FormSession:
    if row.status is SessionStatus.COMPLETED:
        return row
    if now is None:
        now = utc_now()
    row.status = SessionStatus.COMPLETED
    row.completed_at = now
    row.updated_at = now
    db.flush()
    logger.info("Completed session for form %s", row.form_id)
    return row


def to_payload(row: FormSession) -> SessionPayload:
    return SessionPayload(
        session_token=row.token,
        current_card_index=row.current_card_index,
        partial_data=copy.deepcopy(row.partial_data or {}),
        form_id=row.form_id,
        created_at=_aware(row.created_at),
        completed_at=_aware(row.completed_at),
    )
