from sqlalchemy.orm import Session # this function writes inside a DB transaction
from datetime import datetime
from typing import Any, Dict, Optional
import json

from cardflow.core.meta import utc_now
from cardflow.db.models import CardTimeEvent
# Card dwell-time telemetry is append-only: rows are written, never updated.


def build_card_time_payload(time_seconds: int, user_agent: Optional[str] = None) -> dict:
    payload: Dict[str, Any] = {
        "schema_version": "card.time.v1",
        "time_seconds": time_seconds,
    }
    if user_agent:
        payload["user_agent"] = user_agent
    return payload


def record_card_time(
        db: Session,
        form_id: str,
        session_token: str,
        card_id: str,
        time_seconds: int,
        payload: Optional[dict] = None,
        occurred_at: Optional[datetime] = None,
) -> CardTimeEvent:
    if not card_id:
        raise ValueError("card_id is required")
    if time_seconds is None or time_seconds < 0:
        raise ValueError("time_seconds must be >= 0")

    if payload is None:
        payload = build_card_time_payload(time_seconds)

    if not isinstance(payload, dict):
        raise ValueError("payload must be a dict")

    # JSON requires string keys
    if any(not isinstance(k, str) for k in payload.keys()):
        raise ValueError("payload keys must be strings")

    try:
        json.dumps(payload)
    except TypeError as e:
        raise ValueError(f"payload is not JSON-serializable: {e}")

    if occurred_at is None:
        occurred_at = utc_now()

    event = CardTimeEvent(
        form_id=form_id,
        session_token=session_token,
        card_id=card_id,
        time_seconds=time_seconds,
        payload=payload,
        occurred_at=occurred_at,
    )
    db.add(event)
    db.flush() # assigns event.id without committing
    return event
