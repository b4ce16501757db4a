# _____ session endpoints: create / restore / checkpoint / complete, plus card-time telemetry

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import Field
from sqlalchemy.orm import Session

from cardflow.core.meta import build_meta, error_detail
from cardflow.db.models import FormSession, SessionStatus
from cardflow.db.session import get_db
from cardflow.engine.types import WireModel
from cardflow.services import analytics, forms, sessions
from cardflow.services.rate_limit import SlidingWindowLimiter

router = APIRouter(prefix="/forms/{form_id}", tags=["sessions"])

# One limiter per process; keyed on the caller's address
CREATE_LIMITER = SlidingWindowLimiter()


# ---------- helpers ----------

def _client_id(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _require_form(db: Session, form_id: str) -> None:
    if forms.get_template(db, form_id) is None:
        raise HTTPException(status_code=404, detail=error_detail("UNKNOWN_FORM", f"Form '{form_id}' not found."))


def _require_session(db: Session, form_id: str, token: str) -> FormSession:
    """
    Fetch a live session or raise 404. Expired sessions look exactly like
    unknown ones so the client just starts over.
    """
    row = sessions.get_session(db, form_id, token)
    if row is None:
        raise HTTPException(
            status_code=404,
            detail=error_detail("SESSION_NOT_FOUND", "Form session not found or expired"),
        )
    return row


def _require_active(row: FormSession) -> None:
    """
    Ensure the session is still active. A completed session is a conflict (409).
    """
    if row.status is not SessionStatus.ACTIVE:
        raise HTTPException(
            status_code=409,
            detail=error_detail("SESSION_COMPLETED", f"Session is {row.status.value}."),
        )


def _session_body(row: FormSession) -> Dict[str, Any]:
    body = sessions.to_payload(row).to_wire()
    body["meta"] = build_meta()
    return body


# ---------- request models ----------

class ProgressRequest(WireModel):
    current_card_index: int = Field(ge=0)
    partial_data: Dict[str, Any] = Field(default_factory=dict)


class CardTimeRequest(WireModel):
    session_token: str
    card_id: str
    time_seconds: int = Field(ge=0)
    user_agent: Optional[str] = None


# ---------- endpoints ----------

@router.post("/sessions", status_code=201)
def create_session(form_id: str, request: Request, db: Session = Depends(get_db)):
    """
    Start a new respondent session. Creation is rate limited per client.
    """
    _require_form(db, form_id)
    client_id = _client_id(request)
    if not CREATE_LIMITER.hit(client_id):
        raise HTTPException(
            status_code=429,
            detail=error_detail("RATE_LIMITED", "Too many sessions created. Try again later."),
        )
    row = sessions.create_session(db, form_id, client_id=client_id)
    db.commit()
    return _session_body(row)


@router.get("/sessions/{token}")
def get_session(form_id: str, token: str, db: Session = Depends(get_db)):
    row = _require_session(db, form_id, token)      # 404 if missing or expired
    _require_active(row)                            # 409 if already completed
    return _session_body(row)


@router.patch("/sessions/{token}")
def update_session(form_id: str, token: str, req: ProgressRequest, db: Session = Depends(get_db)):
    """
    Checkpoint progress. The client sends the whole answer map each time, so
    this is a replace, not a merge.
    """
    row = _require_session(db, form_id, token)
    _require_active(row)
    sessions.update_progress(db, row, req.current_card_index, req.partial_data)
    db.commit()
    return _session_body(row)


@router.post("/sessions/{token}/complete")
def complete_session(form_id: str, token: str, db: Session = Depends(get_db)):
    row = _require_session(db, form_id, token)
    sessions.complete_session(db, row)              # completing twice is a no-op
    db.commit()
    return _session_body(row)


@router.post("/analytics/card-time", status_code=202)
def track_card_time(form_id: str, req: CardTimeRequest, db: Session = Depends(get_db)):
    # completed sessions still accept telemetry: the last card is flushed around submit time
    row = db.get(FormSession, req.session_token)
    if row is None or row.form_id != form_id:
        raise HTTPException(
            status_code=404,
            detail=error_detail("SESSION_NOT_FOUND", "Form session not found or expired"),
        )
    try:
        event = analytics.record_card_time(
            db,
            form_id=form_id,
            session_token=req.session_token,
            card_id=req.card_id,
            time_seconds=req.time_seconds,
            payload=analytics.build_card_time_payload(req.time_seconds, req.user_agent),
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=error_detail("INVALID_EVENT", str(exc)))
    db.commit()
    return {"id": str(event.id), "accepted": True, "meta": build_meta()}
