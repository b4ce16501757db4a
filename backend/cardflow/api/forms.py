# _____ form templates, flowchart graph, submissions and AI profile scoring

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field
from sqlalchemy.orm import Session

from cardflow.core.meta import build_meta, error_detail
from cardflow.db.models import FormSubmission
from cardflow.db.session import get_db
from cardflow.engine.errors import ScoringError
from cardflow.engine.navigation import missing_required, traversed_fields
from cardflow.engine.types import FormField, Graph, ProfileEstimationConfig, WireModel
from cardflow.engine.visibility import visible
from cardflow.services import forms
from cardflow.services.ai_scorer import OpenAIProfileScorer

router = APIRouter(prefix="/forms", tags=["forms"]) # Routers = modular endpoints (keeps code organized by endpoints)

# Lazily talks to OpenAI; swapped out in tests through get_ai_scorer
_AI_SCORER = OpenAIProfileScorer()


def get_ai_scorer() -> OpenAIProfileScorer:
    return _AI_SCORER


# ---------- helpers ----------

def _require_template(db: Session, form_id: str):
    row = forms.get_template(db, form_id)
    if row is None:
        raise HTTPException(status_code=404, detail=error_detail("UNKNOWN_FORM", f"Form '{form_id}' not found."))
    return row


# ---------- request models ----------

class TemplateRequest(WireModel):
    title: str = ""
    # "schema" shadows a BaseModel attribute, so the field gets another name
    fields: Optional[List[FormField]] = Field(default=None, alias="schema")
    graph: Optional[Graph] = None
    profile_estimation: Optional[ProfileEstimationConfig] = None
    success_message: Optional[str] = None


class SubmissionRequest(WireModel):
    answers: Dict[str, Any] = Field(default_factory=dict)
    session_token: Optional[str] = None


class ProfileRequest(WireModel):
    answers: Dict[str, Any] = Field(default_factory=dict)


# ---------- endpoints ----------

@router.put("/{form_id}")
def put_template(form_id: str, req: TemplateRequest, db: Session = Depends(get_db)):
    """
    Create or replace a form. A graph, when present, is validated and
    compiled; the stored schema is always the compiled one.
    """
    try:
        row = forms.save_template(
            db,
            form_id,
            title=req.title,
            fields=req.fields,
            graph=req.graph,
            profile_config=req.profile_estimation,
            success_message=req.success_message,
        )
    except forms.TemplateError as exc:
        db.rollback()
        raise HTTPException(
            status_code=422,
            detail={
                "error": {"code": "INVALID_TEMPLATE", "message": str(exc), "details": exc.errors},
                "meta": build_meta(),
            },
        )
    db.commit()
    return {**forms.template_to_wire(row), "meta": build_meta()}


@router.get("/{form_id}")
def get_template(form_id: str, db: Session = Depends(get_db)):
    row = _require_template(db, form_id)
    return {**forms.template_to_wire(row), "meta": build_meta()}


@router.get("/{form_id}/graph")
def get_graph(form_id: str, db: Session = Depends(get_db)):
    """
    The stored flowchart, or the default linear layout of the schema when the
    form was authored without one.
    """
    row = _require_template(db, form_id)
    return {**forms.load_graph(row).to_wire(), "meta": build_meta()}


@router.post("/{form_id}/submissions", status_code=201)
def submit_form(form_id: str, req: SubmissionRequest, db: Session = Depends(get_db)):
    row = _require_template(db, form_id)
    fields = forms.load_fields(row)

    # only cards on the path the respondent took are required
    missing = missing_required(traversed_fields(visible(fields, req.answers), req.answers), req.answers)
    if missing:
        raise HTTPException(
            status_code=422,
            detail={
                "error": {
                    "code": "REQUIRED_FIELDS",
                    "message": "Please fill in all required fields",
                    "fields": [f.id for f in missing],
                },
                "meta": build_meta(),
            },
        )

    submission = FormSubmission(form_id=form_id, session_token=req.session_token, answers=req.answers)
    db.add(submission)
    db.commit()
    return {
        "id": str(submission.id),
        "formId": form_id,
        "successMessage": row.success_message,
        "meta": build_meta(),
    }


@router.post("/{form_id}/profile")
def score_profile(
    form_id: str,
    req: ProfileRequest,
    db: Session = Depends(get_db),
    scorer: OpenAIProfileScorer = Depends(get_ai_scorer),
):
    row = _require_template(db, form_id)
    profile = forms.load_profile_config(row)
    if profile is None or not profile.enabled or profile.ai_config is None or not profile.ai_config.enabled:
        raise HTTPException(
            status_code=409,
            detail=error_detail("AI_DISABLED", "AI is not enabled for this form"),
        )
    try:
        result = scorer.score(profile, req.answers, forms.load_fields(row))
    except ScoringError as exc:
        raise HTTPException(status_code=503, detail=error_detail("SCORER_UNAVAILABLE", str(exc)))
    return {**result.to_wire(), "meta": build_meta()}
