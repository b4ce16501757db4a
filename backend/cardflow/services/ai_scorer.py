"""
AI profile scoring behind POST /forms/{form_id}/profile.

The model is asked for a small JSON object whose shape depends on the
profile config type; the reply is mapped onto the same ProfileResult models
the rule-based scorer produces, so callers never see a different shape.
Every failure surfaces as ScoringError and the caller falls back to rules.
"""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, Mapping, Optional, Sequence

from openai import OpenAI, OpenAIError

from cardflow.core import config
from cardflow.engine.conditions import as_text, is_empty
from cardflow.engine.errors import ScoringError
from cardflow.engine.profile import estimate, score_range, whole_percent
from cardflow.engine.types import (
    CategoryConfig,
    CategoryResult,
    CategoryScore,
    CategorySummary,
    DimensionScores,
    FormField,
    MultiDimensionConfig,
    MultiDimensionResult,
    PercentageConfig,
    PercentageResult,
    PercentageScore,
    RecommendationConfig,
    RecommendationMatch,
    RecommendationResult,
    RecommendationScores,
)

logger = logging.getLogger(__name__)

_ANALYSIS_PROMPTS = {
    "sentiment": "Analyze the sentiment and emotional tone of the user's responses. "
                 "Identify their feelings, concerns, and overall attitude.",
    "personality": "Analyze the user's personality traits based on their answers. "
                   "Identify key characteristics, preferences, and behavioral patterns.",
    "recommendation": "Based on the user's answers, provide personalized recommendations. "
                      "Consider their preferences, needs, and responses to suggest the best options.",
}

_FORMATS = {
    "percentage": 'Provide a percentage score (0-100) and a brief description. '
                  'Format: {"score": number, "description": "string"}',
    "category": 'Pick exactly one of the listed categories. '
                'Format: {"category": "string", "description": "string", "confidence": number between 0 and 1}',
    "multi_dimension": 'Score every listed dimension from 0 to 100. '
                       'Format: {"scores": {"<dimension name>": number}}',
    "recommendation": 'Rank the listed options. '
                      'Format: {"recommendations": [{"name": "string", "description": "string", "matchScore": number}]}',
}

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def format_answers(answers: Mapping[str, Any], fields: Sequence[FormField]) -> str:
    lines = []
    for field in fields:
        answer = answers.get(field.id)
        if field.type == "statement" or is_empty(answer):
            continue
        lines.append(f"Q: {field.label}\nA: {as_text(answer)}")
    return "\n\n".join(lines)


def _choices(profile) -> str:
    if isinstance(profile, CategoryConfig):
        return "Categories: " + ", ".join(c.name for c in profile.categories)
    if isinstance(profile, MultiDimensionConfig):
        return "Dimensions: " + ", ".join(d.name for d in profile.dimensions)
    if isinstance(profile, RecommendationConfig):
        return "Options: " + ", ".join(r.name for r in profile.recommendations)
    return ""


def build_prompt(profile, answers: Mapping[str, Any], fields: Sequence[FormField]) -> str:
    ai = profile.ai_config
    prompt = (ai.prompt if ai and ai.prompt else None) or _ANALYSIS_PROMPTS[(ai and ai.analysis_type) or "personality"]
    prompt += f"\n\nUser Responses:\n{format_answers(answers, fields)}\n"

    baseline = estimate(profile, answers, fields)
    if baseline is not None:
        prompt += f"\nRule-based result: {json.dumps(baseline.to_wire(), indent=2)}\n"

    choices = _choices(profile)
    if choices:
        prompt += f"\n{choices}\n"
    prompt += f"\nRespond with JSON only. {_FORMATS[profile.type]}"
    return prompt


def parse_reply(text: str) -> Dict[str, Any]:
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise ScoringError("AI reply did not contain a JSON object")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ScoringError(f"AI reply was not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ScoringError("AI reply must be a JSON object")
    return data


def _number(data: Dict[str, Any], key: str, default: Optional[float] = None) -> float:
    value = data.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ScoringError(f"AI reply field '{key}' is not a number: {value!r}")


def to_result(profile, data: Dict[str, Any]):
    """Map the model's JSON onto the ProfileResult for `profile.type`."""
    if isinstance(profile, PercentageConfig):
        score = whole_percent(_number(data, "score"))
        bucket = score_range(profile.ranges, score)
        return PercentageResult(
            result=PercentageScore(
                score=score,
                raw_score=score,
                max_score=100,
                range=bucket.label if bucket else None,
                description=str(data.get("description") or (bucket.description if bucket else "")),
            )
        )

    if isinstance(profile, CategoryConfig):
        name = str(data.get("category") or "").strip()
        match = next((c for c in profile.categories if c.name.lower() == name.lower() or c.id == name), None)
        if match is None:
            raise ScoringError(f"AI picked unknown category {name!r}")
        confidence = _number(data, "confidence", 1.0)
        if confidence > 1:
            confidence /= 100  # some replies use 0-100
        return CategoryResult(
            result=CategoryScore(
                category=CategorySummary(
                    id=match.id,
                    name=match.name,
                    description=str(data.get("description") or match.description),
                    image=match.image,
                ),
                confidence=round(min(max(confidence, 0.0), 1.0), 2),
            )
        )

    if isinstance(profile, MultiDimensionConfig):
        raw = data.get("scores")
        if not isinstance(raw, dict):
            raise ScoringError("AI reply is missing 'scores'")
        scores = {d.name: round(_number(raw, d.name, 0.0), 2) for d in profile.dimensions}
        return MultiDimensionResult(
            result=DimensionScores(scores=scores, dimensions=profile.dimensions, visualization=profile.visualization)
        )

    if isinstance(profile, RecommendationConfig):
        by_name = {r.name.lower(): r for r in profile.recommendations}
        matches = []
        for item in data.get("recommendations") or []:
            rec = by_name.get(str(item.get("name", "")).lower()) if isinstance(item, dict) else None
            if rec is None:
                continue  # the model invented an option
            score = _number(item, "matchScore", 0.0)
            matches.append(
                RecommendationMatch(
                    id=rec.id,
                    name=rec.name,
                    description=str(item.get("description") or rec.description),
                    image=rec.image,
                    score=round(score, 2),
                    match_percent=round(min(max(score, 0.0), 100.0), 2),
                )
            )
        matches.sort(key=lambda m: m.score, reverse=True)
        if profile.top_n is not None:
            matches = matches[: profile.top_n]
        return RecommendationResult(result=RecommendationScores(recommendations=matches))

    raise ScoringError(f"Unsupported profile type: {getattr(profile, 'type', None)!r}")


class OpenAIProfileScorer:
    """Server-side scorer. The OpenAI client is created on first use so the app boots without a key."""

    def __init__(self, client: Optional[OpenAI] = None, model: str = config.OPENAI_MODEL,
                 temperature: float = config.OPENAI_TEMPERATURE):
        self._client = client
        self.model = model
        self.temperature = temperature

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not os.getenv("OPENAI_API_KEY"):
                raise ScoringError("OPENAI_API_KEY environment variable not set.")
            self._client = OpenAI()
        return self._client

    def score(self, profile, answers: Mapping[str, Any], fields: Sequence[FormField]):
        ai = profile.ai_config
        if ai is None or not ai.enabled:
            raise ScoringError("AI is not enabled for this form")

        prompt = build_prompt(profile, answers, fields)
        try:
            resp = self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                timeout=ai.timeout_seconds,
            )
        except OpenAIError as exc:
            logger.error("AI profile scoring request failed: %s", exc)
            raise ScoringError(f"AI request failed: {exc}") from exc

        text = resp.choices[0].message.content or ""
        return to_result(profile, parse_reply(text))
