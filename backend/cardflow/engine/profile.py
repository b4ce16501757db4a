"""
Profile estimation.

estimate() is the deterministic rule-based scorer, one strategy per config
type. estimate_profile() adds the optional remote (AI) scorer in front of
it: when aiConfig.enabled, the remote result wins if it arrives and parses;
any failure falls back to the rule-based result. The two are never blended.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from pydantic import ValidationError as PydanticValidationError

from cardflow.engine.conditions import compare, is_unanswered
from cardflow.engine.errors import ScoringError
from cardflow.engine.types import (
    PROFILE_RESULT_ADAPTER,
    CategoryConfig,
    CategoryResult,
    CategoryScore,
    CategorySummary,
    DimensionScores,
    FieldScoring,
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
    ScoreRange,
    ScoringOption,
    ScoringRule,
)

logger = logging.getLogger(__name__)


class ProfileScorer(Protocol):
    async def score_profile(self, form_id: str, answers: Mapping[str, Any]) -> Dict[str, Any]: ...


# ---- helpers ----

def _option_matches(option: ScoringOption, answer: Any) -> bool:
    if is_unanswered(answer):
        return False
    return compare("equals", answer, option.answer)


def _matched_options(scoring: FieldScoring, answer: Any) -> List[ScoringOption]:
    hits = [o for o in scoring.scoring if _option_matches(o, answer)]
    if not isinstance(answer, (list, tuple)):
        return hits[:1]  # single-choice answers score their first matching option only
    return hits


def _field_max(scoring: FieldScoring, field: FormField) -> float:
    points = [o.points for o in scoring.scoring]
    if not points:
        return 0.0
    if field.type == "checkbox":
        return sum(p for p in points if p > 0)
    return max(max(points), 0)


def _rule_satisfied(rule: ScoringRule, answers: Mapping[str, Any]) -> bool:
    answer = answers.get(rule.field_id)
    if is_unanswered(answer) and rule.operator not in ("is_answered", "is_empty", "is_not_empty"):
        return False
    return compare(rule.operator, answer, rule.value)


def _round(value: float) -> float:
    return round(value, 2)


def whole_percent(value: float) -> int:
    # half up, so integer-authored ranges such as 0-49 / 50-100 leave no gaps
    return int(min(max(value, 0.0), 100.0) + 0.5)


def score_range(ranges: Sequence[ScoreRange], score: float) -> Optional[ScoreRange]:
    """The range containing `score`, else the first configured range."""
    for r in ranges:
        if r.min <= score <= r.max:
            return r
    return ranges[0] if ranges else None


# ---- strategies ----

def percentage_score(config: PercentageConfig, answers: Mapping[str, Any], fields: Sequence[FormField]) -> PercentageResult:
    by_id = {f.id: f for f in fields}
    total = 0.0
    max_points = 0.0

    for scoring in config.field_scoring:
        field = by_id.get(scoring.field_id)
        if field is None:
            continue  # scoring references a field the form no longer has
        answer = answers.get(scoring.field_id)
        total += scoring.weight * sum(o.points for o in _matched_options(scoring, answer))
        max_points += scoring.weight * _field_max(scoring, field)

    if config.bounds is not None:
        lo, hi = config.bounds.min, config.bounds.max
    else:
        lo, hi = 0.0, max_points
    span = hi - lo
    score = whole_percent(0.0 if span <= 0 else (total - lo) / span * 100)
    bucket = score_range(config.ranges, score)
    return PercentageResult(
        result=PercentageScore(
            score=score,
            raw_score=_round(total),
            max_score=_round(max_points),
            range=bucket.label if bucket else None,
            description=bucket.description if bucket else "",
        )
    )


def category_score(config: CategoryConfig, answers: Mapping[str, Any]) -> Optional[CategoryResult]:
    if not config.categories:
        return None

    votes: Dict[str, float] = {}
    for category in config.categories:
        votes[category.id] = sum(r.weight for r in category.matching_logic if _rule_satisfied(r, answers))

    total = sum(votes.values())
    winner = config.categories[0]
    for category in config.categories:
        if votes[category.id] > votes[winner.id]:  # strict: config order breaks ties
            winner = category

    confidence = 0.0 if total <= 0 else votes[winner.id] / total
    return CategoryResult(
        result=CategoryScore(
            category=CategorySummary(
                id=winner.id,
                name=winner.name,
                description=winner.description,
                image=winner.image,
            ),
            confidence=_round(confidence),
            votes=votes,
        )
    )


def dimension_scores(config: MultiDimensionConfig, answers: Mapping[str, Any], fields: Sequence[FormField]) -> MultiDimensionResult:
    known = {f.id for f in fields}
    raw: Dict[str, float] = {d.id: 0.0 for d in config.dimensions}

    for scoring in config.field_scoring:
        if scoring.field_id not in known:
            continue
        for option in _matched_options(scoring, answers.get(scoring.field_id)):
            for dim_id, delta in option.deltas.items():
                if dim_id in raw:
                    raw[dim_id] += scoring.weight * delta

    scores: Dict[str, float] = {}
    for dim in config.dimensions:
        value = raw[dim.id]
        if dim.max_score is not None:
            lo = dim.min_score if dim.min_score is not None else 0.0
            span = dim.max_score - lo
            value = 0.0 if span <= 0 else min(max((value - lo) / span * 100, 0.0), 100.0)
        scores[dim.name] = _round(value)

    return MultiDimensionResult(
        result=DimensionScores(scores=scores, dimensions=config.dimensions, visualization=config.visualization)
    )


def recommendation_scores(config: RecommendationConfig, answers: Mapping[str, Any]) -> RecommendationResult:
    matches: List[RecommendationMatch] = []
    for rec in config.recommendations:
        score = 0.0
        possible = 0.0
        eligible = True
        for rule in rec.matching_criteria:
            weight = rule.weight if config.weighted else 1.0
            possible += weight
            if _rule_satisfied(rule, answers):
                score += weight
            elif rule.required:
                eligible = False
                break
        if not eligible:
            continue
        matches.append(
            RecommendationMatch(
                id=rec.id,
                name=rec.name,
                description=rec.description,
                image=rec.image,
                score=_round(score),
                match_percent=_round(score / possible * 100) if possible > 0 else 0.0,
            )
        )

    matches.sort(key=lambda m: m.score, reverse=True)  # stable: ties keep config order
    if config.top_n is not None:
        matches = matches[: config.top_n]
    return RecommendationResult(result=RecommendationScores(recommendations=matches))


def estimate(config, answers: Mapping[str, Any], fields: Sequence[FormField]):
    """Rule-based ProfileResult for `config`, or None when disabled / nothing to score."""
    if config is None or not config.enabled:
        return None
    if isinstance(config, PercentageConfig):
        return percentage_score(config, answers, fields)
    if isinstance(config, CategoryConfig):
        return category_score(config, answers)
    if isinstance(config, MultiDimensionConfig):
        return dimension_scores(config, answers, fields)
    if isinstance(config, RecommendationConfig):
        return recommendation_scores(config, answers)
    raise TypeError(f"Unsupported profile estimation config: {type(config).__name__}")


async def _remote_estimate(config, answers: Mapping[str, Any], form_id: str, scorer: ProfileScorer):
    payload = await asyncio.wait_for(scorer.score_profile(form_id, dict(answers)), timeout=config.ai_config.timeout_seconds)
    try:
        result = PROFILE_RESULT_ADAPTER.validate_python(payload)
    except PydanticValidationError as exc:
        raise ScoringError(f"Malformed profile result from remote scorer: {exc.error_count()} error(s)") from exc
    if result.type != config.type:
        raise ScoringError(f"Remote scorer returned a {result.type} result for a {config.type} profile")
    return result


async def estimate_profile(
    config,
    answers: Mapping[str, Any],
    fields: Sequence[FormField],
    *,
    form_id: str,
    scorer: Optional[ProfileScorer] = None,
):
    if config is None or not config.enabled:
        return None

    if config.ai_config is not None and config.ai_config.enabled and scorer is not None:
        try:
            result = await _remote_estimate(config, answers, form_id, scorer)
            logger.debug("Remote profile scoring succeeded for %s (%s)", form_id, result.type)
            return result
        except (ScoringError, asyncio.TimeoutError) as exc:
            logger.warning("Remote profile scoring failed for %s, using rule-based result: %s", form_id, exc)

    return estimate(config, answers, fields)
