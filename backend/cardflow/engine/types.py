"""
cardflow.engine.types
=====================
Pydantic models that define the **only valid shape** for:

- FormField / FieldOption / Rule   - the flat runtime schema
- Graph / Node / Edge              - the authored flowchart
- SessionPayload                   - what the remote session store carries
- ProfileEstimationConfig          - scoring configuration (tagged on `type`)
- ProfileResult                    - scoring output (tagged on `type`)

Wire format is camelCase. Every model also accepts snake_case names so
Python callers can build them directly.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

START_NODE_ID = "start"
END_NODE_ID = "end"

FieldType = Literal[
    "text", "textarea", "email", "phone", "select", "radio", "checkbox", "file", "image", "statement",
]
OPTION_FIELD_TYPES = ("select", "radio", "checkbox")

ConditionOperator = Literal[
    "equals",
    "not_equals",
    "one_of",
    "contains",
    "not_contains",
    "greater_than",
    "less_than",
    "starts_with",
    "ends_with",
    "is_answered",
    "is_empty",
    "is_not_empty",
]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ────────────────────────────── 1. field schema ─────────────────────────────
class CardMedia(WireModel):
    type: Literal["image", "video", "gif", "icon"]
    url: Optional[str] = None
    alt_text: Optional[str] = None
    position: Literal["above", "below", "background", "left", "right"] = "above"
    video_type: Optional[Literal["youtube", "vimeo", "upload"]] = None
    video_id: Optional[str] = None


class FieldOption(WireModel):
    value: str
    label: str = ""

    # authored JSON usually lists options as bare strings
    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"value": data, "label": data}
        if isinstance(data, dict) and not data.get("label") and "value" in data:
            return {**data, "label": str(data["value"])}
        return data


class Condition(WireModel):
    field_id: str
    operator: ConditionOperator = "equals"
    value: Any = None


class ConditionGroup(WireModel):
    operator: Literal["AND", "OR"] = "AND"
    conditions: List[Condition]


class ConditionBlock(WireModel):
    """(A and B) OR (C and D): a group of groups."""
    operator: Literal["AND", "OR"] = "OR"
    groups: List[ConditionGroup]


Rule = Union[ConditionBlock, ConditionGroup, Condition]


class BranchRule(WireModel):
    target_field_id: str
    value: Any = None                  # shorthand: matches the owning field's own answer
    conditions: Optional[Rule] = None  # full rule over any answers; neither set = always jump


class DynamicLabel(WireModel):
    conditions: Rule
    label: str


class FileReference(WireModel):
    url: str
    original_name: str
    field_id: Optional[str] = None


class FormField(WireModel):
    id: str
    type: FieldType = "text"
    label: str = ""
    placeholder: Optional[str] = None
    required: bool = False
    options: Optional[List[FieldOption]] = None
    enable_piping: bool = False
    piping_key: Optional[str] = None
    media: Optional[CardMedia] = None
    visibility_rule: Optional[Rule] = None
    hide_rule: Optional[Rule] = None   # checked before visibility_rule; a match always hides
    branch_rules: List[BranchRule] = Field(default_factory=list)
    dynamic_labels: List[DynamicLabel] = Field(default_factory=list)


# ────────────────────────────── 2. flowchart graph ──────────────────────────
class Position(WireModel):
    x: float = 0
    y: float = 0


class Viewport(WireModel):
    x: float = 0
    y: float = 0
    zoom: float = 1


class NodeData(WireModel):
    field_id: Optional[str] = None
    label: Optional[str] = None
    field_type: Optional[FieldType] = None
    field: Optional[FormField] = None
    statement_text: Optional[str] = None
    is_success_card: bool = False
    media: Optional[CardMedia] = None


class _NodeBase(WireModel):
    id: str
    position: Position = Field(default_factory=Position)
    data: NodeData = Field(default_factory=NodeData)


class StartNode(_NodeBase):
    id: str = START_NODE_ID
    type: Literal["start"] = "start"


class EndNode(_NodeBase):
    id: str = END_NODE_ID
    type: Literal["end"] = "end"


class QuestionNode(_NodeBase):
    type: Literal["question"] = "question"


class StatementNode(_NodeBase):
    type: Literal["statement"] = "statement"


Node = Annotated[Union[StartNode, EndNode, QuestionNode, StatementNode], Field(discriminator="type")]


class Edge(WireModel):
    id: str
    source: str
    target: str
    label: Optional[str] = None         # branch value this edge satisfies
    condition: Optional[Rule] = None


class Graph(WireModel):
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    viewport: Optional[Viewport] = None


class CompiledForm(BaseModel):
    fields: List[FormField]
    success_node: Optional[StatementNode] = None
    routes: Dict[str, List[Edge]] = Field(default_factory=dict)  # labelled edges by source id


# ────────────────────────────── 3. sessions ─────────────────────────────────
class SessionPayload(WireModel):
    session_token: Optional[str] = None
    current_card_index: int = 0
    partial_data: Dict[str, Any] = Field(default_factory=dict)
    form_id: str
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ────────────────────────────── 4. profile config ───────────────────────────
class AIConfig(WireModel):
    enabled: bool = False
    model: Optional[str] = None
    prompt: Optional[str] = None
    analysis_type: Optional[Literal["sentiment", "personality", "recommendation"]] = None
    output_format: Optional[Literal["percentage", "category", "freeform"]] = None
    timeout_seconds: float = 15.0


class ScoringOption(WireModel):
    answer: Any
    points: float = 0
    deltas: Dict[str, float] = Field(default_factory=dict)   # dimension id -> delta


class FieldScoring(WireModel):
    field_id: str
    weight: float = 1
    scoring: List[ScoringOption] = Field(default_factory=list)


class ScoringRule(WireModel):
    field_id: str
    operator: ConditionOperator = "equals"
    value: Any = None
    weight: float = 1
    required: bool = False


class ScoreRange(WireModel):
    min: float
    max: float
    label: str
    description: str = ""
    image: Optional[str] = None


class ScoreBounds(WireModel):
    min: float = 0
    max: float


class _ProfileConfigBase(WireModel):
    enabled: bool = True
    title: str = ""
    ai_config: Optional[AIConfig] = None


class PercentageConfig(_ProfileConfigBase):
    type: Literal["percentage"] = "percentage"
    description: str = ""
    field_scoring: List[FieldScoring] = Field(default_factory=list)
    ranges: List[ScoreRange] = Field(default_factory=list)
    bounds: Optional[ScoreBounds] = None


class ProfileCategory(WireModel):
    id: str
    name: str
    description: str = ""
    image: Optional[str] = None
    matching_logic: List[ScoringRule] = Field(default_factory=list)


class CategoryConfig(_ProfileConfigBase):
    type: Literal["category"] = "category"
    categories: List[ProfileCategory] = Field(default_factory=list)


class Dimension(WireModel):
    id: str
    name: str
    min_score: Optional[float] = None
    max_score: Optional[float] = None


class MultiDimensionConfig(_ProfileConfigBase):
    type: Literal["multi_dimension"] = "multi_dimension"
    dimensions: List[Dimension] = Field(default_factory=list)
    field_scoring: List[FieldScoring] = Field(default_factory=list)
    visualization: Literal["bars", "radar", "pie"] = "bars"


class Recommendation(WireModel):
    id: str
    name: str
    description: str = ""
    image: Optional[str] = None
    matching_criteria: List[ScoringRule] = Field(default_factory=list)


class RecommendationConfig(_ProfileConfigBase):
    type: Literal["recommendation"] = "recommendation"
    recommendations: List[Recommendation] = Field(default_factory=list)
    top_n: Optional[int] = None
    weighted: bool = True


ProfileEstimationConfig = Annotated[
    Union[PercentageConfig, CategoryConfig, MultiDimensionConfig, RecommendationConfig],
    Field(discriminator="type"),
]


# ────────────────────────────── 5. profile results ──────────────────────────
class PercentageScore(WireModel):
    score: float
    raw_score: float = 0
    max_score: float = 0
    range: Optional[str] = None
    description: str = ""


class PercentageResult(WireModel):
    type: Literal["percentage"] = "percentage"
    result: PercentageScore


class CategorySummary(WireModel):
    id: str
    name: str
    description: str = ""
    image: Optional[str] = None


class CategoryScore(WireModel):
    category: CategorySummary
    confidence: float
    votes: Dict[str, float] = Field(default_factory=dict)


class CategoryResult(WireModel):
    type: Literal["category"] = "category"
    result: CategoryScore


class DimensionScores(WireModel):
    scores: Dict[str, float]
    dimensions: List[Dimension] = Field(default_factory=list)
    visualization: Literal["bars", "radar", "pie"] = "bars"


class MultiDimensionResult(WireModel):
    type: Literal["multi_dimension"] = "multi_dimension"
    result: DimensionScores


class RecommendationMatch(WireModel):
    id: str
    name: str
    description: str = ""
    image: Optional[str] = None
    score: float
    match_percent: float = 0


class RecommendationScores(WireModel):
    recommendations: List[RecommendationMatch] = Field(default_factory=list)


class RecommendationResult(WireModel):
    type: Literal["recommendation"] = "recommendation"
    result: RecommendationScores


ProfileResult = Annotated[
    Union[PercentageResult, CategoryResult, MultiDimensionResult, RecommendationResult],
    Field(discriminator="type"),
]

PROFILE_CONFIG_ADAPTER: TypeAdapter = TypeAdapter(ProfileEstimationConfig)
PROFILE_RESULT_ADAPTER: TypeAdapter = TypeAdapter(ProfileResult)
