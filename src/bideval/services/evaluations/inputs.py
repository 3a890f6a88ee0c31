"""Input and output models for EvaluationService operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from bideval.engine.listing import EvaluationSummary, Page
from bideval.models.evaluation import (
    ConfidenceLevel,
    ConsensusRecord,
    Criterion,
    CriterionGroup,
    CriterionScore,
    DisputeAnnotation,
    DisputeType,
    Evaluation,
    EvaluationStatus,
    EvaluationType,
    FinalScore,
    OverallRating,
    RankingEntry,
    Recommendation,
    RecommendationType,
    RequestedAction,
    Score,
    ScoringMethod,
)

T = TypeVar("T")


class CreateEvaluationInput(BaseModel):
    """Input model for creating an evaluation."""

    rfq_id: str = Field(..., min_length=1, description="RFQ being evaluated")
    title: str = Field(..., description="Evaluation title")
    description: str | None = Field(default=None, description="Free-text description")
    evaluation_type: EvaluationType
    scoring_method: ScoringMethod
    max_score: float = Field(default=100.0, description="Upper bound of every overall score")
    passing_score: float | None = None
    criteria: list[Criterion] = Field(default_factory=list)
    criterion_groups: list[CriterionGroup] = Field(
        default_factory=list, description="Sub-method groups for hybrid scoring"
    )
    evaluators: list[str] = Field(default_factory=list, description="Evaluator user ids")
    is_blind_evaluation: bool = False
    allow_consensus: bool = True
    consensus_threshold: float | None = Field(
        default=None, description="Agreement percentage; engine default when omitted"
    )
    deadline: datetime
    instructions: str | None = None
    require_justification: bool = True
    request_id: str | None = Field(default=None, description="Request correlation ID")


class UpdateEvaluationInput(BaseModel):
    """Input model for updating a draft evaluation. Unset fields are kept."""

    title: str | None = None
    description: str | None = None
    evaluation_type: EvaluationType | None = None
    scoring_method: ScoringMethod | None = None
    max_score: float | None = None
    passing_score: float | None = None
    criteria: list[Criterion] | None = None
    criterion_groups: list[CriterionGroup] | None = None
    evaluators: list[str] | None = None
    is_blind_evaluation: bool | None = None
    allow_consensus: bool | None = None
    consensus_threshold: float | None = None
    deadline: datetime | None = None
    instructions: str | None = None
    require_justification: bool | None = None
    request_id: str | None = Field(default=None, description="Request correlation ID")


class AddEvaluatorInput(BaseModel):
    """Input model for assigning an evaluator."""

    user_id: str = Field(..., min_length=1)
    role: str = "evaluator"
    request_id: str | None = None


class SubmitScoreInput(BaseModel):
    """Input model for submitting or replacing a score."""

    submission_id: str = Field(..., min_length=1)
    criterion_scores: list[CriterionScore]
    overall_score: float | None = Field(
        default=None, description="Optional; must match the calculated score"
    )
    overall_rating: OverallRating
    justification: str | None = Field(default=None, max_length=5000)
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence_level: ConfidenceLevel = ConfidenceLevel.MEDIUM
    request_id: str | None = None


class BuildConsensusInput(BaseModel):
    """Input model for building consensus."""

    final_scores: list[FinalScore]
    agreed_by: list[str]
    disputes: list[DisputeAnnotation] = Field(default_factory=list)
    consensus_notes: str | None = Field(default=None, max_length=2000)
    resolution: str | None = Field(default=None, max_length=2000)
    request_id: str | None = None


class FinalizeInput(BaseModel):
    """Input model for finalizing an evaluation."""

    final_rankings: list[RankingEntry] | None = Field(
        default=None, description="Derived from the consensus when omitted"
    )
    recommendation: RecommendationType
    justification: str = Field(..., max_length=5000)
    recommended_supplier_id: str | None = None
    conditions: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    request_id: str | None = None


class RaiseDisputeInput(BaseModel):
    """Input model for raising a dispute."""

    dispute_type: DisputeType
    description: str
    evidence: list[str] = Field(default_factory=list)
    requested_action: RequestedAction
    request_id: str | None = None


class CancelEvaluationInput(BaseModel):
    """Input model for cancelling a draft evaluation."""

    reason: str | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Value returned by a mutating operation plus side-effect warnings."""

    value: T
    warnings: list[str] = field(default_factory=list)


class ScoreOutcome(BaseModel):
    """Result of a score submission."""

    model_config = ConfigDict(frozen=True)

    score: Score
    evaluation_status: EvaluationStatus
    evaluator_complete: bool
    ready_for_consensus: bool


class EvaluatorProgressView(BaseModel):
    """Progress of one evaluator."""

    model_config = ConfigDict(frozen=True)

    evaluator_id: str
    scored: int
    total: int
    percentage: float
    complete: bool


class ProgressReport(BaseModel):
    """Completion progress of an evaluation."""

    model_config = ConfigDict(frozen=True)

    evaluation_id: str
    status: EvaluationStatus
    total_submissions: int
    percentage: float
    all_complete: bool
    evaluators: list[EvaluatorProgressView]


class EvaluationDetail(BaseModel):
    """An evaluation with the records the caller may see."""

    model_config = ConfigDict(frozen=True)

    evaluation: Evaluation
    scores: list[Score]
    consensus: ConsensusRecord | None = None
    recommendation: Recommendation | None = None


class EvaluationList(BaseModel):
    """A page of evaluations with the summary over every match."""

    model_config = ConfigDict(frozen=True)

    items: list[Evaluation]
    page: Page
    summary: EvaluationSummary
