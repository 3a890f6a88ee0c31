"""Evaluation domain models.

Pydantic models for the evaluation lifecycle: the evaluation itself, its
criteria and evaluators, evaluator scores, the consensus record, the award
recommendation and disputes.

Scoring methods and evaluation types are closed enums; every record that
leaves the engine is frozen and replaced wholesale on change.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class EvaluationStatus(StrEnum):
    """Lifecycle status of an evaluation."""

    DRAFT = "draft"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    CONSENSUS = "consensus"
    COMPLETED = "completed"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


SCORING_STATUSES: frozenset[EvaluationStatus] = frozenset(
    {EvaluationStatus.ACTIVE, EvaluationStatus.IN_PROGRESS}
)
RESULT_STATUSES: frozenset[EvaluationStatus] = frozenset(
    {EvaluationStatus.COMPLETED, EvaluationStatus.FINALIZED}
)


class EvaluationType(StrEnum):
    """What aspect of the submissions is being evaluated."""

    TECHNICAL = "technical"
    COMMERCIAL = "commercial"
    COMBINED = "combined"
    PREQUALIFICATION = "prequalification"
    POST_AWARD = "post_award"


class ScoringMethod(StrEnum):
    """How per-criterion scores aggregate into an overall score."""

    WEIGHTED_SCORING = "weighted_scoring"
    POINTS_SYSTEM = "points_system"
    PASS_FAIL = "pass_fail"
    RANKING = "ranking"
    HYBRID = "hybrid"


GROUP_METHODS: frozenset[ScoringMethod] = frozenset(
    {ScoringMethod.WEIGHTED_SCORING, ScoringMethod.POINTS_SYSTEM, ScoringMethod.PASS_FAIL}
)


class OverallRating(StrEnum):
    """Evaluator's qualitative rating of a submission."""

    EXCELLENT = "excellent"
    GOOD = "good"
    SATISFACTORY = "satisfactory"
    POOR = "poor"
    FAIL = "fail"


class ConfidenceLevel(StrEnum):
    """Evaluator's confidence in their own score."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EvaluatorStatus(StrEnum):
    """Membership status of an evaluator."""

    ACTIVE = "active"
    REMOVED = "removed"


class RecommendationType(StrEnum):
    """Outcome recommended at finalization."""

    AWARD = "award"
    REJECT_ALL = "reject_all"
    NEGOTIATE = "negotiate"
    REQUEST_CLARIFICATION = "request_clarification"


class DisputeType(StrEnum):
    """What a dispute challenges."""

    SCORING = "scoring"
    BIAS = "bias"
    PROCESS = "process"
    CRITERIA = "criteria"


class RequestedAction(StrEnum):
    """Remedy requested by the party raising a dispute."""

    RE_EVALUATE = "re_evaluate"
    REVIEW_SCORES = "review_scores"
    CHANGE_EVALUATOR = "change_evaluator"
    APPEAL = "appeal"


class DisputeStatus(StrEnum):
    """Status of a dispute record."""

    OPEN = "open"


class Criterion(BaseModel):
    """A scoring criterion.

    The meaning of ``weight`` depends on the scoring method: a relative weight
    for weighted scoring, ignored by points, pass/fail and ranking.
    ``max_score`` caps the per-criterion value and defaults to the
    evaluation's ``max_score``.
    """

    model_config = ConfigDict(frozen=True)

    criterion_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    weight: float = 1.0
    max_score: float | None = None
    required: bool = True
    group: str | None = Field(default=None, description="Criterion group key (hybrid only)")


class CriterionGroup(BaseModel):
    """A group of criteria scored by one sub-method under hybrid scoring."""

    model_config = ConfigDict(frozen=True)

    group_id: str = Field(..., min_length=1)
    name: str | None = None
    method: ScoringMethod
    weight: float = 1.0


class Evaluator(BaseModel):
    """An evaluator assigned to an evaluation."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    role: str = "evaluator"
    status: EvaluatorStatus = EvaluatorStatus.ACTIVE
    assigned_at: datetime | None = None
    removed_at: datetime | None = None


class Evaluation(BaseModel):
    """One evaluation instance for an RFQ."""

    model_config = ConfigDict(frozen=True)

    evaluation_id: str
    evaluation_number: str
    rfq_id: str
    title: str
    description: str | None = None
    evaluation_type: EvaluationType
    scoring_method: ScoringMethod
    max_score: float
    passing_score: float | None = None
    criteria: list[Criterion]
    criterion_groups: list[CriterionGroup] = Field(default_factory=list)
    evaluators: list[Evaluator]
    is_blind_evaluation: bool = False
    allow_consensus: bool = True
    consensus_threshold: float = 75.0
    deadline: datetime
    instructions: str | None = None
    require_justification: bool = True
    status: EvaluationStatus = EvaluationStatus.DRAFT
    created_by: str
    created_at: datetime
    updated_at: datetime | None = None
    started_by: str | None = None
    started_at: datetime | None = None
    submission_count: int | None = None
    consensus_ready_at: datetime | None = None
    completed_at: datetime | None = None
    finalized_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    version: int = 1

    def active_evaluators(self) -> list[Evaluator]:
        """Return evaluators whose membership is active."""
        return [e for e in self.evaluators if e.status == EvaluatorStatus.ACTIVE]

    def active_evaluator_ids(self) -> frozenset[str]:
        """Return the user ids of active evaluators."""
        return frozenset(e.user_id for e in self.active_evaluators())

    def is_active_evaluator(self, user_id: str) -> bool:
        """Return True if the user is an active evaluator."""
        return user_id in self.active_evaluator_ids()

    def is_member(self, user_id: str) -> bool:
        """Return True if the user was ever assigned, active or removed."""
        return any(e.user_id == user_id for e in self.evaluators)

    def criterion_by_id(self) -> dict[str, Criterion]:
        """Return criteria keyed by id."""
        return {c.criterion_id: c for c in self.criteria}


class CriterionScore(BaseModel):
    """One evaluator's value for one criterion."""

    model_config = ConfigDict(frozen=True)

    criterion_id: str = Field(..., min_length=1)
    score: float
    comment: str | None = Field(default=None, max_length=2000)


class Score(BaseModel):
    """The current score of one evaluator for one submission.

    A resubmission for the same (evaluator, submission) pair supersedes this
    record and increments ``version``.
    """

    model_config = ConfigDict(frozen=True)

    score_id: str
    evaluation_id: str
    submission_id: str
    evaluator_id: str
    criterion_scores: list[CriterionScore]
    overall_score: float | None = None
    overall_rating: OverallRating
    justification: str | None = None
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence_level: ConfidenceLevel = ConfidenceLevel.MEDIUM
    incomplete: bool = False
    version: int = 1
    submitted_at: datetime

    def values_by_criterion(self) -> dict[str, float]:
        """Return criterion values keyed by criterion id."""
        return {cs.criterion_id: cs.score for cs in self.criterion_scores}


class FinalScore(BaseModel):
    """Agreed final score for one submission."""

    model_config = ConfigDict(frozen=True)

    submission_id: str = Field(..., min_length=1)
    score: float
    notes: str | None = Field(default=None, max_length=2000)


class DisputeAnnotation(BaseModel):
    """A disagreement considered while building consensus."""

    model_config = ConfigDict(frozen=True)

    description: str = Field(..., min_length=1, max_length=2000)
    dispute_id: str | None = None
    submission_id: str | None = None
    resolution: str | None = Field(default=None, max_length=1000)


class ConsensusRecord(BaseModel):
    """Immutable record of the agreed final scores for an evaluation."""

    model_config = ConfigDict(frozen=True)

    consensus_id: str
    evaluation_id: str
    final_scores: list[FinalScore]
    agreed_by: list[str]
    agreement_percentage: float
    required_percentage: float
    disputes: list[DisputeAnnotation] = Field(default_factory=list)
    consensus_notes: str | None = None
    resolution: str | None = None
    facilitated_by: str
    created_at: datetime

    def scores_by_submission(self) -> dict[str, float]:
        """Return final scores keyed by submission id."""
        return {fs.submission_id: fs.score for fs in self.final_scores}


class RankingEntry(BaseModel):
    """A submission's position in the final ranking."""

    model_config = ConfigDict(frozen=True)

    submission_id: str = Field(..., min_length=1)
    rank: int = Field(..., ge=1)
    score: float | None = None
    supplier_id: str | None = None


class Recommendation(BaseModel):
    """Immutable award recommendation produced at finalization."""

    model_config = ConfigDict(frozen=True)

    recommendation_id: str
    evaluation_id: str
    final_rankings: list[RankingEntry]
    recommendation: RecommendationType
    justification: str
    recommended_supplier_id: str | None = None
    conditions: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    finalized_by: str
    finalized_at: datetime


class Dispute(BaseModel):
    """Immutable challenge raised against an evaluation."""

    model_config = ConfigDict(frozen=True)

    dispute_id: str
    evaluation_id: str
    dispute_type: DisputeType
    description: str
    evidence: list[str] = Field(default_factory=list)
    requested_action: RequestedAction
    raised_by: str
    status: DisputeStatus = DisputeStatus.OPEN
    evaluation_status_at_raise: EvaluationStatus
    created_at: datetime
