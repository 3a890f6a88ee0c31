"""BidEval domain models.

Evaluation lifecycle records and the RFQ/submission views consumed from the
RFQ directory.
"""

from bideval.models.evaluation import (
    GROUP_METHODS,
    RESULT_STATUSES,
    SCORING_STATUSES,
    ConfidenceLevel,
    ConsensusRecord,
    Criterion,
    CriterionGroup,
    CriterionScore,
    Dispute,
    DisputeAnnotation,
    DisputeStatus,
    DisputeType,
    Evaluation,
    EvaluationStatus,
    EvaluationType,
    Evaluator,
    EvaluatorStatus,
    FinalScore,
    OverallRating,
    RankingEntry,
    Recommendation,
    RecommendationType,
    RequestedAction,
    Score,
    ScoringMethod,
)
from bideval.models.rfq import EVALUABLE_RFQ_STATUSES, Rfq, RfqStatus, Submission

__all__ = [
    "EVALUABLE_RFQ_STATUSES",
    "GROUP_METHODS",
    "RESULT_STATUSES",
    "SCORING_STATUSES",
    "ConfidenceLevel",
    "ConsensusRecord",
    "Criterion",
    "CriterionGroup",
    "CriterionScore",
    "Dispute",
    "DisputeAnnotation",
    "DisputeStatus",
    "DisputeType",
    "Evaluation",
    "EvaluationStatus",
    "EvaluationType",
    "Evaluator",
    "EvaluatorStatus",
    "FinalScore",
    "OverallRating",
    "RankingEntry",
    "Recommendation",
    "RecommendationType",
    "RequestedAction",
    "Rfq",
    "RfqStatus",
    "Score",
    "ScoringMethod",
    "Submission",
]
