"""BidEval evaluation engine.

Pure functions over the domain models: scoring, validation, the lifecycle
state machine, completion tracking, consensus, finalization, disputes and
the results read model. Nothing here performs I/O.
"""

from bideval.engine.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from bideval.engine.errors import (
    AuthorizationError,
    DeadlinePassedError,
    EvaluationError,
    NoSubmissionsError,
    NotFoundError,
    ResultsNotAvailableError,
    StateConflictError,
    ThresholdNotMetError,
    ValidationError,
)
from bideval.engine.scoring import (
    SCORING_FUNCTIONS,
    ScoreResult,
    ScoringContext,
    calculate_overall_score,
    rank_submissions,
)

__all__ = [
    "DEFAULT_ENGINE_CONFIG",
    "SCORING_FUNCTIONS",
    "AuthorizationError",
    "DeadlinePassedError",
    "EngineConfig",
    "EvaluationError",
    "NoSubmissionsError",
    "NotFoundError",
    "ResultsNotAvailableError",
    "ScoreResult",
    "ScoringContext",
    "StateConflictError",
    "ThresholdNotMetError",
    "ValidationError",
    "calculate_overall_score",
    "rank_submissions",
]
