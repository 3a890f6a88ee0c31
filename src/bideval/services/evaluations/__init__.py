"""Evaluation orchestration: capabilities, operation inputs and the service."""

from bideval.services.evaluations.capabilities import (
    ALL_ROLES,
    Actor,
    Capability,
    CapabilityChecker,
    Role,
    RoleCapabilityChecker,
)
from bideval.services.evaluations.inputs import (
    AddEvaluatorInput,
    BuildConsensusInput,
    CancelEvaluationInput,
    CreateEvaluationInput,
    EvaluationDetail,
    EvaluationList,
    FinalizeInput,
    OperationResult,
    ProgressReport,
    RaiseDisputeInput,
    ScoreOutcome,
    SubmitScoreInput,
    UpdateEvaluationInput,
)
from bideval.services.evaluations.service import EvaluationService

__all__ = [
    "ALL_ROLES",
    "Actor",
    "AddEvaluatorInput",
    "BuildConsensusInput",
    "CancelEvaluationInput",
    "Capability",
    "CapabilityChecker",
    "CreateEvaluationInput",
    "EvaluationDetail",
    "EvaluationList",
    "EvaluationService",
    "FinalizeInput",
    "OperationResult",
    "ProgressReport",
    "RaiseDisputeInput",
    "Role",
    "RoleCapabilityChecker",
    "ScoreOutcome",
    "SubmitScoreInput",
    "UpdateEvaluationInput",
]
