"""Evaluation routes for the BidEval API.

Maps the evaluation service operations onto /v1/evaluations. Successful
responses use the envelope ``{"data": ..., "meta": {"warnings": [...]}}``;
warnings carry notification or report failures that did not fail the
operation. Domain errors are translated by the handlers in bideval.api.errors.
"""

from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from bideval.api.auth import RequireActor
from bideval.engine.listing import EvaluationFilters
from bideval.models.evaluation import EvaluationStatus, EvaluationType, ScoringMethod
from bideval.services.evaluations.inputs import (
    AddEvaluatorInput,
    BuildConsensusInput,
    CancelEvaluationInput,
    CreateEvaluationInput,
    FinalizeInput,
    OperationResult,
    RaiseDisputeInput,
    SubmitScoreInput,
    UpdateEvaluationInput,
)
from bideval.services.evaluations.service import EvaluationService

router = APIRouter(prefix="/v1", tags=["Evaluations"])


def _service(request: Request) -> EvaluationService:
    service: EvaluationService = request.app.state.evaluation_service
    return service


def _with_request_id(body: BaseModel, request: Request) -> Any:
    """Stamp the middleware request id onto an operation input."""
    return body.model_copy(update={"request_id": getattr(request.state, "request_id", None)})


def _envelope(data: Any, warnings: list[str] | None = None) -> dict[str, Any]:
    return jsonable_encoder({"data": data, "meta": {"warnings": warnings or []}})


def _result(result: OperationResult[Any]) -> dict[str, Any]:
    return _envelope(result.value, result.warnings)


@router.post("/evaluations", status_code=201)
def create_evaluation(
    body: CreateEvaluationInput, request: Request, actor_ctx: RequireActor
) -> dict[str, Any]:
    """Create a draft evaluation for a closed RFQ."""
    result = _service(request).create_evaluation(
        actor_ctx.to_actor(), _with_request_id(body, request)
    )
    return _result(result)


@router.get("/evaluations")
def list_evaluations(
    request: Request,
    actor_ctx: RequireActor,
    rfq_id: str | None = None,
    evaluation_type: EvaluationType | None = None,
    status: EvaluationStatus | None = None,
    scoring_method: ScoringMethod | None = None,
    evaluator_id: str | None = None,
    created_by: str | None = None,
    is_blind_evaluation: bool | None = None,
    search: str | None = None,
    page: int = Query(default=1),
    limit: int | None = Query(default=None),
) -> dict[str, Any]:
    """List visible evaluations, newest first, with a summary block."""
    filters = EvaluationFilters(
        rfq_id=rfq_id,
        evaluation_type=evaluation_type,
        status=status,
        scoring_method=scoring_method,
        evaluator_id=evaluator_id,
        created_by=created_by,
        is_blind_evaluation=is_blind_evaluation,
        search=search,
    )
    listing = _service(request).list_evaluations(
        actor_ctx.to_actor(), filters, page=page, limit=limit
    )
    return _envelope(listing)


@router.get("/evaluations/{evaluation_id}")
def get_evaluation(evaluation_id: str, request: Request, actor_ctx: RequireActor) -> dict[str, Any]:
    """Evaluation detail; blind evaluations hide other evaluators' scores."""
    return _envelope(_service(request).get_evaluation(actor_ctx.to_actor(), evaluation_id))


@router.put("/evaluations/{evaluation_id}")
def update_evaluation(
    evaluation_id: str,
    body: UpdateEvaluationInput,
    request: Request,
    actor_ctx: RequireActor,
) -> dict[str, Any]:
    """Update a draft evaluation."""
    # exclude_unset must survive the request id stamp
    data = UpdateEvaluationInput.model_validate(
        {
            **body.model_dump(exclude_unset=True),
            "request_id": getattr(request.state, "request_id", None),
        }
    )
    return _result(_service(request).update_evaluation(actor_ctx.to_actor(), evaluation_id, data))


@router.delete("/evaluations/{evaluation_id}")
def cancel_evaluation(
    evaluation_id: str,
    request: Request,
    actor_ctx: RequireActor,
    body: CancelEvaluationInput | None = None,
) -> dict[str, Any]:
    """Cancel a draft evaluation."""
    data = _with_request_id(body or CancelEvaluationInput(), request)
    return _result(_service(request).cancel_evaluation(actor_ctx.to_actor(), evaluation_id, data))


@router.post("/evaluations/{evaluation_id}/start")
def start_evaluation(
    evaluation_id: str, request: Request, actor_ctx: RequireActor
) -> dict[str, Any]:
    """Start a draft evaluation."""
    return _result(
        _service(request).start_evaluation(
            actor_ctx.to_actor(),
            evaluation_id,
            request_id=getattr(request.state, "request_id", None),
        )
    )


@router.post("/evaluations/{evaluation_id}/evaluators", status_code=201)
def add_evaluator(
    evaluation_id: str,
    body: AddEvaluatorInput,
    request: Request,
    actor_ctx: RequireActor,
) -> dict[str, Any]:
    """Assign an evaluator."""
    return _result(
        _service(request).add_evaluator(
            actor_ctx.to_actor(), evaluation_id, _with_request_id(body, request)
        )
    )


@router.delete("/evaluations/{evaluation_id}/evaluators/{user_id}")
def remove_evaluator(
    evaluation_id: str, user_id: str, request: Request, actor_ctx: RequireActor
) -> dict[str, Any]:
    """Remove an evaluator."""
    return _result(
        _service(request).remove_evaluator(
            actor_ctx.to_actor(),
            evaluation_id,
            user_id,
            request_id=getattr(request.state, "request_id", None),
        )
    )


@router.post("/evaluations/{evaluation_id}/score")
def submit_score(
    evaluation_id: str,
    body: SubmitScoreInput,
    request: Request,
    actor_ctx: RequireActor,
) -> dict[str, Any]:
    """Submit or replace the caller's score for one submission."""
    return _result(
        _service(request).submit_score(
            actor_ctx.to_actor(), evaluation_id, _with_request_id(body, request)
        )
    )


@router.get("/evaluations/{evaluation_id}/progress")
def get_progress(evaluation_id: str, request: Request, actor_ctx: RequireActor) -> dict[str, Any]:
    """Per-evaluator completion progress."""
    return _envelope(_service(request).get_progress(actor_ctx.to_actor(), evaluation_id))


@router.post("/evaluations/{evaluation_id}/consensus")
def build_consensus(
    evaluation_id: str,
    body: BuildConsensusInput,
    request: Request,
    actor_ctx: RequireActor,
) -> dict[str, Any]:
    """Build consensus and complete the evaluation."""
    return _result(
        _service(request).build_consensus(
            actor_ctx.to_actor(), evaluation_id, _with_request_id(body, request)
        )
    )


@router.post("/evaluations/{evaluation_id}/finalize")
def finalize_evaluation(
    evaluation_id: str,
    body: FinalizeInput,
    request: Request,
    actor_ctx: RequireActor,
) -> dict[str, Any]:
    """Finalize the evaluation with an award recommendation."""
    return _result(
        _service(request).finalize_evaluation(
            actor_ctx.to_actor(), evaluation_id, _with_request_id(body, request)
        )
    )


@router.get("/evaluations/{evaluation_id}/results")
def get_results(evaluation_id: str, request: Request, actor_ctx: RequireActor) -> dict[str, Any]:
    """Rankings and statistics of a completed or finalized evaluation."""
    return _envelope(_service(request).get_results(actor_ctx.to_actor(), evaluation_id))


@router.get("/evaluations/{evaluation_id}/report")
def get_report(evaluation_id: str, request: Request, actor_ctx: RequireActor) -> dict[str, Any]:
    """JSON report of a finalized evaluation."""
    return _envelope(_service(request).get_report(actor_ctx.to_actor(), evaluation_id))


@router.post("/evaluations/{evaluation_id}/dispute", status_code=201)
def raise_dispute(
    evaluation_id: str,
    body: RaiseDisputeInput,
    request: Request,
    actor_ctx: RequireActor,
) -> dict[str, Any]:
    """Raise a dispute; the evaluation status is unchanged."""
    return _result(
        _service(request).raise_dispute(
            actor_ctx.to_actor(), evaluation_id, _with_request_id(body, request)
        )
    )


@router.get("/evaluations/{evaluation_id}/disputes")
def list_disputes(evaluation_id: str, request: Request, actor_ctx: RequireActor) -> dict[str, Any]:
    """Disputes raised against the evaluation."""
    return _envelope(_service(request).list_disputes(actor_ctx.to_actor(), evaluation_id))
