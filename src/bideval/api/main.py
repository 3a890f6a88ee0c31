"""BidEval FastAPI application factory.

This module provides the create_app() factory for bootstrapping the BidEval API.
"""

from concurrent.futures import Executor, ThreadPoolExecutor

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from bideval import __version__
from bideval.api.errors import (
    BidEvalHttpError,
    bideval_http_error_handler,
    evaluation_error_handler,
    generic_exception_handler,
    http_exception_handler,
    request_validation_error_handler,
    rfq_directory_error_handler,
)
from bideval.api.middleware.request_id import RequestIdMiddleware
from bideval.api.routes.evaluations import router as evaluations_router
from bideval.api.routes.health import router as health_router
from bideval.audit.sink import get_audit_sink
from bideval.engine.errors import EvaluationError
from bideval.observability.tracing import configure_tracing, instrument_fastapi
from bideval.persistence.repositories.evaluations import get_evaluation_store
from bideval.services.collaborators.rfq import RfqDirectoryError, get_rfq_directory
from bideval.services.evaluations.service import EvaluationService
from bideval.services.notifications.dispatcher import NotificationDispatcher
from bideval.services.notifications.notifiers import get_notifier

SIDE_EFFECT_WORKERS = 4


def build_service(executor: Executor) -> EvaluationService:
    """Build an EvaluationService from the environment.

    Notifications and report generation are handed to executor so requests
    never wait on delivery.
    """
    return EvaluationService(
        get_evaluation_store(),
        get_rfq_directory(),
        dispatcher=NotificationDispatcher(get_notifier(), executor=executor),
        audit_sink=get_audit_sink(),
    )


def create_app(service: EvaluationService | None = None) -> FastAPI:
    """Create and configure the BidEval FastAPI application.

    This factory:
    - Creates a FastAPI app with BidEval metadata
    - Configures tracing and the request ID middleware
    - Registers the domain and HTTP exception handlers
    - Mounts the health router (no auth required)
    - Mounts the /v1 evaluation router (auth required)

    Args:
        service: Optional EvaluationService for testing. If None, one is built
            from the environment with a side-effect thread pool; the pool is
            drained and the store closed on shutdown.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="BidEval API",
        description="Bid evaluation and scoring engine for RFQ submissions",
        version=__version__,
    )

    owns_service = service is None
    executor: ThreadPoolExecutor | None = None
    if service is None:
        executor = ThreadPoolExecutor(
            max_workers=SIDE_EFFECT_WORKERS, thread_name_prefix="bideval-side-effects"
        )
        service = build_service(executor)
    app.state.evaluation_service = service

    configure_tracing()

    app.add_middleware(RequestIdMiddleware)

    instrument_fastapi(app)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Drain pending side effects and close the store created by this factory."""
        if executor is not None:
            executor.shutdown(wait=True)
        if owns_service:
            app.state.evaluation_service.store.close()

    app.add_exception_handler(EvaluationError, evaluation_error_handler)
    app.add_exception_handler(RfqDirectoryError, rfq_directory_error_handler)
    app.add_exception_handler(BidEvalHttpError, bideval_http_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(evaluations_router)

    return app
