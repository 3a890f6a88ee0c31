"""Request correlation for the BidEval API.

Every request carries an id that reaches audit events, error envelopes and
the current span. A caller-supplied X-Request-Id is kept when it is not
blank; otherwise a uuid4 is generated.
"""

import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from bideval.observability.tracing import set_span_attributes

REQUEST_ID_HEADER = "X-Request-Id"


def request_id_for(request: Request) -> str:
    """Id of the request, assigning one if the middleware has not run."""
    assigned: str | None = getattr(request.state, "request_id", None)
    if assigned:
        return assigned
    supplied = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    request.state.request_id = supplied or str(uuid.uuid4())
    return str(request.state.request_id)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Stamps request.state.request_id and echoes it as X-Request-Id."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request_id_for(request)
        set_span_attributes({"bideval.request_id": request_id})

        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
