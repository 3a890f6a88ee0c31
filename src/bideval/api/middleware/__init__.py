"""BidEval API middleware package."""

from bideval.api.middleware.request_id import RequestIdMiddleware

__all__ = ["RequestIdMiddleware"]
