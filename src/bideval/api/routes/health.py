"""Liveness probe for the BidEval API. Unauthenticated."""

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel, Field

from bideval import __version__

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str = Field(default="ok")
    time: str = Field(..., description="Server time, ISO-8601 UTC")
    version: str = Field(default=__version__, description="bideval package version")


@router.get("/health", response_model=HealthResponse)
def get_health() -> HealthResponse:
    return HealthResponse(time=datetime.now(UTC).isoformat())
