"""RFQ and submission models supplied by the RFQ directory collaborator."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class RfqStatus(StrEnum):
    """RFQ status as reported by the RFQ service."""

    DRAFT = "draft"
    PUBLISHED = "published"
    SUBMISSIONS_CLOSED = "submissions_closed"
    EVALUATION = "evaluation"
    AWARDED = "awarded"
    CANCELLED = "cancelled"


EVALUABLE_RFQ_STATUSES: frozenset[RfqStatus] = frozenset(
    {RfqStatus.SUBMISSIONS_CLOSED, RfqStatus.EVALUATION}
)


class Rfq(BaseModel):
    """An RFQ as seen by the evaluation engine."""

    model_config = ConfigDict(frozen=True)

    rfq_id: str = Field(..., min_length=1)
    title: str | None = None
    status: RfqStatus


class Submission(BaseModel):
    """A supplier's submission to an RFQ.

    ``price`` and ``submitted_at`` break ties when ranking.
    """

    model_config = ConfigDict(frozen=True)

    submission_id: str = Field(..., min_length=1)
    rfq_id: str = Field(..., min_length=1)
    supplier_id: str
    supplier_name: str | None = None
    price: float | None = None
    submitted_at: datetime | None = None
