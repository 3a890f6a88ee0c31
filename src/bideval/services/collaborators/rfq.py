"""RFQ directory: RFQ status and submissions owned by the RFQ service.

Environment Variables:
    BIDEVAL_RFQ_SERVICE_URL: Base URL of the RFQ service. When unset an
        in-memory directory is used.
    BIDEVAL_RFQ_SERVICE_TOKEN: Optional bearer token for the RFQ service.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Protocol, runtime_checkable

import httpx
from pydantic import ValidationError as PydanticValidationError

from bideval.models.rfq import Rfq, Submission

logger = logging.getLogger(__name__)

RFQ_SERVICE_URL_ENV = "BIDEVAL_RFQ_SERVICE_URL"
RFQ_SERVICE_TOKEN_ENV = "BIDEVAL_RFQ_SERVICE_TOKEN"
DEFAULT_TIMEOUT_SECONDS = 10.0


class RfqDirectoryError(Exception):
    """Raised when the RFQ service cannot be reached or answers malformed data."""


@runtime_checkable
class RfqDirectory(Protocol):
    """Read access to RFQs and their submissions."""

    def get_rfq(self, rfq_id: str) -> Rfq | None: ...

    def list_submissions(self, rfq_id: str) -> list[Submission]: ...

    def get_submission(self, submission_id: str) -> Submission | None: ...


class InMemoryRfqDirectory:
    """In-memory RFQ directory for development and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rfqs: dict[str, Rfq] = {}
        self._submissions: dict[str, Submission] = {}

    def add_rfq(self, rfq: Rfq) -> Rfq:
        with self._lock:
            self._rfqs[rfq.rfq_id] = rfq
        return rfq

    def add_submission(self, submission: Submission) -> Submission:
        with self._lock:
            self._submissions[submission.submission_id] = submission
        return submission

    def get_rfq(self, rfq_id: str) -> Rfq | None:
        with self._lock:
            return self._rfqs.get(rfq_id)

    def list_submissions(self, rfq_id: str) -> list[Submission]:
        with self._lock:
            submissions = [s for s in self._submissions.values() if s.rfq_id == rfq_id]
        return sorted(submissions, key=lambda s: s.submission_id)

    def get_submission(self, submission_id: str) -> Submission | None:
        with self._lock:
            return self._submissions.get(submission_id)

    def clear(self) -> None:
        with self._lock:
            self._rfqs.clear()
            self._submissions.clear()


class HttpRfqDirectory:
    """RFQ directory backed by the RFQ service's REST API.

    Endpoints used:
        GET {base}/v1/rfqs/{rfq_id}
        GET {base}/v1/rfqs/{rfq_id}/submissions
        GET {base}/v1/submissions/{submission_id}

    A 404 maps to None; any other failure raises RfqDirectoryError.

    Args:
        base_url: Base URL of the RFQ service.
        token: Optional bearer token.
        client: Preconfigured httpx client (tests pass one with a MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        client: httpx.Client | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.Client(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")
        self._headers = headers

    def _get(self, path: str) -> object | None:
        url = f"{self._base_url}{path}"
        try:
            response = self._client.get(url, headers=self._headers)
        except httpx.HTTPError as e:
            raise RfqDirectoryError(f"RFQ service request failed: {type(e).__name__}") from e
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise RfqDirectoryError(f"RFQ service returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise RfqDirectoryError("RFQ service returned invalid JSON") from e

    def get_rfq(self, rfq_id: str) -> Rfq | None:
        data = self._get(f"/v1/rfqs/{rfq_id}")
        if data is None:
            return None
        try:
            return Rfq.model_validate(data)
        except PydanticValidationError as e:
            raise RfqDirectoryError(f"Malformed RFQ {rfq_id} from RFQ service") from e

    def list_submissions(self, rfq_id: str) -> list[Submission]:
        data = self._get(f"/v1/rfqs/{rfq_id}/submissions")
        if data is None:
            return []
        items = data.get("items", []) if isinstance(data, dict) else data
        try:
            return [Submission.model_validate(item) for item in items]
        except (PydanticValidationError, TypeError) as e:
            raise RfqDirectoryError(f"Malformed submissions for RFQ {rfq_id}") from e

    def get_submission(self, submission_id: str) -> Submission | None:
        data = self._get(f"/v1/submissions/{submission_id}")
        if data is None:
            return None
        try:
            return Submission.model_validate(data)
        except PydanticValidationError as e:
            raise RfqDirectoryError(f"Malformed submission {submission_id}") from e

    def close(self) -> None:
        self._client.close()


def get_rfq_directory() -> RfqDirectory:
    """Return an HTTP directory when BIDEVAL_RFQ_SERVICE_URL is set, else in-memory."""
    base_url = os.environ.get(RFQ_SERVICE_URL_ENV)
    if base_url:
        return HttpRfqDirectory(base_url, token=os.environ.get(RFQ_SERVICE_TOKEN_ENV))
    logger.info("%s not set; using in-memory RFQ directory", RFQ_SERVICE_URL_ENV)
    return InMemoryRfqDirectory()
