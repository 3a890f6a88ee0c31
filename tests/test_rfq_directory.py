"""Tests for the RFQ directory collaborators."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from bideval.models.rfq import Rfq, RfqStatus, Submission
from bideval.services.collaborators.rfq import (
    RFQ_SERVICE_URL_ENV,
    HttpRfqDirectory,
    InMemoryRfqDirectory,
    RfqDirectoryError,
    get_rfq_directory,
)

BASE_URL = "https://rfq.example.com/"

SUBMISSIONS = [
    {"submission_id": "sub-b", "rfq_id": "rfq-1", "supplier_id": "supplier-b", "price": 900},
    {"submission_id": "sub-a", "rfq_id": "rfq-1", "supplier_id": "supplier-a"},
]


def _directory(handler: Callable[[httpx.Request], httpx.Response]) -> HttpRfqDirectory:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpRfqDirectory(BASE_URL, token="rfq-token", client=client)


class TestHttpRfqDirectory:
    def test_get_rfq(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"rfq_id": "rfq-1", "status": "submissions_closed"})

        rfq = _directory(handler).get_rfq("rfq-1")

        assert rfq == Rfq(rfq_id="rfq-1", status=RfqStatus.SUBMISSIONS_CLOSED)
        assert str(seen[0].url) == "https://rfq.example.com/v1/rfqs/rfq-1"
        assert seen[0].headers["Authorization"] == "Bearer rfq-token"

    def test_missing_rfq_is_none(self) -> None:
        directory = _directory(lambda r: httpx.Response(404))

        assert directory.get_rfq("rfq-404") is None
        assert directory.get_submission("sub-404") is None
        assert directory.list_submissions("rfq-404") == []

    @pytest.mark.parametrize("payload", [SUBMISSIONS, {"items": SUBMISSIONS}])
    def test_list_submissions_accepts_list_or_items(self, payload: object) -> None:
        directory = _directory(lambda r: httpx.Response(200, json=payload))

        submissions = directory.list_submissions("rfq-1")

        assert [s.submission_id for s in submissions] == ["sub-b", "sub-a"]
        assert submissions[0].price == 900

    def test_server_error_raises(self) -> None:
        directory = _directory(lambda r: httpx.Response(500))

        with pytest.raises(RfqDirectoryError, match="HTTP 500"):
            directory.get_rfq("rfq-1")

    def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(RfqDirectoryError):
            _directory(handler).list_submissions("rfq-1")

    def test_malformed_payload_raises(self) -> None:
        directory = _directory(lambda r: httpx.Response(200, json={"rfq_id": "rfq-1"}))

        with pytest.raises(RfqDirectoryError, match="Malformed"):
            directory.get_rfq("rfq-1")

    def test_invalid_json_raises(self) -> None:
        directory = _directory(lambda r: httpx.Response(200, content=b"<html>"))

        with pytest.raises(RfqDirectoryError, match="invalid JSON"):
            directory.get_submission("sub-a")


class TestInMemoryRfqDirectory:
    def test_submissions_sorted_by_id(self) -> None:
        directory = InMemoryRfqDirectory()
        for item in SUBMISSIONS:
            directory.add_submission(Submission.model_validate(item))

        assert [s.submission_id for s in directory.list_submissions("rfq-1")] == [
            "sub-a",
            "sub-b",
        ]
        assert directory.list_submissions("rfq-2") == []


class TestGetRfqDirectory:
    def test_in_memory_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(RFQ_SERVICE_URL_ENV, raising=False)
        assert isinstance(get_rfq_directory(), InMemoryRfqDirectory)

    def test_http_when_configured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(RFQ_SERVICE_URL_ENV, BASE_URL)
        directory = get_rfq_directory()

        assert isinstance(directory, HttpRfqDirectory)
        directory.close()
