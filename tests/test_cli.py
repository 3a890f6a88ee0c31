"""Tests for the bideval CLI score and rank commands."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any

import pytest

from bideval.cli import main

CRITERIA = [
    {"criterion_id": "price", "name": "Price", "weight": 60},
    {"criterion_id": "quality", "name": "Quality", "weight": 40},
]


def _write(tmp_path: Path, data: Any) -> str:
    path = tmp_path / "input.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def _run(argv: list[str], capsys: pytest.CaptureFixture[str]) -> tuple[int, dict[str, Any]]:
    exit_code = main(argv)
    output: dict[str, Any] = json.loads(capsys.readouterr().out)
    return exit_code, output


class TestScoreCommand:
    def test_weighted_score(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        path = _write(
            tmp_path,
            {
                "scoring_method": "weighted_scoring",
                "max_score": 10,
                "criteria": CRITERIA,
                "criterion_scores": [
                    {"criterion_id": "price", "score": 8},
                    {"criterion_id": "quality", "score": 6},
                ],
            },
        )

        exit_code, output = _run(["score", "--input", path], capsys)

        assert exit_code == 0
        assert output == {
            "incomplete": False,
            "overall_score": 7.2,
            "scoring_method": "weighted_scoring",
        }

    def test_reads_stdin(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        payload = {
            "scoring_method": "weighted_scoring",
            "max_score": 10,
            "criteria": CRITERIA,
            "criterion_scores": [{"criterion_id": "price", "score": 5}],
        }
        monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(payload)))

        exit_code, output = _run(["score"], capsys)

        assert exit_code == 0
        assert output["overall_score"] == 5.0

    def test_unknown_criterion(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        path = _write(
            tmp_path,
            {
                "scoring_method": "weighted_scoring",
                "max_score": 10,
                "criteria": CRITERIA,
                "criterion_scores": [{"criterion_id": "delivery", "score": 5}],
            },
        )

        exit_code, output = _run(["score", "--input", path], capsys)

        assert exit_code == 1
        assert output["error"]["code"] == "INVALID_INPUT"
        assert "delivery" in output["error"]["message"]


class TestRankCommand:
    def test_scores_descending_with_price_tie_break(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = _write(
            tmp_path,
            {
                "scoring_method": "weighted_scoring",
                "scores": [
                    {"submission_id": "s1", "overall_score": 7},
                    {"submission_id": "s1", "overall_score": 9},
                    {"submission_id": "s2", "overall_score": 8},
                    {"submission_id": "s3", "overall_score": 6},
                ],
                "submissions": [
                    {"submission_id": "s1", "rfq_id": "r1", "supplier_id": "p1", "price": 1200},
                    {"submission_id": "s2", "rfq_id": "r1", "supplier_id": "p2", "price": 1000},
                ],
            },
        )

        exit_code, output = _run(["rank", "--input", path], capsys)

        assert exit_code == 0
        assert [(r["submission_id"], r["rank"]) for r in output["rankings"]] == [
            ("s2", 1),
            ("s1", 2),
            ("s3", 3),
        ]
        assert output["rankings"][0]["supplier_id"] == "p2"
        assert output["rankings"][2]["supplier_id"] is None

    def test_ranking_method_lower_is_better(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = _write(
            tmp_path,
            {
                "scoring_method": "ranking",
                "scores": [
                    {
                        "submission_id": "s1",
                        "criterion_scores": [
                            {"criterion_id": "price", "score": 2},
                            {"criterion_id": "quality", "score": 1},
                        ],
                    },
                    {
                        "submission_id": "s2",
                        "criterion_scores": [
                            {"criterion_id": "price", "score": 1},
                            {"criterion_id": "quality", "score": 1},
                        ],
                    },
                ],
            },
        )

        exit_code, output = _run(["rank", "--input", path], capsys)

        assert exit_code == 0
        assert [r["submission_id"] for r in output["rankings"]] == ["s2", "s1"]
        assert output["rankings"][0]["score"] == 1.0

    def test_missing_overall_score(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = _write(
            tmp_path, {"scoring_method": "points", "scores": [{"submission_id": "s1"}]}
        )

        exit_code, output = _run(["rank", "--input", path], capsys)

        assert exit_code == 1
        assert output["error"]["code"] == "INVALID_INPUT"


class TestInputErrors:
    def test_missing_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code, output = _run(["score", "--input", str(tmp_path / "nope.json")], capsys)

        assert exit_code == 1
        assert output["error"]["message"].startswith("File not found")

    def test_invalid_json(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        exit_code, output = _run(["rank", "--input", str(path)], capsys)

        assert exit_code == 1
        assert output["error"]["message"].startswith("Invalid JSON")

    def test_schema_violation(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        path = _write(tmp_path, {"scoring_method": "weighted_scoring"})

        exit_code, output = _run(["score", "--input", path], capsys)

        assert exit_code == 1
        assert output["error"]["code"] == "INVALID_INPUT"
        assert "validation error" in output["error"]["message"]
