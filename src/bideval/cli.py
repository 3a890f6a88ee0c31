"""BidEval CLI - deterministic scoring and ranking from JSON files.

Usage:
    python -m bideval score [--input PATH]
    python -m bideval rank [--input PATH]

``score`` reads an evaluation definition and one evaluator's criterion scores:

    {"scoring_method": "weighted_scoring", "max_score": 10,
     "criteria": [{"criterion_id": "c1", "name": "Price", "weight": 60}, ...],
     "criterion_groups": [],
     "criterion_scores": [{"criterion_id": "c1", "score": 8}, ...]}

``rank`` reads the scores of every submission and orders them. For the
ranking method each score is a set of per-criterion ranks (lower is better);
otherwise each score is an overall score:

    {"scoring_method": "ranking",
     "scores": [{"submission_id": "s1", "criterion_scores": [...]}, ...],
     "submissions": [{"submission_id": "s1", "rfq_id": "r1", "supplier_id": "p1",
                      "price": 1000.0}]}

Reads stdin when --input is omitted. Output is JSON with sorted keys.

Exit codes:
    0: Success
    1: Invalid input / internal error
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from bideval.engine.scoring import (
    SCORING_FUNCTIONS,
    ScoringContext,
    mean,
    mean_rank,
    rank_submissions,
    to_decimal,
)
from bideval.models.evaluation import (
    Criterion,
    CriterionGroup,
    CriterionScore,
    ScoringMethod,
)
from bideval.models.rfq import Submission


class ScoreRequest(BaseModel):
    """Input of the score command."""

    scoring_method: ScoringMethod
    max_score: float = Field(..., gt=0)
    criteria: list[Criterion]
    criterion_groups: list[CriterionGroup] = Field(default_factory=list)
    criterion_scores: list[CriterionScore]


class SubmissionScore(BaseModel):
    """One evaluator's score for one submission."""

    submission_id: str
    overall_score: float | None = None
    criterion_scores: list[CriterionScore] = Field(default_factory=list)


class RankRequest(BaseModel):
    """Input of the rank command."""

    scoring_method: ScoringMethod
    scores: list[SubmissionScore]
    submissions: list[Submission] = Field(default_factory=list)


class CliInputError(Exception):
    """Raised when the input cannot be scored or ranked."""


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _error(code: str, message: str) -> dict[str, Any]:
    return {"error": {"code": code, "message": message}}


def _load_json_input(input_path: str | None) -> Any:
    """Load JSON from file or stdin.

    Raises:
        CliInputError: Missing file, empty input or invalid JSON.
    """
    try:
        if input_path:
            with open(input_path, encoding="utf-8") as f:
                content = f.read()
        else:
            content = sys.stdin.read()
    except FileNotFoundError as e:
        raise CliInputError(f"File not found: {input_path}") from e
    except OSError as e:
        raise CliInputError(f"Cannot read input: {e}") from e

    if not content.strip():
        raise CliInputError("Empty input")
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise CliInputError(f"Invalid JSON: {e}") from e


def compute_score(request: ScoreRequest) -> dict[str, Any]:
    """Recompute an overall score exactly as the engine does."""
    ctx = ScoringContext(
        criteria=tuple(request.criteria),
        max_score=to_decimal(request.max_score),
        groups=tuple(request.criterion_groups),
    )
    known = {c.criterion_id for c in request.criteria}
    values: dict[str, Decimal] = {}
    for cs in request.criterion_scores:
        if cs.criterion_id not in known:
            raise CliInputError(f"Unknown criterion {cs.criterion_id}")
        values[cs.criterion_id] = to_decimal(cs.score)

    result = SCORING_FUNCTIONS[request.scoring_method](ctx, values)
    return {
        "incomplete": result.incomplete,
        "overall_score": result.as_float(),
        "scoring_method": request.scoring_method.value,
    }


def compute_ranking(request: RankRequest) -> dict[str, Any]:
    """Aggregate per-submission scores and assign ranks 1..n."""
    ranking = request.scoring_method == ScoringMethod.RANKING
    per_submission: dict[str, list[Decimal]] = {}
    for score in request.scores:
        if ranking:
            if not score.criterion_scores:
                raise CliInputError(f"Score for {score.submission_id} has no criterion ranks")
            value = mean_rank({cs.criterion_id: cs.score for cs in score.criterion_scores})
        else:
            if score.overall_score is None:
                raise CliInputError(f"Score for {score.submission_id} has no overall_score")
            value = to_decimal(score.overall_score)
        per_submission.setdefault(score.submission_id, []).append(value)

    aggregates = {sid: mean(values) for sid, values in per_submission.items()}
    entries = rank_submissions(
        aggregates,
        {s.submission_id: s for s in request.submissions},
        lower_is_better=ranking,
    )
    return {
        "rankings": [e.model_dump(mode="json") for e in entries],
        "scoring_method": request.scoring_method.value,
    }


def cmd_score(args: argparse.Namespace) -> int:
    """Execute the score command."""
    request = ScoreRequest.model_validate(_load_json_input(args.input))
    _output_json(compute_score(request))
    return 0


def cmd_rank(args: argparse.Namespace) -> int:
    """Execute the rank command."""
    request = RankRequest.model_validate(_load_json_input(args.input))
    _output_json(compute_ranking(request))
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="bideval",
        description="BidEval - bid evaluation scoring CLI",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    for name, help_text in [
        ("score", "Recompute one evaluator's overall score"),
        ("rank", "Rank submissions from their scores"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--input",
            required=False,
            default=None,
            metavar="PATH",
            help="Path to JSON file (reads from stdin if omitted)",
        )

    return parser


COMMANDS = {"score": cmd_score, "rank": cmd_rank}


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Invalid input / internal error
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return COMMANDS[args.command](args)
    except CliInputError as e:
        _output_json(_error("INVALID_INPUT", str(e)))
        return 1
    except PydanticValidationError as e:
        _output_json(_error("INVALID_INPUT", f"{e.error_count()} validation error(s)"))
        return 1
    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        _output_json(_error("INTERNAL_ERROR", str(e)))
        return 1


if __name__ == "__main__":
    sys.exit(main())
