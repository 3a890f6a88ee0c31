"""Evaluation store: evaluations, scores, consensus, recommendations, disputes.

Two backends satisfy the EvaluationStore protocol:

- InMemoryEvaluationStore: dict-backed, one lock for records and one lock
  per (evaluation, submission, evaluator) score pair.
- SqlEvaluationStore: SQLAlchemy over any supported database. Records are
  JSON documents next to indexed status/version columns; every state change
  is a conditional UPDATE on the version read in the same transaction.

Status changes are compare-and-set: methods return None instead of writing
when the evaluation is no longer in the expected state, so exactly one of
several concurrent callers wins.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Collection
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from bideval.engine.errors import StateConflictError
from bideval.models.evaluation import (
    ConsensusRecord,
    Dispute,
    Evaluation,
    EvaluationStatus,
    Recommendation,
    Score,
)
from bideval.persistence.db import begin_conn, create_db_engine, is_database_configured

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

ScoreFactory = Callable[[Score | None], Score]

_MAX_WRITE_ATTEMPTS = 5


@runtime_checkable
class EvaluationStore(Protocol):
    """Structural interface for evaluation stores."""

    def next_sequence(self, prefix: str) -> int: ...

    def add_evaluation(self, evaluation: Evaluation) -> Evaluation: ...

    def get_evaluation(self, evaluation_id: str) -> Evaluation | None: ...

    def list_evaluations(self) -> list[Evaluation]: ...

    def replace_evaluation(
        self,
        evaluation: Evaluation,
        *,
        expected_version: int,
        expected_statuses: Collection[EvaluationStatus],
    ) -> Evaluation | None: ...

    def transition_status(
        self,
        evaluation_id: str,
        *,
        from_statuses: Collection[EvaluationStatus],
        to_status: EvaluationStatus,
        changes: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> Evaluation | None: ...

    def upsert_score(
        self,
        evaluation_id: str,
        submission_id: str,
        evaluator_id: str,
        factory: ScoreFactory,
        *,
        allowed_statuses: Collection[EvaluationStatus],
    ) -> Score | None: ...

    def get_score(
        self, evaluation_id: str, submission_id: str, evaluator_id: str
    ) -> Score | None: ...

    def list_scores(self, evaluation_id: str) -> list[Score]: ...

    def complete_consensus(
        self, record: ConsensusRecord, *, changes: dict[str, Any]
    ) -> Evaluation | None: ...

    def get_consensus(self, evaluation_id: str) -> ConsensusRecord | None: ...

    def finalize(
        self, recommendation: Recommendation, *, changes: dict[str, Any]
    ) -> Evaluation | None: ...

    def get_recommendation(self, evaluation_id: str) -> Recommendation | None: ...

    def add_dispute(self, dispute: Dispute) -> Dispute: ...

    def list_disputes(self, evaluation_id: str) -> list[Dispute]: ...

    def clear(self) -> None: ...

    def close(self) -> None: ...


def _advance(
    evaluation: Evaluation, to_status: EvaluationStatus, changes: dict[str, Any] | None
) -> Evaluation:
    return evaluation.model_copy(
        update={**(changes or {}), "status": to_status, "version": evaluation.version + 1}
    )


def _transition_allowed(
    current: Evaluation | None,
    from_statuses: Collection[EvaluationStatus],
    expected_version: int | None,
) -> bool:
    if current is None or current.status not in from_statuses:
        return False
    return expected_version is None or current.version == expected_version


class InMemoryEvaluationStore:
    """Thread-safe in-memory evaluation store."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sequences: dict[str, int] = {}
        self._evaluations: dict[str, Evaluation] = {}
        self._scores: dict[tuple[str, str, str], Score] = {}
        self._pair_locks: dict[tuple[str, str, str], threading.Lock] = {}
        self._consensus: dict[str, ConsensusRecord] = {}
        self._recommendations: dict[str, Recommendation] = {}
        self._disputes: dict[str, list[Dispute]] = {}

    def next_sequence(self, prefix: str) -> int:
        with self._lock:
            value = self._sequences.get(prefix, 0) + 1
            self._sequences[prefix] = value
            return value

    def add_evaluation(self, evaluation: Evaluation) -> Evaluation:
        with self._lock:
            if evaluation.evaluation_id in self._evaluations:
                raise ValueError(f"Evaluation {evaluation.evaluation_id} already exists")
            self._evaluations[evaluation.evaluation_id] = evaluation
            return evaluation

    def get_evaluation(self, evaluation_id: str) -> Evaluation | None:
        with self._lock:
            return self._evaluations.get(evaluation_id)

    def list_evaluations(self) -> list[Evaluation]:
        with self._lock:
            evaluations = list(self._evaluations.values())
        return sorted(evaluations, key=lambda e: (e.created_at, e.evaluation_id))

    def replace_evaluation(
        self,
        evaluation: Evaluation,
        *,
        expected_version: int,
        expected_statuses: Collection[EvaluationStatus],
    ) -> Evaluation | None:
        with self._lock:
            current = self._evaluations.get(evaluation.evaluation_id)
            if (
                current is None
                or current.version != expected_version
                or current.status not in expected_statuses
            ):
                return None
            stored = evaluation.model_copy(update={"version": current.version + 1})
            self._evaluations[stored.evaluation_id] = stored
            return stored

    def transition_status(
        self,
        evaluation_id: str,
        *,
        from_statuses: Collection[EvaluationStatus],
        to_status: EvaluationStatus,
        changes: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> Evaluation | None:
        with self._lock:
            current = self._evaluations.get(evaluation_id)
            if not _transition_allowed(current, from_statuses, expected_version):
                return None
            stored = _advance(current, to_status, changes)
            self._evaluations[evaluation_id] = stored
            return stored

    def _pair_lock(self, key: tuple[str, str, str]) -> threading.Lock:
        with self._lock:
            lock = self._pair_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._pair_locks[key] = lock
            return lock

    def upsert_score(
        self,
        evaluation_id: str,
        submission_id: str,
        evaluator_id: str,
        factory: ScoreFactory,
        *,
        allowed_statuses: Collection[EvaluationStatus],
    ) -> Score | None:
        key = (evaluation_id, submission_id, evaluator_id)
        with self._pair_lock(key):
            score = factory(self._scores.get(key))
            with self._lock:
                current = self._evaluations.get(evaluation_id)
                if current is None or current.status not in allowed_statuses:
                    return None
                self._scores[key] = score
            return score

    def get_score(self, evaluation_id: str, submission_id: str, evaluator_id: str) -> Score | None:
        with self._lock:
            return self._scores.get((evaluation_id, submission_id, evaluator_id))

    def list_scores(self, evaluation_id: str) -> list[Score]:
        with self._lock:
            scores = [s for (eid, _, _), s in self._scores.items() if eid == evaluation_id]
        return sorted(scores, key=lambda s: (s.submission_id, s.evaluator_id))

    def complete_consensus(
        self, record: ConsensusRecord, *, changes: dict[str, Any]
    ) -> Evaluation | None:
        with self._lock:
            current = self._evaluations.get(record.evaluation_id)
            if (
                current is None
                or current.status != EvaluationStatus.CONSENSUS
                or record.evaluation_id in self._consensus
            ):
                return None
            self._consensus[record.evaluation_id] = record
            stored = _advance(current, EvaluationStatus.COMPLETED, changes)
            self._evaluations[record.evaluation_id] = stored
            return stored

    def get_consensus(self, evaluation_id: str) -> ConsensusRecord | None:
        with self._lock:
            return self._consensus.get(evaluation_id)

    def finalize(
        self, recommendation: Recommendation, *, changes: dict[str, Any]
    ) -> Evaluation | None:
        with self._lock:
            current = self._evaluations.get(recommendation.evaluation_id)
            if (
                current is None
                or current.status != EvaluationStatus.COMPLETED
                or recommendation.evaluation_id in self._recommendations
            ):
                return None
            self._recommendations[recommendation.evaluation_id] = recommendation
            stored = _advance(current, EvaluationStatus.FINALIZED, changes)
            self._evaluations[recommendation.evaluation_id] = stored
            return stored

    def get_recommendation(self, evaluation_id: str) -> Recommendation | None:
        with self._lock:
            return self._recommendations.get(evaluation_id)

    def add_dispute(self, dispute: Dispute) -> Dispute:
        with self._lock:
            self._disputes.setdefault(dispute.evaluation_id, []).append(dispute)
            return dispute

    def list_disputes(self, evaluation_id: str) -> list[Dispute]:
        with self._lock:
            return list(self._disputes.get(evaluation_id, []))

    def clear(self) -> None:
        """Drop every record. Intended for tests."""
        with self._lock:
            self._sequences.clear()
            self._evaluations.clear()
            self._scores.clear()
            self._pair_locks.clear()
            self._consensus.clear()
            self._recommendations.clear()
            self._disputes.clear()

    def close(self) -> None:
        return None


_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS evaluation_sequences (
        prefix VARCHAR(64) PRIMARY KEY,
        value INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS evaluations (
        evaluation_id VARCHAR(64) PRIMARY KEY,
        rfq_id VARCHAR(128) NOT NULL,
        status VARCHAR(32) NOT NULL,
        version INTEGER NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS evaluation_scores (
        evaluation_id VARCHAR(64) NOT NULL,
        submission_id VARCHAR(128) NOT NULL,
        evaluator_id VARCHAR(128) NOT NULL,
        version INTEGER NOT NULL,
        data TEXT NOT NULL,
        PRIMARY KEY (evaluation_id, submission_id, evaluator_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS evaluation_consensus (
        evaluation_id VARCHAR(64) PRIMARY KEY,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS evaluation_recommendations (
        evaluation_id VARCHAR(64) PRIMARY KEY,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS evaluation_disputes (
        dispute_id VARCHAR(64) PRIMARY KEY,
        evaluation_id VARCHAR(64) NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        data TEXT NOT NULL
    )
    """,
)

_TABLES = (
    "evaluation_disputes",
    "evaluation_recommendations",
    "evaluation_consensus",
    "evaluation_scores",
    "evaluations",
    "evaluation_sequences",
)


class SqlEvaluationStore:
    """SQLAlchemy-backed evaluation store.

    Args:
        engine: SQLAlchemy engine. The store disposes it on close() only when
            owns_engine is True.
        owns_engine: Whether close() should dispose the engine.
    """

    def __init__(self, engine: Engine, *, owns_engine: bool = False) -> None:
        self._engine = engine
        self._owns_engine = owns_engine

    def init_schema(self) -> None:
        """Create tables that do not exist yet."""
        with begin_conn(self._engine) as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(text(statement))

    def next_sequence(self, prefix: str) -> int:
        for _ in range(_MAX_WRITE_ATTEMPTS):
            try:
                with begin_conn(self._engine) as conn:
                    updated = conn.execute(
                        text(
                            "UPDATE evaluation_sequences SET value = value + 1 "
                            "WHERE prefix = :prefix"
                        ),
                        {"prefix": prefix},
                    )
                    if updated.rowcount == 0:
                        conn.execute(
                            text(
                                "INSERT INTO evaluation_sequences (prefix, value) "
                                "VALUES (:prefix, 1)"
                            ),
                            {"prefix": prefix},
                        )
                    value = conn.execute(
                        text("SELECT value FROM evaluation_sequences WHERE prefix = :prefix"),
                        {"prefix": prefix},
                    ).scalar_one()
                    return int(value)
            except IntegrityError:
                logger.debug("Sequence %s created concurrently, retrying", prefix)
        raise StateConflictError(f"Could not allocate a sequence number for {prefix}")

    def add_evaluation(self, evaluation: Evaluation) -> Evaluation:
        with begin_conn(self._engine) as conn:
            conn.execute(
                text(
                    "INSERT INTO evaluations "
                    "(evaluation_id, rfq_id, status, version, created_at, data) "
                    "VALUES (:evaluation_id, :rfq_id, :status, :version, :created_at, :data)"
                ),
                {
                    "evaluation_id": evaluation.evaluation_id,
                    "rfq_id": evaluation.rfq_id,
                    "status": evaluation.status.value,
                    "version": evaluation.version,
                    "created_at": evaluation.created_at.isoformat(),
                    "data": evaluation.model_dump_json(),
                },
            )
        return evaluation

    def _load_evaluation(self, conn: Connection, evaluation_id: str) -> Evaluation | None:
        data = conn.execute(
            text("SELECT data FROM evaluations WHERE evaluation_id = :evaluation_id"),
            {"evaluation_id": evaluation_id},
        ).scalar_one_or_none()
        return Evaluation.model_validate_json(data) if data is not None else None

    def _write_evaluation(
        self, conn: Connection, evaluation: Evaluation, *, expected: Evaluation
    ) -> bool:
        result = conn.execute(
            text(
                "UPDATE evaluations SET status = :status, version = :version, data = :data "
                "WHERE evaluation_id = :evaluation_id "
                "AND version = :expected_version AND status = :expected_status"
            ),
            {
                "status": evaluation.status.value,
                "version": evaluation.version,
                "data": evaluation.model_dump_json(),
                "evaluation_id": evaluation.evaluation_id,
                "expected_version": expected.version,
                "expected_status": expected.status.value,
            },
        )
        return result.rowcount == 1

    def get_evaluation(self, evaluation_id: str) -> Evaluation | None:
        with begin_conn(self._engine) as conn:
            return self._load_evaluation(conn, evaluation_id)

    def list_evaluations(self) -> list[Evaluation]:
        with begin_conn(self._engine) as conn:
            rows = conn.execute(
                text("SELECT data FROM evaluations ORDER BY created_at, evaluation_id")
            ).scalars()
            return [Evaluation.model_validate_json(data) for data in rows]

    def replace_evaluation(
        self,
        evaluation: Evaluation,
        *,
        expected_version: int,
        expected_statuses: Collection[EvaluationStatus],
    ) -> Evaluation | None:
        with begin_conn(self._engine) as conn:
            current = self._load_evaluation(conn, evaluation.evaluation_id)
            if (
                current is None
                or current.version != expected_version
                or current.status not in expected_statuses
            ):
                return None
            stored = evaluation.model_copy(update={"version": current.version + 1})
            return stored if self._write_evaluation(conn, stored, expected=current) else None

    def transition_status(
        self,
        evaluation_id: str,
        *,
        from_statuses: Collection[EvaluationStatus],
        to_status: EvaluationStatus,
        changes: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> Evaluation | None:
        with begin_conn(self._engine) as conn:
            current = self._load_evaluation(conn, evaluation_id)
            if not _transition_allowed(current, from_statuses, expected_version):
                return None
            stored = _advance(current, to_status, changes)
            return stored if self._write_evaluation(conn, stored, expected=current) else None

    def upsert_score(
        self,
        evaluation_id: str,
        submission_id: str,
        evaluator_id: str,
        factory: ScoreFactory,
        *,
        allowed_statuses: Collection[EvaluationStatus],
    ) -> Score | None:
        key = {
            "evaluation_id": evaluation_id,
            "submission_id": submission_id,
            "evaluator_id": evaluator_id,
        }
        for _ in range(_MAX_WRITE_ATTEMPTS):
            try:
                with begin_conn(self._engine) as conn:
                    status = conn.execute(
                        text("SELECT status FROM evaluations WHERE evaluation_id = :evaluation_id"),
                        {"evaluation_id": evaluation_id},
                    ).scalar_one_or_none()
                    if status is None or EvaluationStatus(status) not in allowed_statuses:
                        return None
                    previous = self._load_score(conn, key)
                    score = factory(previous)
                    params = {**key, "version": score.version, "data": score.model_dump_json()}
                    if previous is None:
                        conn.execute(
                            text(
                                "INSERT INTO evaluation_scores "
                                "(evaluation_id, submission_id, evaluator_id, version, data) "
                                "VALUES (:evaluation_id, :submission_id, :evaluator_id, "
                                ":version, :data)"
                            ),
                            params,
                        )
                        return score
                    updated = conn.execute(
                        text(
                            "UPDATE evaluation_scores SET version = :version, data = :data "
                            "WHERE evaluation_id = :evaluation_id "
                            "AND submission_id = :submission_id "
                            "AND evaluator_id = :evaluator_id AND version = :previous_version"
                        ),
                        {**params, "previous_version": previous.version},
                    )
                    if updated.rowcount == 1:
                        return score
            except IntegrityError:
                logger.debug("Score %s written concurrently, retrying", key)
        raise StateConflictError(
            f"Score for submission {submission_id} is being updated concurrently",
            operation="submit score",
        )

    def _load_score(self, conn: Connection, key: dict[str, str]) -> Score | None:
        data = conn.execute(
            text(
                "SELECT data FROM evaluation_scores WHERE evaluation_id = :evaluation_id "
                "AND submission_id = :submission_id AND evaluator_id = :evaluator_id"
            ),
            key,
        ).scalar_one_or_none()
        return Score.model_validate_json(data) if data is not None else None

    def get_score(self, evaluation_id: str, submission_id: str, evaluator_id: str) -> Score | None:
        with begin_conn(self._engine) as conn:
            return self._load_score(
                conn,
                {
                    "evaluation_id": evaluation_id,
                    "submission_id": submission_id,
                    "evaluator_id": evaluator_id,
                },
            )

    def list_scores(self, evaluation_id: str) -> list[Score]:
        with begin_conn(self._engine) as conn:
            rows = conn.execute(
                text(
                    "SELECT data FROM evaluation_scores WHERE evaluation_id = :evaluation_id "
                    "ORDER BY submission_id, evaluator_id"
                ),
                {"evaluation_id": evaluation_id},
            ).scalars()
            return [Score.model_validate_json(data) for data in rows]

    def _complete_with_record(
        self,
        table: str,
        evaluation_id: str,
        payload: str,
        *,
        from_status: EvaluationStatus,
        to_status: EvaluationStatus,
        changes: dict[str, Any],
    ) -> Evaluation | None:
        try:
            with begin_conn(self._engine) as conn:
                current = self._load_evaluation(conn, evaluation_id)
                if current is None or current.status != from_status:
                    return None
                stored = _advance(current, to_status, changes)
                if not self._write_evaluation(conn, stored, expected=current):
                    return None
                conn.execute(
                    text(
                        f"INSERT INTO {table} (evaluation_id, data) "  # noqa: S608
                        "VALUES (:evaluation_id, :data)"
                    ),
                    {"evaluation_id": evaluation_id, "data": payload},
                )
                return stored
        except IntegrityError:
            return None

    def complete_consensus(
        self, record: ConsensusRecord, *, changes: dict[str, Any]
    ) -> Evaluation | None:
        return self._complete_with_record(
            "evaluation_consensus",
            record.evaluation_id,
            record.model_dump_json(),
            from_status=EvaluationStatus.CONSENSUS,
            to_status=EvaluationStatus.COMPLETED,
            changes=changes,
        )

    def get_consensus(self, evaluation_id: str) -> ConsensusRecord | None:
        with begin_conn(self._engine) as conn:
            data = conn.execute(
                text(
                    "SELECT data FROM evaluation_consensus WHERE evaluation_id = :evaluation_id"
                ),
                {"evaluation_id": evaluation_id},
            ).scalar_one_or_none()
        return ConsensusRecord.model_validate_json(data) if data is not None else None

    def finalize(
        self, recommendation: Recommendation, *, changes: dict[str, Any]
    ) -> Evaluation | None:
        return self._complete_with_record(
            "evaluation_recommendations",
            recommendation.evaluation_id,
            recommendation.model_dump_json(),
            from_status=EvaluationStatus.COMPLETED,
            to_status=EvaluationStatus.FINALIZED,
            changes=changes,
        )

    def get_recommendation(self, evaluation_id: str) -> Recommendation | None:
        with begin_conn(self._engine) as conn:
            data = conn.execute(
                text(
                    "SELECT data FROM evaluation_recommendations "
                    "WHERE evaluation_id = :evaluation_id"
                ),
                {"evaluation_id": evaluation_id},
            ).scalar_one_or_none()
        return Recommendation.model_validate_json(data) if data is not None else None

    def add_dispute(self, dispute: Dispute) -> Dispute:
        with begin_conn(self._engine) as conn:
            conn.execute(
                text(
                    "INSERT INTO evaluation_disputes "
                    "(dispute_id, evaluation_id, created_at, data) "
                    "VALUES (:dispute_id, :evaluation_id, :created_at, :data)"
                ),
                {
                    "dispute_id": dispute.dispute_id,
                    "evaluation_id": dispute.evaluation_id,
                    "created_at": dispute.created_at.isoformat(),
                    "data": dispute.model_dump_json(),
                },
            )
        return dispute

    def list_disputes(self, evaluation_id: str) -> list[Dispute]:
        with begin_conn(self._engine) as conn:
            rows = conn.execute(
                text(
                    "SELECT data FROM evaluation_disputes WHERE evaluation_id = :evaluation_id "
                    "ORDER BY created_at, dispute_id"
                ),
                {"evaluation_id": evaluation_id},
            ).scalars()
            return [Dispute.model_validate_json(data) for data in rows]

    def clear(self) -> None:
        """Delete every row. Intended for tests."""
        with begin_conn(self._engine) as conn:
            for table in _TABLES:
                conn.execute(text(f"DELETE FROM {table}"))  # noqa: S608

    def close(self) -> None:
        if self._owns_engine:
            self._engine.dispose()


def get_evaluation_store() -> EvaluationStore:
    """Return a SQL store when BIDEVAL_DATABASE_URL is set, else an in-memory store.

    The caller owns the returned store and must close() it.
    """
    if is_database_configured():
        store = SqlEvaluationStore(create_db_engine(), owns_engine=True)
        store.init_schema()
        return store
    logger.info("BIDEVAL_DATABASE_URL not set; using in-memory evaluation store")
    return InMemoryEvaluationStore()
