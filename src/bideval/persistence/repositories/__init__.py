"""Persistence repositories for BidEval.

Provides the evaluation store with a SQL backend and an in-memory backend
for development and testing.
"""

from bideval.persistence.repositories.evaluations import (
    EvaluationStore,
    InMemoryEvaluationStore,
    SqlEvaluationStore,
    get_evaluation_store,
)

__all__ = [
    "EvaluationStore",
    "InMemoryEvaluationStore",
    "SqlEvaluationStore",
    "get_evaluation_store",
]
