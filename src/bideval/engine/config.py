"""Engine limits and defaults."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class EngineConfig(BaseModel):
    """Tunable limits enforced by the evaluation validators.

    Defaults mirror the procurement platform's published limits; tests and
    deployments may pass a narrower instance to the service.
    """

    model_config = ConfigDict(frozen=True)

    default_consensus_threshold: float = 75.0
    min_consensus_threshold: float = 50.0
    max_consensus_threshold: float = 100.0
    min_max_score: float = 1.0
    max_max_score: float = 1000.0
    title_min_length: int = 5
    title_max_length: int = 200
    description_max_length: int = 1000
    dispute_description_max_length: int = 2000
    cancellation_reason_max_length: int = 500
    score_tolerance: float = 0.01
    default_page_limit: int = 20
    max_page_limit: int = 100


DEFAULT_ENGINE_CONFIG = EngineConfig()
