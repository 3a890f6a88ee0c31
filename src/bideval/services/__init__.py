"""BidEval services: evaluation orchestration and its collaborators."""
