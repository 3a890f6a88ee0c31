"""BidEval - procurement bid evaluation and consensus engine."""

__version__ = "1.4.0"
