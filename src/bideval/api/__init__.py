"""BidEval HTTP API."""
