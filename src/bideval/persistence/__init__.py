"""BidEval persistence: database connectivity and the evaluation store."""
