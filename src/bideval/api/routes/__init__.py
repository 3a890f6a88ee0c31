"""BidEval API routers."""
