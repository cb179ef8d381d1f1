"""Portfolio valuation and value-over-time chart reconstruction."""
