"""Campaign aggregation services (aggregator, payment recorder, sweep, lifecycle)."""
