"""Weather prediction-market lifecycle engine: scheduling, settlement, outage control."""
