"""rollout-sre command line."""
