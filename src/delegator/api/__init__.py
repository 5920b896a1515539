"""HTTP API for the delegator."""
