"""Application layer: configuration, models and HTTP API."""
