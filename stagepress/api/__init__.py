"""Stagepress administrative HTTP API (FastAPI)."""
