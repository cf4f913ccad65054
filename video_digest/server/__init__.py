"""Thin HTTP API over the digest pipeline (FastAPI)."""
