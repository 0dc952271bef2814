# src/activitypub_stage/api/__init__.py
"""HTTP API package."""
