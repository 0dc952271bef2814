# src/activitypub_stage/scripts/__init__.py
"""Operational command-line scripts."""
