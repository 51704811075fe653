"""Sync pipelines: fetching, normalization, upserts and orchestration.

Each step is callable on its own so single-entity syncs and the full catalog
sync share the same fetch, validate and write path.
"""
