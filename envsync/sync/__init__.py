"""Synchronisation — diffing desired against observed state and applying the result.

This package provides:
- Diff engine: pure computation of an ordered, minimal sync plan
- Sync driver: sequential application of plans with per-operation outcomes
"""
