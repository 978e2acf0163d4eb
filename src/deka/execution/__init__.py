"""Unordered batch execution: classification, backoff, gating and retry loops."""
