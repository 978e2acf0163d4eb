"""Minimal asynchronous Kubernetes API access."""
