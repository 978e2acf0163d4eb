"""JSON serialization helpers for YAML-decoded manifests."""

from __future__ import annotations

import base64
import datetime


def json_default(obj: object) -> object:
    """Serialize values that ``yaml.safe_load`` produces but ``json`` rejects."""
    if isinstance(obj, datetime.datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=datetime.timezone.utc)
        return obj.isoformat().replace("+00:00", "Z")
    if isinstance(obj, datetime.date):
        return obj.isoformat()
    if isinstance(obj, bytes):
        # Kubernetes expects binary fields (Secret.data) base64-encoded.
        return base64.b64encode(obj).decode("ascii")
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
