"""Multi-document YAML manifest loading."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path
from typing import IO, Any

import yaml

from deka.domain.objects import TargetObject
from deka.errors import ManifestError

STDIN_MARKER = "-"


def load_objects(
    source: str | Path | IO[str],
    default_namespace: str | None = None,
) -> list[TargetObject]:
    """Read every object from a path, ``-`` (stdin) or an open text stream."""
    if isinstance(source, (str, Path)):
        if str(source) == STDIN_MARKER:
            return parse_objects(sys.stdin, default_namespace)
        path = Path(source)
        if not path.exists():
            raise ManifestError(f"Manifest file not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            return parse_objects(handle, default_namespace)
    return parse_objects(source, default_namespace)


def parse_objects(
    stream: str | IO[str],
    default_namespace: str | None = None,
) -> list[TargetObject]:
    objects: list[TargetObject] = []
    for index, document in _documents(stream):
        for manifest in _expand_lists(document, index):
            try:
                objects.append(TargetObject.from_manifest(manifest, default_namespace))
            except ManifestError as exc:
                raise ManifestError(str(exc), document_index=index) from None
    return objects


def _documents(stream: str | IO[str]) -> Iterator[tuple[int, Any]]:
    try:
        for index, document in enumerate(yaml.safe_load_all(stream)):
            if document is not None:
                yield index, document
    except yaml.YAMLError as exc:
        raise ManifestError(f"Invalid YAML: {exc}") from exc


def _expand_lists(document: Any, index: int) -> list[dict[str, Any]]:
    if not isinstance(document, dict):
        raise ManifestError("document is not a mapping", document_index=index)
    kind = document.get("kind")
    if isinstance(kind, str) and kind.endswith("List") and "items" in document:
        items = document.get("items") or []
        if not isinstance(items, list):
            raise ManifestError(f"{kind}.items is not a list", document_index=index)
        for item in items:
            if not isinstance(item, dict):
                raise ManifestError(f"{kind} contains a non-mapping item", document_index=index)
        return items
    return [document]
