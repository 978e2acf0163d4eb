from __future__ import annotations

import io
from pathlib import Path

import pytest

from deka.domain.objects import ANNOTATION_ACTION, Action, ObjectRef, TargetObject
from deka.errors import ManifestError
from deka.manifests.loader import load_objects, parse_objects

MULTI_DOC = """
apiVersion: v1
kind: Namespace
metadata:
  name: team-a
---
# comment-only documents are skipped
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
  namespace: team-a
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: stale
  annotations:
    deka.ndrpnt.dev/action: delete
"""


def test_parse_multi_document_stream() -> None:
    objects = parse_objects(MULTI_DOC, default_namespace="fallback")

    assert [obj.ref for obj in objects] == [
        ObjectRef("v1", "Namespace", "team-a", "fallback"),
        ObjectRef("apps/v1", "Deployment", "web", "team-a"),
        ObjectRef("v1", "ConfigMap", "stale", "fallback"),
    ]
    assert [obj.action for obj in objects] == [Action.APPLY, Action.APPLY, Action.DELETE]
    assert objects[1].group == "apps"
    assert objects[1].version == "v1"
    assert objects[1].manifest["metadata"]["name"] == "web"


def test_list_documents_are_flattened() -> None:
    text = """
apiVersion: v1
kind: List
items:
  - {apiVersion: v1, kind: ConfigMap, metadata: {name: a}}
  - {apiVersion: v1, kind: ConfigMap, metadata: {name: b}}
"""
    assert [obj.name for obj in parse_objects(text)] == ["a", "b"]


def test_load_from_path_and_stream(tmp_path: Path) -> None:
    path = tmp_path / "objects.yaml"
    path.write_text(MULTI_DOC, encoding="utf-8")

    assert len(load_objects(path)) == 3
    assert len(load_objects(str(path))) == 3
    assert len(load_objects(io.StringIO(MULTI_DOC))) == 3


def test_load_from_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sys.stdin", io.StringIO(MULTI_DOC))

    assert len(load_objects("-")) == 3


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ManifestError, match="not found"):
        load_objects(tmp_path / "nope.yaml")


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("kind: ConfigMap\nmetadata: {name: a}\n", "apiVersion"),
        ("apiVersion: v1\nmetadata: {name: a}\n", "no kind"),
        ("apiVersion: v1\nkind: ConfigMap\n", "metadata.name"),
        ("- just\n- a list\n", "not a mapping"),
        ("apiVersion: a/b/c\nkind: X\nmetadata: {name: a}\n", "apiVersion"),
    ],
)
def test_invalid_documents(text: str, message: str) -> None:
    with pytest.raises(ManifestError, match=message) as excinfo:
        parse_objects(text)
    assert excinfo.value.document_index == 0


def test_invalid_document_index_is_reported() -> None:
    text = "apiVersion: v1\nkind: ConfigMap\nmetadata: {name: a}\n---\napiVersion: v1\n"

    with pytest.raises(ManifestError, match="document 1"):
        parse_objects(text)


def test_invalid_yaml() -> None:
    with pytest.raises(ManifestError, match="Invalid YAML"):
        parse_objects("a: [unclosed")


def test_unknown_action_annotation() -> None:
    manifest = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "a", "annotations": {ANNOTATION_ACTION: "orphan"}},
    }

    with pytest.raises(ManifestError, match="orphan"):
        TargetObject.from_manifest(manifest)


def test_ref_string_forms() -> None:
    assert str(ObjectRef("v1", "Pod", "web", "team-a")) == "Pod/team-a/web"
    assert str(ObjectRef("v1", "Namespace", "team-a")) == "Namespace/team-a"


def test_manifest_is_not_part_of_identity() -> None:
    first = TargetObject("v1", "ConfigMap", "a", "default", manifest={"data": {"k": "1"}})
    second = TargetObject("v1", "ConfigMap", "a", "default", manifest={"data": {"k": "2"}})

    assert first == second
