"""Domain objects for the Kubernetes resources being applied."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from deka.errors import ManifestError

ANNOTATION_ACTION = "deka.ndrpnt.dev/action"


class Action(str, Enum):
    APPLY = "apply"
    DELETE = "delete"

    @classmethod
    def from_annotations(cls, annotations: dict[str, object] | None) -> "Action":
        """Resolve the action marker, defaulting to apply."""
        if not annotations or ANNOTATION_ACTION not in annotations:
            return cls.APPLY
        raw = annotations[ANNOTATION_ACTION]
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            allowed = ", ".join(a.value for a in cls)
            raise ManifestError(
                f"invalid {ANNOTATION_ACTION} annotation {raw!r} (expected one of: {allowed})"
            ) from None


def split_api_version(api_version: str) -> tuple[str, str]:
    """Split ``group/version`` into its parts; the core group is ``""``."""
    value = api_version.strip()
    if not value or value.count("/") > 1:
        raise ManifestError(f"invalid apiVersion {api_version!r}")
    if "/" not in value:
        return "", value
    group, version = value.split("/", 1)
    if not group or not version:
        raise ManifestError(f"invalid apiVersion {api_version!r}")
    return group, version


@dataclass(frozen=True)
class ObjectRef:
    api_version: str
    kind: str
    name: str
    namespace: str | None = None

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    def to_dict(self) -> dict[str, object]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
        }


@dataclass(frozen=True)
class TargetObject:
    """One unit of work: a desired-state document and what to do with it.

    ``namespace`` is resolved before the batch starts (the document's own
    namespace or the default one). Whether it is used depends on the scope
    the API server reports for the kind.
    """

    api_version: str
    kind: str
    name: str
    namespace: str | None
    action: Action = Action.APPLY
    manifest: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.kind:
            raise ManifestError("object has no kind")
        if not self.name:
            raise ManifestError(f"{self.kind} object has no metadata.name")
        split_api_version(self.api_version)

    @property
    def group(self) -> str:
        return split_api_version(self.api_version)[0]

    @property
    def version(self) -> str:
        return split_api_version(self.api_version)[1]

    @property
    def ref(self) -> ObjectRef:
        return ObjectRef(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            namespace=self.namespace,
        )

    def scoped_ref(self, namespaced: bool) -> ObjectRef:
        """Identity with the namespace dropped for cluster-scoped kinds."""
        ref = self.ref
        if namespaced or ref.namespace is None:
            return ref
        return replace(ref, namespace=None)

    @classmethod
    def from_manifest(
        cls,
        manifest: dict[str, Any],
        default_namespace: str | None = None,
    ) -> "TargetObject":
        metadata = manifest.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ManifestError("metadata must be a mapping")
        annotations = metadata.get("annotations") or {}
        if not isinstance(annotations, dict):
            raise ManifestError("metadata.annotations must be a mapping")
        return cls(
            api_version=str(manifest.get("apiVersion") or ""),
            kind=str(manifest.get("kind") or ""),
            name=str(metadata.get("name") or ""),
            namespace=metadata.get("namespace") or default_namespace,
            action=Action.from_annotations(annotations),
            manifest=manifest,
        )
