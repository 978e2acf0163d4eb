"""Test doubles for the API client and helpers for building target objects."""

from __future__ import annotations

import asyncio
from typing import Any

from deka.domain.objects import Action, ObjectRef, TargetObject
from deka.execution.backoff import ExponentialBackoff
from deka.kube.errors import ApiError


def make_object(
    kind: str = "ConfigMap",
    name: str = "example",
    namespace: str | None = "default",
    api_version: str = "v1",
    action: Action = Action.APPLY,
) -> TargetObject:
    metadata: dict[str, Any] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return TargetObject(
        api_version=api_version,
        kind=kind,
        name=name,
        namespace=namespace,
        action=action,
        manifest={"apiVersion": api_version, "kind": kind, "metadata": metadata},
    )


def fast_backoff() -> ExponentialBackoff:
    return ExponentialBackoff(
        initial_delay=0.001,
        multiplier=2.0,
        max_delay=0.005,
        randomization_factor=0.0,
    )


class ScriptedClient:
    """Fails each object with a scripted sequence of errors, then succeeds."""

    def __init__(self, script: dict[str, list[BaseException]] | None = None) -> None:
        self.script = {key: list(errors) for key, errors in (script or {}).items()}
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.call_delay = 0.0

    async def _call(self, verb: str, obj: TargetObject) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.calls.append((verb, obj.name))
            await asyncio.sleep(self.call_delay)
            errors = self.script.get(obj.name)
            if errors:
                raise errors.pop(0)
        finally:
            self.in_flight -= 1

    async def apply(self, obj: TargetObject) -> None:
        await self._call("apply", obj)

    async def delete(self, obj: TargetObject) -> None:
        await self._call("delete", obj)

    def ref_for(self, obj: TargetObject) -> ObjectRef:
        return obj.ref

    def attempts_for(self, name: str) -> int:
        return sum(1 for _, called in self.calls if called == name)


class AlwaysFailingClient:
    def __init__(self, error: BaseException) -> None:
        self.error = error
        self.calls = 0

    async def apply(self, obj: TargetObject) -> None:
        self.calls += 1
        await asyncio.sleep(0)
        raise self.error

    async def delete(self, obj: TargetObject) -> None:
        await self.apply(obj)

    def ref_for(self, obj: TargetObject) -> ObjectRef:
        return obj.ref


class FakeCluster:
    """In-memory API server that rejects objects whose prerequisites are missing.

    Namespaced objects need their Namespace to exist; custom resources need
    their CustomResourceDefinition to have been applied first.
    """

    BUILTIN_KINDS = {"Namespace", "ConfigMap", "Pod", "Service", "CustomResourceDefinition"}
    CLUSTER_SCOPED_KINDS = {"Namespace", "CustomResourceDefinition"}

    def __init__(self) -> None:
        self.namespaces: set[str] = {"default"}
        self.custom_kinds: set[str] = set()
        self.objects: dict[tuple[str, str | None, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str, str]] = []

    async def apply(self, obj: TargetObject) -> None:
        await asyncio.sleep(0.001)
        self.calls.append(("apply", obj.kind, obj.name))
        if obj.kind not in self.BUILTIN_KINDS and obj.kind not in self.custom_kinds:
            raise ApiError.kind_not_recognized(obj.api_version, obj.kind)
        if obj.kind == "Namespace":
            self.namespaces.add(obj.name)
        elif obj.kind == "CustomResourceDefinition":
            self.custom_kinds.add(obj.manifest["spec"]["names"]["kind"])
        elif obj.namespace not in self.namespaces:
            raise ApiError(
                f'namespaces "{obj.namespace}" not found', status=404, reason="NotFound"
            )
        self.objects[(obj.kind, obj.namespace, obj.name)] = obj.manifest

    async def delete(self, obj: TargetObject) -> None:
        await asyncio.sleep(0.001)
        self.calls.append(("delete", obj.kind, obj.name))
        self.objects.pop((obj.kind, obj.namespace, obj.name), None)

    def ref_for(self, obj: TargetObject) -> ObjectRef:
        return obj.scoped_ref(obj.kind not in self.CLUSTER_SCOPED_KINDS)

    def attempts_for(self, name: str) -> int:
        return sum(1 for _, _, called in self.calls if called == name)
