"""Asynchronous Kubernetes API client for server-side apply and delete."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from deka import __version__
from deka.domain.objects import ObjectRef, TargetObject
from deka.kube.config import ClusterConfig
from deka.kube.errors import ApiError, ApiErrorKind
from deka.utils.serialization import json_default

logger = logging.getLogger(__name__)

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"
_MAX_ERROR_TEXT = 500


@dataclass(frozen=True)
class ApiResource:
    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool

    @property
    def group_version_path(self) -> str:
        if self.group:
            return f"/apis/{self.group}/{self.version}"
        return f"/api/{self.version}"

    def path(self, name: str, namespace: str | None) -> str:
        base = self.group_version_path
        if self.namespaced:
            if not namespace:
                raise ApiError(
                    f"{self.kind} {name!r} is namespaced but no namespace was resolved",
                    status=400,
                    reason="BadRequest",
                )
            base = f"{base}/namespaces/{quote(namespace, safe='')}"
        return f"{base}/{self.plural}/{quote(name, safe='')}"


class _BearerAuth(httpx.Auth):
    """Attach a bearer token, re-reading rotating credentials once on 401.

    Token files and exec plugins are read in a worker thread so a slow
    credential plugin does not stall the event loop.
    """

    def __init__(self, config: ClusterConfig) -> None:
        self._config = config
        self._token: str | None = None
        self._loaded = False
        self._lock = asyncio.Lock()

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self._current_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        response = yield request
        rotating = self._config.token_file or self._config.exec_command
        if response.status_code == 401 and rotating:
            fresh = await self._current_token(token, refresh=True)
            if fresh:
                request.headers["Authorization"] = f"Bearer {fresh}"
                yield request

    async def _current_token(
        self, previous: str | None = None, *, refresh: bool = False
    ) -> str | None:
        async with self._lock:
            # Concurrent requests share one refresh.
            if not self._loaded or (refresh and self._token == previous):
                self._token = await asyncio.to_thread(self._config.bearer_token)
                self._loaded = True
            return self._token


class KubeClient:
    """Discovery, server-side apply and delete over ``httpx.AsyncClient``.

    Discovery is re-run on every call until it succeeds; a kind that is not
    served yet surfaces as ``ApiErrorKind.KIND_NOT_RECOGNIZED``.
    """

    def __init__(
        self,
        config: ClusterConfig,
        *,
        field_manager: str = "deka",
        request_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not field_manager:
            raise ValueError("field_manager must not be empty")
        self.config = config
        self.field_manager = field_manager
        self._resources: dict[tuple[str, str, str], ApiResource] = {}
        self._http = httpx.AsyncClient(
            base_url=config.server,
            verify=config.ssl_context() if transport is None else True,
            auth=_BearerAuth(config),
            timeout=request_timeout,
            transport=transport,
            headers={
                "Accept": "application/json",
                "User-Agent": f"deka/{__version__}",
            },
        )

    async def __aenter__(self) -> "KubeClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def ref_for(self, obj: TargetObject) -> ObjectRef:
        """Report identity; cluster-scoped once discovery has said so."""
        resource = self._resources.get((obj.group, obj.version, obj.kind))
        if resource is None:
            return obj.ref
        return obj.scoped_ref(resource.namespaced)

    async def discover(self, obj: TargetObject) -> ApiResource:
        key = (obj.group, obj.version, obj.kind)
        cached = self._resources.get(key)
        if cached is not None:
            return cached

        group_path = f"/apis/{obj.group}/{obj.version}" if obj.group else f"/api/{obj.version}"
        try:
            response = await self._request("GET", group_path)
        except ApiError as exc:
            if exc.status == 404:
                raise ApiError.kind_not_recognized(obj.api_version, obj.kind) from exc
            raise

        for entry in _json(response).get("resources") or []:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or "")
            # Subresources such as pods/log share the parent's kind.
            if not name or "/" in name or entry.get("kind") != obj.kind:
                continue
            resource = ApiResource(
                group=obj.group,
                version=obj.version,
                kind=obj.kind,
                plural=name,
                namespaced=bool(entry.get("namespaced")),
            )
            self._resources[key] = resource
            logger.debug("Discovered %s as %s", obj.kind, resource.plural)
            return resource

        raise ApiError.kind_not_recognized(obj.api_version, obj.kind)

    async def apply(self, obj: TargetObject) -> None:
        resource = await self.discover(obj)
        path = resource.path(obj.name, obj.namespace)
        body = json.dumps(obj.manifest, default=json_default)
        await self._request(
            "PATCH",
            path,
            params={"fieldManager": self.field_manager, "force": "true"},
            content=body.encode("utf-8"),
            headers={"Content-Type": APPLY_PATCH_CONTENT_TYPE},
        )

    async def delete(self, obj: TargetObject) -> None:
        try:
            resource = await self.discover(obj)
        except ApiError as exc:
            if exc.kind is ApiErrorKind.KIND_NOT_RECOGNIZED:
                logger.debug("%s already deleted (kind not served)", obj.ref)
                return
            raise
        try:
            await self._request("DELETE", resource.path(obj.name, obj.namespace))
        except ApiError as exc:
            if exc.status == 404:
                logger.debug("%s already deleted (not found)", obj.ref)
                return
            raise

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._http.request(
                method, path, params=params, content=content, headers=headers
            )
        except httpx.TransportError as exc:
            detail = str(exc) or type(exc).__name__
            raise ApiError.transport(f"{method} {path}: {detail}") from exc

        if response.is_success:
            return response
        try:
            body: object = response.json()
        except ValueError:
            body = None
        raise ApiError.from_status(
            response.status_code, body, fallback=response.text.strip()[:_MAX_ERROR_TEXT]
        )


def _json(response: httpx.Response) -> dict[str, object]:
    try:
        data = response.json()
    except ValueError as exc:
        raise ApiError(
            f"invalid JSON from {response.request.url.path}",
            status=response.status_code,
        ) from exc
    return data if isinstance(data, dict) else {}
