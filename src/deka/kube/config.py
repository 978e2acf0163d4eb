"""Cluster connection settings from kubeconfig or the in-cluster service account."""

from __future__ import annotations

import base64
import json
import logging
import os
import ssl
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from deka.errors import KubeConfigError

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"
SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")
_EXEC_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class ClusterConfig:
    server: str
    namespace: str = DEFAULT_NAMESPACE
    ca_file: str | None = None
    ca_data: str | None = None
    client_cert_file: str | None = None
    client_key_file: str | None = None
    client_cert_data: str | None = field(default=None, repr=False)
    client_key_data: str | None = field(default=None, repr=False)
    token: str | None = field(default=None, repr=False)
    token_file: str | None = None
    insecure_skip_tls_verify: bool = False
    exec_command: tuple[str, ...] | None = None
    exec_env: dict[str, str] = field(default_factory=dict, repr=False)

    def ssl_context(self) -> ssl.SSLContext | bool:
        """Build the TLS settings handed to httpx as ``verify``."""
        if not self.server.startswith("https://"):
            return True
        if self.insecure_skip_tls_verify:
            ctx = ssl.create_default_context()
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        else:
            try:
                ctx = ssl.create_default_context(cafile=self.ca_file, cadata=self.ca_data)
            except (OSError, ssl.SSLError) as exc:
                raise KubeConfigError(f"Invalid cluster CA: {exc}") from exc
        if self.client_cert_file or self.client_cert_data:
            try:
                self._load_client_cert(ctx)
            except (OSError, ssl.SSLError) as exc:
                raise KubeConfigError(f"Invalid client certificate: {exc}") from exc
        return ctx

    def _load_client_cert(self, ctx: ssl.SSLContext) -> None:
        if self.client_cert_data is None and self.client_key_data is None:
            ctx.load_cert_chain(self.client_cert_file, self.client_key_file)
            return
        # load_cert_chain only accepts paths; inline PEMs exist on disk only while it runs.
        with tempfile.TemporaryDirectory(prefix="deka-") as tmp:
            cert_file = _write_private(tmp, "client.crt", self.client_cert_data)
            key_file = _write_private(tmp, "client.key", self.client_key_data)
            ctx.load_cert_chain(
                cert_file or self.client_cert_file,
                key_file or self.client_key_file,
            )

    def bearer_token(self) -> str | None:
        """Current bearer token; token files and exec plugins are re-read each call."""
        if self.token:
            return self.token
        if self.token_file:
            try:
                return Path(self.token_file).read_text(encoding="utf-8").strip() or None
            except OSError as exc:
                raise KubeConfigError(f"Cannot read token file {self.token_file}: {exc}") from exc
        if self.exec_command:
            return _run_exec_plugin(self.exec_command, self.exec_env)
        return None


def default_kubeconfig_path() -> Path:
    env = os.getenv("KUBECONFIG", "").strip()
    if env:
        first = env.split(os.pathsep)[0]
        if first:
            return Path(first).expanduser()
    return Path.home() / ".kube" / "config"


def load_kubeconfig(path: str | Path | None = None, context: str | None = None) -> ClusterConfig:
    """Resolve a ``ClusterConfig`` from a kubeconfig file."""
    config_path = Path(path).expanduser() if path else default_kubeconfig_path()
    if not config_path.exists():
        raise KubeConfigError(f"Kubeconfig not found: {config_path}")
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise KubeConfigError(f"Cannot read kubeconfig {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise KubeConfigError(f"Kubeconfig {config_path} is not a mapping")
    return _config_from_kubeconfig(data, context, base_dir=config_path.parent)


def load_incluster_config(sa_dir: Path = SERVICE_ACCOUNT_DIR) -> ClusterConfig:
    host = os.getenv("KUBERNETES_SERVICE_HOST")
    port = os.getenv("KUBERNETES_SERVICE_PORT")
    if not host or not port:
        raise KubeConfigError("Not running inside a cluster (KUBERNETES_SERVICE_HOST unset)")
    token_file = sa_dir / "token"
    if not token_file.exists():
        raise KubeConfigError(f"Service account token not found: {token_file}")
    if ":" in host:
        host = f"[{host}]"
    namespace_file = sa_dir / "namespace"
    namespace = DEFAULT_NAMESPACE
    if namespace_file.exists():
        namespace = namespace_file.read_text(encoding="utf-8").strip() or DEFAULT_NAMESPACE
    ca_file = sa_dir / "ca.crt"
    return ClusterConfig(
        server=f"https://{host}:{port}",
        namespace=namespace,
        ca_file=str(ca_file) if ca_file.exists() else None,
        token_file=str(token_file),
    )


def infer_config(path: str | Path | None = None, context: str | None = None) -> ClusterConfig:
    """Use an explicit or default kubeconfig, falling back to in-cluster settings."""
    if path is not None:
        return load_kubeconfig(path, context)
    try:
        return load_kubeconfig(None, context)
    except KubeConfigError as kubeconfig_error:
        try:
            config = load_incluster_config()
        except KubeConfigError:
            raise kubeconfig_error from None
        logger.debug("Using in-cluster configuration")
        return config


def _named(entries: Any, name: str, label: str) -> dict[str, Any]:
    for entry in entries or []:
        if isinstance(entry, dict) and entry.get("name") == name:
            value = entry.get(label)
            return value if isinstance(value, dict) else {}
    raise KubeConfigError(f"{label} {name!r} not found in kubeconfig")


def _config_from_kubeconfig(
    data: dict[str, Any],
    context_name: str | None,
    base_dir: Path,
) -> ClusterConfig:
    context_name = context_name or data.get("current-context")
    if not context_name:
        raise KubeConfigError("No context selected and kubeconfig has no current-context")
    context = _named(data.get("contexts"), context_name, "context")
    cluster_name = context.get("cluster")
    if not cluster_name:
        raise KubeConfigError(f"context {context_name!r} has no cluster")
    cluster = _named(data.get("clusters"), cluster_name, "cluster")
    user_name = context.get("user")
    user = _named(data.get("users"), user_name, "user") if user_name else {}

    server = str(cluster.get("server") or "").rstrip("/")
    if not server:
        raise KubeConfigError(f"cluster {cluster_name!r} has no server")

    exec_spec = user.get("exec") if isinstance(user.get("exec"), dict) else None
    exec_command: tuple[str, ...] | None = None
    exec_env: dict[str, str] = {}
    if exec_spec:
        command = exec_spec.get("command")
        if not command:
            raise KubeConfigError(f"user {user_name!r} exec plugin has no command")
        exec_command = (str(command), *(str(arg) for arg in exec_spec.get("args") or []))
        exec_env = {
            str(item["name"]): str(item.get("value", ""))
            for item in exec_spec.get("env") or []
            if isinstance(item, dict) and item.get("name")
        }

    client_cert_file = _resolve_file(user.get("client-certificate"), base_dir)
    client_key_file = _resolve_file(user.get("client-key"), base_dir)
    client_cert_data = None
    if client_cert_file is None:
        client_cert_data = _decode_data(user.get("client-certificate-data"))
    client_key_data = None
    if client_key_file is None:
        client_key_data = _decode_data(user.get("client-key-data"))

    return ClusterConfig(
        server=server,
        namespace=str(context.get("namespace") or DEFAULT_NAMESPACE),
        ca_file=_resolve_file(cluster.get("certificate-authority"), base_dir),
        ca_data=_decode_data(cluster.get("certificate-authority-data")),
        client_cert_file=client_cert_file,
        client_key_file=client_key_file,
        client_cert_data=client_cert_data,
        client_key_data=client_key_data,
        token=user.get("token") or None,
        token_file=_resolve_file(user.get("tokenFile"), base_dir),
        insecure_skip_tls_verify=bool(cluster.get("insecure-skip-tls-verify", False)),
        exec_command=exec_command,
        exec_env=exec_env,
    )


def _resolve_file(value: Any, base_dir: Path) -> str | None:
    if not value:
        return None
    candidate = Path(str(value)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return str(candidate)


def _decode_data(value: Any) -> str | None:
    if not value:
        return None
    try:
        return base64.b64decode(str(value)).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as exc:
        raise KubeConfigError(f"Invalid base64 data in kubeconfig: {exc}") from exc


def _write_private(directory: str, name: str, content: str | None) -> str | None:
    if content is None:
        return None
    path = os.path.join(directory, name)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)
    return path


def _run_exec_plugin(command: tuple[str, ...], env: dict[str, str]) -> str | None:
    try:
        completed = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            check=True,
            timeout=_EXEC_TIMEOUT_SECONDS,
            env={**os.environ, **env},
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise KubeConfigError(f"Credential plugin {command[0]!r} failed: {exc}") from exc
    try:
        payload = json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise KubeConfigError(f"Credential plugin {command[0]!r} returned invalid JSON") from exc
    status = payload.get("status") if isinstance(payload, dict) else None
    if not isinstance(status, dict):
        raise KubeConfigError(f"Credential plugin {command[0]!r} returned no status")
    return status.get("token") or None
