"""
Backend handle — Kubernetes API clients plus the istioctl proxy client.

An ``Istio`` instance is built from a kubeconfig source and never mutated;
on kubeconfig changes the server builds a fresh one and swaps it in.

Kubernetes calls go through kubernetes_asyncio, so cancelling the caller
aborts the in-flight HTTP request instead of letting it run to completion.

Kubeconfig resolution order:
  1. explicit path (``--kubeconfig``)
  2. ``KUBECONFIG`` (may list several files, separated by ``os.pathsep``)
  3. ``~/.kube/config``
  4. in-cluster service account
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

import aiohttp
from kubernetes_asyncio import client, config
from kubernetes_asyncio.client.exceptions import ApiException

from istio_mcp.errors import BackendUnavailable, ResourceListError
from istio_mcp.istioctl import ISTIOCTL_TIMEOUT, ProxyConfigClient

logger = logging.getLogger(__name__)

LIST_TIMEOUT = 30  # seconds, per Kubernetes API request


# ---------------------------------------------------------------------------
# Istio resource kinds
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResourceKind:
    group: str
    version: str
    plural: str
    label: str  # used in listing headers, e.g. "Virtual Services"
    noun: str  # used in error messages, e.g. "virtual services"


VIRTUAL_SERVICES = ResourceKind(
    "networking.istio.io", "v1alpha3", "virtualservices", "Virtual Services", "virtual services"
)
DESTINATION_RULES = ResourceKind(
    "networking.istio.io", "v1alpha3", "destinationrules", "Destination Rules", "destination rules"
)
GATEWAYS = ResourceKind("networking.istio.io", "v1alpha3", "gateways", "Gateways", "gateways")
SERVICE_ENTRIES = ResourceKind(
    "networking.istio.io", "v1alpha3", "serviceentries", "Service Entries", "service entries"
)
ENVOY_FILTERS = ResourceKind(
    "networking.istio.io", "v1alpha3", "envoyfilters", "Envoy Filters", "envoy filters"
)
AUTHORIZATION_POLICIES = ResourceKind(
    "security.istio.io", "v1beta1", "authorizationpolicies", "Authorization Policies",
    "authorization policies",
)
PEER_AUTHENTICATIONS = ResourceKind(
    "security.istio.io", "v1beta1", "peerauthentications", "Peer Authentications",
    "peer authentications",
)
TELEMETRIES = ResourceKind(
    "telemetry.istio.io", "v1alpha1", "telemetries", "Telemetry configurations", "telemetries"
)


# ---------------------------------------------------------------------------
# Kubeconfig resolution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KubeConfigSource:
    """Where the current credentials came from and which files back them."""

    path: str | None  # explicit --kubeconfig, forwarded to istioctl
    files: tuple[Path, ...]
    in_cluster: bool = False


def resolve_kubeconfig(path: str | None = None) -> KubeConfigSource:
    if path:
        # istioctl runs without a shell, so "~" must be expanded here
        explicit = Path(path).expanduser()
        return KubeConfigSource(path=str(explicit), files=(explicit,))

    env = os.environ.get("KUBECONFIG", "")
    candidates = [Path(p).expanduser() for p in env.split(os.pathsep) if p]
    if not candidates:
        candidates = [Path.home() / ".kube" / "config"]

    existing = tuple(p for p in candidates if p.exists())
    if existing:
        return KubeConfigSource(path=None, files=existing)
    return KubeConfigSource(path=None, files=(), in_cluster=True)


async def _load_api_client(source: KubeConfigSource) -> client.ApiClient:
    if source.in_cluster:
        configuration = client.Configuration()
        config.load_incluster_config(client_configuration=configuration)
        return client.ApiClient(configuration=configuration)
    # config_file=None lets the loader merge every file listed in KUBECONFIG.
    # Refreshed tokens are not written back: that would trip the kubeconfig watch.
    return await config.new_client_from_config(config_file=source.path, persist_config=False)


def _api_reason(exc: ApiException) -> str:
    return f"({exc.status}) {exc.reason}"


# ---------------------------------------------------------------------------
# Backend handle
# ---------------------------------------------------------------------------

class Istio:
    """Live handle on the cluster: resource lister plus proxy inspector."""

    def __init__(
        self,
        api_client: client.ApiClient,
        source: KubeConfigSource,
        proxy_config: ProxyConfigClient,
        *,
        core: client.CoreV1Api | None = None,
        custom: client.CustomObjectsApi | None = None,
        request_timeout: float = LIST_TIMEOUT,
    ) -> None:
        self.api_client = api_client
        self.core = core or client.CoreV1Api(api_client)
        self.custom = custom or client.CustomObjectsApi(api_client)
        self.source = source
        self.proxy_config = proxy_config
        self.request_timeout = request_timeout
        self.close_watch: Callable[[], None] | None = None
        self._closed = False

    @classmethod
    async def from_kubeconfig(
        cls,
        kubeconfig: str | None = None,
        *,
        istioctl: str = "istioctl",
        istioctl_timeout: float = ISTIOCTL_TIMEOUT,
        request_timeout: float = LIST_TIMEOUT,
    ) -> Istio:
        """Build a handle; any failure is fatal and raised as BackendUnavailable.

        Must run on the event loop that will use the handle: the HTTP session
        behind the API client is bound to it.
        """
        source = resolve_kubeconfig(kubeconfig)
        try:
            api_client = await _load_api_client(source)
        except Exception as exc:  # noqa: BLE001
            raise BackendUnavailable(f"failed to build config: {exc}") from exc

        logger.info(
            "Kubernetes client configured from %s",
            "in-cluster service account" if source.in_cluster else ", ".join(map(str, source.files)),
        )
        return cls(
            api_client,
            source,
            ProxyConfigClient(source.path, binary=istioctl, timeout=istioctl_timeout),
            request_timeout=request_timeout,
        )

    # -- queries ------------------------------------------------------------

    async def _call(self, what: str, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Await one API call, mapping failures to ResourceListError.

        Cancellation is not caught: it aborts the underlying HTTP request.
        """
        kwargs.setdefault("_request_timeout", self.request_timeout)
        try:
            return await fn(*args, **kwargs)
        except ApiException as exc:
            raise ResourceListError(f"failed to {what}: {_api_reason(exc)}") from exc
        except asyncio.TimeoutError as exc:
            raise ResourceListError(
                f"failed to {what}: request timed out after {self.request_timeout}s"
            ) from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise ResourceListError(f"failed to {what}: {exc}") from exc

    async def list_resources(self, kind: ResourceKind, namespace: str) -> list[dict]:
        """List one Istio custom resource kind, preserving the API server's order."""
        result = await self._call(
            f"list {kind.noun}",
            self.custom.list_namespaced_custom_object,
            kind.group,
            kind.version,
            namespace,
            kind.plural,
        )
        return list(result.get("items") or [])

    async def list_services(self, namespace: str) -> list[client.V1Service]:
        result = await self._call("list services", self.core.list_namespaced_service, namespace)
        return list(result.items or [])

    async def read_service(self, namespace: str, name: str) -> client.V1Service:
        return await self._call(f"get service {name}", self.core.read_namespaced_service, name, namespace)

    async def read_endpoints(self, namespace: str, name: str) -> client.V1Endpoints:
        return await self._call(
            f"get endpoints {name}", self.core.read_namespaced_endpoints, name, namespace
        )

    async def list_pods(self, namespace: str, label_selector: str, *, what: str = "list pods") -> list[client.V1Pod]:
        result = await self._call(
            what, self.core.list_namespaced_pod, namespace, label_selector=label_selector
        )
        return list(result.items or [])

    async def list_running_pods(self) -> list[client.V1Pod]:
        """Running pods across all namespaces (server-side phase filter)."""
        result = await self._call(
            "list running pods for Istio sidecar discovery",
            self.core.list_pod_for_all_namespaces,
            field_selector="status.phase=Running",
        )
        return list(result.items or [])

    # -- lifecycle ----------------------------------------------------------

    def stop_watching(self) -> None:
        """Close this handle's kubeconfig watch; safe to call more than once."""
        close, self.close_watch = self.close_watch, None
        if close is not None:
            close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.stop_watching()
        await self.api_client.close()
        logger.debug("Closed Istio client connections")
