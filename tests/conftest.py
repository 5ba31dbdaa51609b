"""
Shared fixtures for the test suite.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from kubernetes_asyncio import client

from istio_mcp.istio import Istio, KubeConfigSource
from istio_mcp.istioctl import ProxyConfigClient


# ---------------------------------------------------------------------------
# Subprocess mock factory
# ---------------------------------------------------------------------------

def make_proc(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0):
    """Mimics the object returned by asyncio.create_subprocess_exec."""
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.kill = MagicMock()
    proc.wait = AsyncMock(return_value=-9)
    return proc


@pytest.fixture
def mock_run(monkeypatch):
    """
    Patches asyncio.create_subprocess_exec with a fake that pops responses
    from a queue and records the argv of every call.

    Usage:
        calls = mock_run((b"output", b"", 0))
        ...
        assert calls[0] == ("istioctl", "proxy-status")
    """
    responses: list[tuple[bytes, bytes, int]] = []
    calls: list[tuple[str, ...]] = []

    async def fake_exec(*args, **kwargs):
        assert responses, f"Unexpected istioctl call: {args}"
        calls.append(args)
        stdout, stderr, rc = responses.pop(0)
        return make_proc(stdout, stderr, rc)

    monkeypatch.setattr("asyncio.create_subprocess_exec", fake_exec)

    def queue(*items: tuple[bytes, bytes, int]):
        responses.extend(items)
        return calls

    return queue


# ---------------------------------------------------------------------------
# Backend handle with mocked Kubernetes APIs
# ---------------------------------------------------------------------------

def make_backend(kubeconfig: str | None = None, files: tuple[Path, ...] = ()) -> Istio:
    """An Istio handle whose CoreV1Api / CustomObjectsApi are AsyncMocks."""
    api_client = MagicMock(name="api_client")
    api_client.close = AsyncMock()
    return Istio(
        api_client,
        KubeConfigSource(path=kubeconfig, files=files),
        ProxyConfigClient(kubeconfig),
        core=AsyncMock(name="core"),
        custom=AsyncMock(name="custom"),
    )


@pytest.fixture
def backend() -> Istio:
    return make_backend()


def custom_items(*items: dict) -> dict:
    """Shape of a list_namespaced_custom_object response."""
    return {"apiVersion": "v1", "kind": "List", "items": list(items)}


def cr(name: str, spec: dict | None = None) -> dict:
    """A minimal unstructured custom resource."""
    obj: dict = {"metadata": {"name": name, "namespace": "default"}}
    if spec is not None:
        obj["spec"] = spec
    return obj


# ---------------------------------------------------------------------------
# Typed Kubernetes objects
# ---------------------------------------------------------------------------

def make_pod(
    name: str,
    namespace: str = "default",
    *,
    phase: str = "Running",
    ready: bool = True,
    containers: tuple[str, ...] = ("app", "istio-proxy"),
    init_containers: tuple[str, ...] = (),
    pod_ip: str = "10.0.0.1",
    node: str = "node-1",
) -> client.V1Pod:
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace),
        spec=client.V1PodSpec(
            containers=[client.V1Container(name=c) for c in containers],
            init_containers=[client.V1Container(name=c) for c in init_containers] or None,
            node_name=node,
        ),
        status=client.V1PodStatus(
            phase=phase,
            pod_ip=pod_ip,
            conditions=[client.V1PodCondition(type="Ready", status="True" if ready else "False")],
        ),
    )


def make_service(
    name: str,
    *,
    svc_type: str = "ClusterIP",
    cluster_ip: str = "10.96.0.10",
    selector: dict | None = None,
    lb_ip: str | None = None,
) -> client.V1Service:
    status = None
    if lb_ip is not None:
        status = client.V1ServiceStatus(
            load_balancer=client.V1LoadBalancerStatus(ingress=[client.V1LoadBalancerIngress(ip=lb_ip)])
        )
    return client.V1Service(
        metadata=client.V1ObjectMeta(name=name, namespace="default"),
        spec=client.V1ServiceSpec(type=svc_type, cluster_ip=cluster_ip, selector=selector),
        status=status,
    )


# ---------------------------------------------------------------------------
# Sample Istio custom resources
# ---------------------------------------------------------------------------

REVIEWS_VS = cr(
    "reviews",
    {
        "hosts": ["reviews.default.svc.cluster.local"],
        "gateways": ["mesh"],
        "http": [{"route": [{"destination": {"host": "reviews", "subset": "v1"}}]}, {"route": []}],
    },
)

RATINGS_VS = cr("ratings", {"hosts": ["ratings"], "tcp": [{"route": []}]})

RDS_SE = cr("rds", {"hosts": ["db.example.rds.amazonaws.com"], "location": "MESH_EXTERNAL"})

DENY_ALL_AP = cr("deny-all", {"action": "DENY"})

ALLOW_AP = cr("allow-frontend", {"selector": {"matchLabels": {"app": "frontend"}}})
