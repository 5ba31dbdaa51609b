"""
Integration test fixtures — requires a live cluster with Istio installed.
"""

from __future__ import annotations

import asyncio
import shutil

import pytest

from istio_mcp.errors import IstioError
from istio_mcp.istio import Istio


async def _cluster_answers() -> bool:
    try:
        backend = await Istio.from_kubeconfig()
    except IstioError:
        return False
    try:
        await backend.core.get_api_resources(_request_timeout=5)
        return True
    except Exception:  # noqa: BLE001
        return False
    finally:
        await backend.close()


def _cluster_reachable() -> bool:
    return asyncio.run(_cluster_answers())


skip_no_cluster = pytest.mark.skipif(
    not _cluster_reachable(),
    reason="Kubernetes cluster not reachable — skipping integration tests",
)

skip_no_istioctl = pytest.mark.skipif(
    shutil.which("istioctl") is None,
    reason="istioctl not on PATH — skipping proxy integration tests",
)


@pytest.fixture
async def live_backend():
    backend = await Istio.from_kubeconfig()
    yield backend
    await backend.close()
