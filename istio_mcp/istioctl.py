"""
Async istioctl wrapper.

Uses asyncio.create_subprocess_exec — no shell involved, immune to injection.
Pod identities and namespaces are always passed as explicit list elements.

Safety features:
  - Fixed 30s timeout per invocation; the process is killed and its output
    discarded on timeout
  - Concurrency semaphore to limit parallel subprocess count
  - Enriched error messages for common failure modes
  - stdout/stderr are merged so failures carry istioctl's own diagnostics
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Sequence

from istio_mcp.errors import IstioctlError


ISTIOCTL_TIMEOUT = 30  # seconds
MAX_OUTPUT_BYTES = 10 * 1024 * 1024  # 10 MB
MAX_CONCURRENT_ISTIOCTL = 10

# ---------------------------------------------------------------------------
# Error enrichment
# ---------------------------------------------------------------------------

_ERROR_HINTS = {
    "Unable to connect to the server": (
        "Cannot reach the Kubernetes API server. Check that your cluster is running "
        "and kubeconfig is correct."
    ),
    "no running Istio pods in": (
        "istiod is not running in the control-plane namespace. Check the Istio installation."
    ),
    "failed to execute command on sidecar": (
        "The pod has no reachable istio-proxy sidecar. Check that sidecar injection is "
        "enabled for its namespace."
    ),
    "the server has asked for the client to provide credentials": (
        "Cluster rejected credentials. Token may be expired."
    ),
}


def _enrich_error(message: str) -> str:
    """Prepend an actionable hint to common istioctl errors."""
    for pattern, hint in _ERROR_HINTS.items():
        if pattern in message:
            return f"{hint}\n\n{message}"
    return message


# ---------------------------------------------------------------------------
# Concurrency control
# ---------------------------------------------------------------------------

_semaphore: asyncio.Semaphore | None = None


def _get_semaphore() -> asyncio.Semaphore:
    global _semaphore
    if _semaphore is None:
        _semaphore = asyncio.Semaphore(MAX_CONCURRENT_ISTIOCTL)
    return _semaphore


# ---------------------------------------------------------------------------
# Core functions
# ---------------------------------------------------------------------------

def pod_identity(pod: str, namespace: str) -> str:
    """istioctl addresses a proxy as ``<pod>.<namespace>``."""
    return f"{pod}.{namespace}"


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill and reap the child so it does not linger as a zombie."""
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    await proc.wait()


def _build_args(args: Sequence[str], kubeconfig: str | None = None) -> list[str]:
    prefix: list[str] = []
    if kubeconfig:
        prefix += ["--kubeconfig", kubeconfig]
    return prefix + list(args)


async def istioctl(
    args: Sequence[str],
    *,
    kubeconfig: str | None = None,
    binary: str = "istioctl",
    timeout: float = ISTIOCTL_TIMEOUT,
) -> str:
    """Run istioctl and return its combined output as a string."""
    full_args = _build_args(args, kubeconfig=kubeconfig)

    async with _get_semaphore():
        try:
            proc = await asyncio.create_subprocess_exec(
                binary,
                *full_args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            raise IstioctlError(
                f"{binary} binary not found. Install istioctl and ensure it is on your PATH "
                f"(or pass --istioctl)."
            )

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            raise IstioctlError(f"istioctl timed out after {timeout}s: istioctl {' '.join(full_args)}")
        except asyncio.CancelledError:
            await _kill(proc)
            raise

    if len(stdout) > MAX_OUTPUT_BYTES:
        stdout = stdout[:MAX_OUTPUT_BYTES] + b"\n[... output truncated at 10 MB ...]"

    output = stdout.decode(errors="replace").strip()
    if proc.returncode != 0:
        raise IstioctlError(
            _enrich_error(f"istioctl command failed: exit status {proc.returncode}, output: {output}")
        )
    return output


# ---------------------------------------------------------------------------
# Proxy configuration client
# ---------------------------------------------------------------------------

class ProxyConfigClient:
    """Retrieves Envoy proxy configuration through istioctl."""

    def __init__(
        self,
        kubeconfig: str | None = None,
        *,
        binary: str = "istioctl",
        timeout: float = ISTIOCTL_TIMEOUT,
    ) -> None:
        self.kubeconfig = kubeconfig
        self.binary = binary
        self.timeout = timeout

    async def _exec(self, *args: str) -> str:
        return await istioctl(args, kubeconfig=self.kubeconfig, binary=self.binary, timeout=self.timeout)

    async def _proxy_config(self, section: str, namespace: str, pod: str) -> str:
        return await self._exec("proxy-config", section, pod_identity(pod, namespace), "-o", "json")

    async def get_clusters(self, namespace: str, pod: str) -> str:
        return await self._proxy_config("cluster", namespace, pod)

    async def get_listeners(self, namespace: str, pod: str) -> str:
        return await self._proxy_config("listener", namespace, pod)

    async def get_routes(self, namespace: str, pod: str) -> str:
        return await self._proxy_config("route", namespace, pod)

    async def get_endpoints(self, namespace: str, pod: str) -> str:
        return await self._proxy_config("endpoint", namespace, pod)

    async def get_bootstrap(self, namespace: str, pod: str) -> str:
        return await self._proxy_config("bootstrap", namespace, pod)

    async def get_config_dump(self, namespace: str, pod: str) -> str:
        return await self._proxy_config("all", namespace, pod)

    async def get_proxy_status(self) -> str:
        """Sync status of every proxy in the mesh."""
        return await self._exec("proxy-status")

    async def get_proxy_status_for_pod(self, namespace: str, pod: str) -> str:
        return await self._exec("proxy-status", pod_identity(pod, namespace))

    async def analyze(self, namespace: str = "") -> str:
        """Run ``istioctl analyze`` for one namespace, or the whole cluster when empty."""
        if namespace:
            return await self._exec("analyze", "-n", namespace)
        return await self._exec("analyze")
