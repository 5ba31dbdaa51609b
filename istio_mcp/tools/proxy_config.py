"""
Envoy proxy introspection tools (read-only, backed by istioctl).

Tools:
  get-proxy-clusters     — `istioctl proxy-config cluster <pod>.<ns>`
  get-proxy-listeners    — `istioctl proxy-config listener <pod>.<ns>`
  get-proxy-routes       — `istioctl proxy-config route <pod>.<ns>`
  get-proxy-endpoints    — `istioctl proxy-config endpoint <pod>.<ns>`
  get-proxy-bootstrap    — `istioctl proxy-config bootstrap <pod>.<ns>`
  get-proxy-config-dump  — `istioctl proxy-config all <pod>.<ns>`
  get-proxy-status       — `istioctl proxy-status [<pod>.<ns>]`
  get-istio-analyze      — `istioctl analyze [-n <ns>]`

Pod names come from `get-pods-by-service`; istioctl output is returned as-is.
"""

from __future__ import annotations

from mcp.types import Tool

from istio_mcp.istio import Istio
from istio_mcp.tools.params import (
    input_schema,
    namespace_arg,
    optional_string,
    read_only,
    require_string,
    string_param,
)

_POD_DESCRIPTION = "Pod name containing the Istio proxy (sidecar)"


def _pod_tool(name: str, title: str, description: str, namespace_help: str) -> Tool:
    return Tool(
        name=name,
        description=description,
        inputSchema=input_schema(
            {
                "namespace": string_param(f"Namespace of the pod (defaults to 'default'). {namespace_help}"),
                "pod": string_param(_POD_DESCRIPTION),
            },
            required=["pod"],
        ),
        annotations=read_only(title),
    )


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

PROXY_CONFIG_TOOLS: list[Tool] = [
    _pod_tool(
        "get-proxy-clusters",
        "Istio: Proxy Clusters",
        "Get Envoy cluster configuration from any Istio proxy pod. Clusters represent upstream "
        "services and their load balancing settings. Use this for debugging service connectivity "
        "and load balancing issues in the Istio service mesh.",
        "Istio proxies can be in any namespace where services are deployed.",
    ),
    _pod_tool(
        "get-proxy-listeners",
        "Istio: Proxy Listeners",
        "Get Envoy listener configuration from any Istio proxy pod. Listeners define how the proxy "
        "accepts incoming connections. Use this for debugging network connectivity and port "
        "binding issues in the service mesh.",
        "Check the namespace where your service pods are deployed.",
    ),
    _pod_tool(
        "get-proxy-routes",
        "Istio: Proxy Routes",
        "Get Envoy route configuration from any Istio proxy pod. Routes define how requests are "
        "matched and routed to clusters. Use this for debugging traffic routing and Virtual "
        "Service configuration issues.",
        "Route configurations reflect Virtual Service rules applied to the pod.",
    ),
    _pod_tool(
        "get-proxy-endpoints",
        "Istio: Proxy Endpoints",
        "Get Envoy endpoint configuration from any Istio proxy pod. Endpoints represent the actual "
        "instances of upstream services. Use this for debugging service discovery and endpoint "
        "health issues.",
        "Endpoint configurations show service discovery results.",
    ),
    _pod_tool(
        "get-proxy-bootstrap",
        "Istio: Proxy Bootstrap",
        "Get Envoy bootstrap configuration from any Istio proxy pod. Bootstrap config contains the "
        "initial proxy configuration including admin interface settings. Use this for debugging "
        "proxy startup and configuration issues.",
        "Bootstrap config is generated during proxy initialization.",
    ),
    _pod_tool(
        "get-proxy-config-dump",
        "Istio: Proxy Config Dump",
        "Get full Envoy configuration dump from any Istio proxy pod. This provides complete proxy "
        "configuration including all listeners, clusters, routes, and endpoints. Use this for "
        "comprehensive Istio proxy debugging and troubleshooting.",
        "Full config dump shows complete proxy state.",
    ),
    Tool(
        name="get-proxy-status",
        description=(
            "Get proxy status information for all Istio proxies or a specific pod. Shows proxy "
            "sync status, configuration version, and connectivity health. Use this to monitor "
            "Istio service mesh health and configuration distribution."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace of the pod (optional). If specified, shows status for proxies in that "
                "namespace only."
            ),
            "pod": string_param(
                "Pod name (optional, if not provided shows all proxies). Use this to check "
                "specific proxy sync status."
            ),
        }),
        annotations=read_only("Istio: Proxy Status"),
    ),
    Tool(
        name="get-istio-analyze",
        description=(
            "Analyze Istio configuration and report potential issues, misconfigurations, and best "
            "practice violations. This tool runs 'istioctl analyze' to provide comprehensive "
            "analysis of your Istio service mesh configuration."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to analyze (optional). If specified, analyzes only the specified "
                "namespace. If not provided, analyzes the entire cluster."
            ),
        }),
        annotations=read_only("Istio: Configuration Analysis"),
    ),
]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def _pod_args(args: dict) -> tuple[str, str]:
    return namespace_arg(args), require_string(args, "pod")


async def handle_get_proxy_clusters(backend: Istio, args: dict) -> str:
    namespace, pod = _pod_args(args)
    return await backend.proxy_config.get_clusters(namespace, pod)


async def handle_get_proxy_listeners(backend: Istio, args: dict) -> str:
    namespace, pod = _pod_args(args)
    return await backend.proxy_config.get_listeners(namespace, pod)


async def handle_get_proxy_routes(backend: Istio, args: dict) -> str:
    namespace, pod = _pod_args(args)
    return await backend.proxy_config.get_routes(namespace, pod)


async def handle_get_proxy_endpoints(backend: Istio, args: dict) -> str:
    namespace, pod = _pod_args(args)
    return await backend.proxy_config.get_endpoints(namespace, pod)


async def handle_get_proxy_bootstrap(backend: Istio, args: dict) -> str:
    namespace, pod = _pod_args(args)
    return await backend.proxy_config.get_bootstrap(namespace, pod)


async def handle_get_proxy_config_dump(backend: Istio, args: dict) -> str:
    namespace, pod = _pod_args(args)
    return await backend.proxy_config.get_config_dump(namespace, pod)


async def handle_get_proxy_status(backend: Istio, args: dict) -> str:
    namespace = optional_string(args, "namespace")
    pod = optional_string(args, "pod")
    if namespace and pod:
        return await backend.proxy_config.get_proxy_status_for_pod(namespace, pod)
    return await backend.proxy_config.get_proxy_status()


async def handle_get_istio_analyze(backend: Istio, args: dict) -> str:
    return await backend.proxy_config.analyze(optional_string(args, "namespace"))


PROXY_CONFIG_HANDLERS = {
    "get-proxy-clusters": handle_get_proxy_clusters,
    "get-proxy-listeners": handle_get_proxy_listeners,
    "get-proxy-routes": handle_get_proxy_routes,
    "get-proxy-endpoints": handle_get_proxy_endpoints,
    "get-proxy-bootstrap": handle_get_proxy_bootstrap,
    "get-proxy-config-dump": handle_get_proxy_config_dump,
    "get-proxy-status": handle_get_proxy_status,
    "get-istio-analyze": handle_get_istio_analyze,
}
