"""
Configuration and discovery tools (read-only).

Tools:
  discover-istio-namespaces              — rank namespaces by sidecar density
  get-envoy-filters                      — custom Envoy configuration patches
  get-telemetry                          — metrics/tracing/logging policies
  get-istio-config                       — per-kind resource counts (best-effort)
  check-external-dependency-availability — is an external host reachable from a service
  get-services                           — services grouped by type
  get-pods-by-service                    — pods behind a service, ready for proxy tools
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Union

from kubernetes_asyncio.client import V1Pod, V1Service
from mcp.types import Tool

from istio_mcp.errors import ResourceListError
from istio_mcp.formatters import format_labels, item_name, label_selector, listing_header
from istio_mcp.istio import (
    AUTHORIZATION_POLICIES,
    DESTINATION_RULES,
    ENVOY_FILTERS,
    GATEWAYS,
    PEER_AUTHENTICATIONS,
    SERVICE_ENTRIES,
    TELEMETRIES,
    VIRTUAL_SERVICES,
    Istio,
    ResourceKind,
)
from istio_mcp.tools.params import (
    input_schema,
    namespace_arg,
    read_only,
    require_string,
    string_param,
)

logger = logging.getLogger(__name__)

ISTIO_PROXY_CONTAINER = "istio-proxy"
ISTIO_SYSTEM_NAMESPACE = "istio-system"


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

CONFIGURATION_TOOLS: list[Tool] = [
    Tool(
        name="discover-istio-namespaces",
        description=(
            "Discover namespaces that have pods with Istio sidecars and rank them by injection "
            "density. This tool helps identify the most probable best namespace for Istio operations "
            "by analyzing which namespaces have the most Istio-injected workloads. Use this to "
            "prioritize which namespaces to investigate first for Istio configuration and traffic "
            "analysis."
        ),
        inputSchema=input_schema(),
        annotations=read_only("Istio: Namespace Discovery"),
    ),
    Tool(
        name="get-envoy-filters",
        description=(
            "Get Istio Envoy Filters from any namespace. Envoy Filters allow custom configuration of "
            "Envoy proxy behavior, including custom filters, listeners, and clusters. Use this to "
            "inspect advanced Istio service mesh configurations."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to query (defaults to 'default'). Custom Envoy configurations may be "
                "applied to specific namespaces or workloads."
            ),
        }),
        annotations=read_only("Istio: Envoy Filters"),
    ),
    Tool(
        name="get-telemetry",
        description=(
            "Get Istio Telemetry configurations from any namespace. Telemetry policies define "
            "observability settings including metrics, tracing, and logging for the service mesh. "
            "Use this to inspect monitoring and observability configurations."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to query (defaults to 'default'). Telemetry policies may be "
                "namespace-specific or inherited from mesh-wide settings."
            ),
        }),
        annotations=read_only("Istio: Telemetry"),
    ),
    Tool(
        name="get-istio-config",
        description=(
            "Get comprehensive Istio configuration summary for any namespace. This provides an "
            "overview of all Istio resources including Virtual Services, Destination Rules, "
            "Gateways, Security Policies, and more. Use this for complete Istio service mesh "
            "configuration analysis."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to query (defaults to 'default'). Provides complete Istio configuration "
                "overview for the specified namespace."
            ),
        }),
        annotations=read_only("Istio: Configuration Summary"),
    ),
    Tool(
        name="check-external-dependency-availability",
        description=(
            "Check if an external dependency (like RDS, S3, etc.) is properly configured and "
            "accessible for a specific service. This tool validates that all required Istio "
            "resources (Service Entries, Virtual Services, Destination Rules, Authorization "
            "Policies) exist and are properly configured to allow the service to access the "
            "external dependency."
        ),
        inputSchema=input_schema(
            {
                "service-name": string_param(
                    "Name of the service that needs to access the external dependency"
                ),
                "external-host": string_param(
                    "External hostname to check (e.g., 'rds.amazonaws.com', 's3.amazonaws.com')"
                ),
                "namespace": string_param(
                    "Namespace of the service (defaults to 'default'). The tool will check for "
                    "Istio resources in this namespace and globally."
                ),
            },
            required=["service-name", "external-host"],
        ),
        annotations=read_only("Istio: External Dependency Check"),
    ),
    Tool(
        name="get-services",
        description=(
            "List all Kubernetes services in a namespace. This is the first step in the workflow "
            "to find pods for proxy commands: 1) Use this tool to discover available services, "
            "2) Then use 'get-pods-by-service' to find the specific pods backing a service, "
            "3) Finally use proxy commands (get-proxy-clusters, get-proxy-status, etc.) with the "
            "discovered pod names."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to list services from (defaults to 'default'). Services are the entry "
                "points to your applications."
            ),
        }),
        annotations=read_only("Kubernetes: Service Discovery"),
    ),
    Tool(
        name="get-pods-by-service",
        description=(
            "Find all pods backing a specific Kubernetes service - essential for the proxy command "
            "workflow. After discovering services with 'get-services', use this tool to find the "
            "exact pod names you need for Istio proxy commands. Shows running vs non-running pods, "
            "Istio sidecar status, and provides ready-to-use pod names for proxy debugging "
            "commands like get-proxy-clusters, get-proxy-status, get-proxy-listeners, etc."
        ),
        inputSchema=input_schema(
            {
                "namespace": string_param("Namespace containing the service (defaults to 'default')"),
                "service": string_param(
                    "Service name to find backing pods for (use 'get-services' first to discover "
                    "available services)"
                ),
            },
            required=["service"],
        ),
        annotations=read_only("Kubernetes: Service Pod Discovery"),
    ),
]


# ---------------------------------------------------------------------------
# Envoy filters / telemetry
# ---------------------------------------------------------------------------

def _render_envoy_filters(items: list[dict], namespace: str) -> str:
    lines = [listing_header(ENVOY_FILTERS.label, len(items), namespace)]
    for ef in items:
        spec = ef.get("spec") or {}
        lines.append(f"- {item_name(ef)}")
        labels = (spec.get("workloadSelector") or {}).get("labels")
        if labels is not None:
            lines.append(f"  Workload Selector: {format_labels(labels)}")
    return "\n".join(lines) + "\n"


def _render_telemetries(items: list[dict], namespace: str) -> str:
    lines = [listing_header(TELEMETRIES.label, len(items), namespace)]
    for tel in items:
        spec = tel.get("spec") or {}
        lines.append(f"- {item_name(tel)}")
        labels = (spec.get("selector") or {}).get("matchLabels")
        if labels is not None:
            lines.append(f"  Selector: {format_labels(labels)}")
    return "\n".join(lines) + "\n"


async def handle_get_envoy_filters(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    items = await backend.list_resources(ENVOY_FILTERS, namespace)
    return _render_envoy_filters(items, namespace)


async def handle_get_telemetry(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    items = await backend.list_resources(TELEMETRIES, namespace)
    return _render_telemetries(items, namespace)


# ---------------------------------------------------------------------------
# Configuration summary (best-effort aggregation)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Present:
    label: str
    count: int


@dataclass(frozen=True)
class Skipped:
    label: str
    reason: str


SummaryOutcome = Union[Present, Skipped]

SUMMARY_KINDS: list[tuple[ResourceKind, str]] = [
    (VIRTUAL_SERVICES, "Virtual Services"),
    (DESTINATION_RULES, "Destination Rules"),
    (GATEWAYS, "Gateways"),
    (SERVICE_ENTRIES, "Service Entries"),
    (AUTHORIZATION_POLICIES, "Authorization Policies"),
    (PEER_AUTHENTICATIONS, "Peer Authentications"),
    (ENVOY_FILTERS, "Envoy Filters"),
    (TELEMETRIES, "Telemetry Configurations"),
]


async def _count(backend: Istio, kind: ResourceKind, label: str, namespace: str) -> SummaryOutcome:
    try:
        items = await backend.list_resources(kind, namespace)
    except ResourceListError as e:
        logger.warning("Skipping %s in configuration summary for '%s': %s", label, namespace, e)
        return Skipped(label, str(e))
    return Present(label, len(items))


async def summarize_config(backend: Istio, namespace: str) -> list[SummaryOutcome]:
    """Count every Istio kind in ``namespace``; failures become ``Skipped`` outcomes."""
    return list(
        await asyncio.gather(*(_count(backend, kind, label, namespace) for kind, label in SUMMARY_KINDS))
    )


def _render_summary(outcomes: list[SummaryOutcome], namespace: str) -> str:
    out = f"Istio Configuration Summary for namespace '{namespace}':\n\n"
    for outcome in outcomes:
        if isinstance(outcome, Present):
            out += f"{outcome.label}: {outcome.count}\n"
    return out


async def handle_get_istio_config(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    return _render_summary(await summarize_config(backend, namespace), namespace)


# ---------------------------------------------------------------------------
# External dependency check
# ---------------------------------------------------------------------------

def _first_with_host(items: list[dict], host: str) -> dict | None:
    for item in items:
        if host in ((item.get("spec") or {}).get("hosts") or []):
            return item
    return None


async def _global_service_entry(backend: Istio, external_host: str) -> dict | None:
    try:
        items = await backend.list_resources(SERVICE_ENTRIES, ISTIO_SYSTEM_NAMESPACE)
    except ResourceListError as e:
        logger.debug("Global service entry lookup failed: %s", e)
        return None
    return _first_with_host(items, external_host)


async def check_external_dependency(
    backend: Istio, service_name: str, external_host: str, namespace: str
) -> str:
    result = (
        f"External Dependency Check for service '{service_name}' -> '{external_host}' "
        f"in namespace '{namespace}':\n\n"
    )

    # Check 1: Service Entry, falling back to mesh-wide entries in istio-system
    service_entries = await backend.list_resources(SERVICE_ENTRIES, namespace)
    se = _first_with_host(service_entries, external_host)
    if se is not None:
        se_line = f"[OK] Service Entry: '{item_name(se)}' found in namespace '{namespace}'"
    elif namespace != ISTIO_SYSTEM_NAMESPACE and (
        se := await _global_service_entry(backend, external_host)
    ) is not None:
        se_line = (
            f"[OK] Service Entry: '{item_name(se)}' found in namespace "
            f"'{ISTIO_SYSTEM_NAMESPACE}' (global)"
        )
    else:
        se_line = "[MISSING] Service Entry: Not found for external host"

    # Check 2: Virtual Service routing
    vs = _first_with_host(await backend.list_resources(VIRTUAL_SERVICES, namespace), external_host)
    if vs is not None:
        vs_line = f"[OK] Virtual Service: '{item_name(vs)}' found with routing rules"
    else:
        vs_line = "[WARNING] Virtual Service: No specific routing rules found (may use default routing)"

    # Check 3: Destination Rules
    dr = next(
        (
            item
            for item in await backend.list_resources(DESTINATION_RULES, namespace)
            if (item.get("spec") or {}).get("host") == external_host
        ),
        None,
    )
    if dr is not None:
        dr_line = f"[OK] Destination Rule: '{item_name(dr)}' found with traffic policies"
    else:
        dr_line = (
            "[WARNING] Destination Rule: No specific traffic policies found (may use default policies)"
        )

    # Check 4: Authorization Policies, any ALLOW policy counts
    ap = next(
        (
            item
            for item in await backend.list_resources(AUTHORIZATION_POLICIES, namespace)
            if ((item.get("spec") or {}).get("action") or "ALLOW") == "ALLOW"
        ),
        None,
    )
    if ap is not None:
        ap_line = f"[OK] Authorization Policy: '{item_name(ap)}' found (ALLOW action)"
    else:
        ap_line = (
            "[WARNING] Authorization Policy: No explicit ALLOW policies found (may use default allow)"
        )

    result += f"{se_line}\n{vs_line}\n{dr_line}\n{ap_line}\n\n"

    if se is not None:
        result += (
            f"[RESULT] External dependency '{external_host}' is available for service '{service_name}'\n"
            "   The Service Entry exists, which means the external service is registered in the mesh.\n"
        )
        if vs is not None or dr is not None:
            result += "   Additional routing and traffic policies are configured.\n"
    else:
        result += (
            f"[RESULT] External dependency '{external_host}' is NOT available for service "
            f"'{service_name}'\n"
            f"   You need to create a Service Entry for '{external_host}' before the service can "
            "access it.\n"
            f"   Consider creating it in namespace '{namespace}' or globally in "
            f"'{ISTIO_SYSTEM_NAMESPACE}'.\n"
        )
    return result


async def handle_check_external_dependency(backend: Istio, args: dict) -> str:
    service_name = require_string(args, "service-name")
    external_host = require_string(args, "external-host")
    namespace = namespace_arg(args)
    return await check_external_dependency(backend, service_name, external_host, namespace)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

def _load_balancer_address(svc: V1Service) -> str:
    ingress = (svc.status.load_balancer.ingress if svc.status and svc.status.load_balancer else None) or []
    if ingress:
        return ingress[0].ip or ingress[0].hostname or "<pending>"
    return "<pending>"


def _render_services(services: list[V1Service], namespace: str) -> str:
    out = f"Services in namespace '{namespace}':\n\n"
    out += f"Found {len(services)} services:\n\n"
    if not services:
        return out + "No services found in this namespace.\n"

    groups: dict[str, list[str]] = {"ClusterIP": [], "NodePort": [], "LoadBalancer": [], "Headless": []}
    for svc in services:
        line = f"{svc.metadata.name:<30}"
        svc_type = svc.spec.type
        cluster_ip = svc.spec.cluster_ip
        if svc_type == "NodePort":
            groups["NodePort"].append(f"{line} (NodePort: {cluster_ip})")
        elif svc_type == "LoadBalancer":
            groups["LoadBalancer"].append(f"{line} (LoadBalancer: {_load_balancer_address(svc)})")
        elif cluster_ip == "None":
            groups["Headless"].append(f"{line} (Headless)")
        else:
            groups["ClusterIP"].append(f"{line} (ClusterIP: {cluster_ip})")

    for group, lines in groups.items():
        if not lines:
            continue
        out += f" {group} Services:\n"
        out += "".join(f"   {line}\n" for line in lines)
        out += "\n"

    out += "Next step: Use 'get-pods-by-service' to find pods backing any of these services\n"
    out += f"   Example: get-pods-by-service --namespace {namespace} --service <service-name>\n"
    return out


async def handle_get_services(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    return _render_services(await backend.list_services(namespace), namespace)


# ---------------------------------------------------------------------------
# Pods by service
# ---------------------------------------------------------------------------

def has_istio_sidecar(pod: V1Pod) -> bool:
    """True if the pod runs istio-proxy, as a container or a native sidecar."""
    containers = list(pod.spec.containers or []) + list(pod.spec.init_containers or [])
    return any(c.name == ISTIO_PROXY_CONTAINER for c in containers)


def is_pod_ready(pod: V1Pod) -> bool:
    for condition in (pod.status.conditions if pod.status else None) or []:
        if condition.type == "Ready":
            return condition.status == "True"
    return False


async def _render_endpoints(backend: Istio, namespace: str, service_name: str) -> str:
    try:
        endpoints = await backend.read_endpoints(namespace, service_name)
    except ResourceListError as e:
        logger.debug("No endpoints for service %s: %s", service_name, e)
        return ""
    if not endpoints.subsets:
        return ""
    out = " Configured endpoints:\n"
    for subset in endpoints.subsets:
        for addr in subset.addresses or []:
            if addr.target_ref is not None and addr.target_ref.kind == "Pod":
                out += f"   - Pod: {addr.target_ref.name} (IP: {addr.ip})\n"
            else:
                out += f"   - IP: {addr.ip}\n"
    return out


def _render_running_pod(pod: V1Pod) -> str:
    sidecar = has_istio_sidecar(pod)
    ready_icon = "✅" if is_pod_ready(pod) else "❌"
    mesh_icon = "🕸️" if sidecar else "🔗"
    app_containers = [c.name for c in pod.spec.containers or [] if c.name != ISTIO_PROXY_CONTAINER]

    out = f"   {ready_icon} {mesh_icon} {pod.metadata.name}\n"
    out += f"      IP: {pod.status.pod_ip or '':<15} Node: {pod.spec.node_name or ''}\n"
    out += f"      Containers: {', '.join(app_containers)}\n"
    out += "      🕸️  Istio mesh: ENABLED\n" if sidecar else "      ⚠️  Istio mesh: NOT ENABLED\n"
    return out + "\n"


async def pods_by_service(backend: Istio, namespace: str, service_name: str) -> str:
    service = await backend.read_service(namespace, service_name)
    out = f"Pods backing service '{service_name}' in namespace '{namespace}':\n\n"

    selector = service.spec.selector if service.spec else None
    if not selector:
        out += f"  Service '{service_name}' has no selector - this is likely:\n"
        out += "   - A headless service with manual endpoints\n"
        out += "   - An external service (ExternalName type)\n"
        out += "   - A service with manually configured endpoints\n\n"
        return out + await _render_endpoints(backend, namespace, service_name)

    selector_str = label_selector(selector)
    pods = await backend.list_pods(namespace, selector_str, what=f"list pods for service {service_name}")
    running = [p for p in pods if p.status and p.status.phase == "Running"]
    not_running = [p for p in pods if not (p.status and p.status.phase == "Running")]

    out += f" Service selector: {selector_str}\n"
    out += (
        f" Total pods found: {len(pods)} ({len(running)} running, {len(not_running)} not running)\n\n"
    )

    if running:
        out += f" Running pods ({len(running)}) - Ready for proxy commands:\n"
        out += "".join(_render_running_pod(p) for p in running)

    if not_running:
        out += f"⏳ Non-running pods ({len(not_running)}):\n"
        for pod in not_running:
            phase = pod.status.phase if pod.status else "Unknown"
            out += f"   ❌ {pod.metadata.name} (Status: {phase})\n"
        out += "\n"

    if not running:
        out += "⚠️  No running pods found backing this service!\n"
        out += "💡 This could mean:\n"
        out += "   - The deployment is scaled to 0 replicas\n"
        out += "   - Pods are failing to start\n"
        out += "   - Label selector mismatch between service and pods\n\n"
        return out

    example = running[0].metadata.name
    out += "💡 Next steps - Use these pod names with proxy commands:\n"
    for tool in ("get-proxy-status", "get-proxy-clusters", "get-proxy-listeners", "get-proxy-routes"):
        out += f"   {tool} --namespace {namespace} --pod {example}\n"
    return out


async def handle_get_pods_by_service(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    service_name = require_string(
        args,
        "service",
        "service name is required - use 'get-services' first to discover available services",
    )
    return await pods_by_service(backend, namespace, service_name)


# ---------------------------------------------------------------------------
# Namespace discovery
# ---------------------------------------------------------------------------

def _recommendation(rank: int) -> str:
    if rank == 0:
        return "BEST - Most Istio-injected workloads"
    if rank < 3:
        return "Good - High Istio adoption"
    if rank < 5:
        return "Moderate - Some Istio usage"
    return "Low - Minimal Istio usage"


def rank_sidecar_namespaces(pods: list[V1Pod]) -> list[tuple[str, int]]:
    """Count running sidecar-injected pods per namespace, most injected first."""
    counts = Counter(
        pod.metadata.namespace
        for pod in pods
        if pod.status and pod.status.phase == "Running" and pod.spec.containers and has_istio_sidecar(pod)
    )
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


async def handle_discover_istio_namespaces(backend: Istio, _args: dict) -> str:
    ranked = rank_sidecar_namespaces(await backend.list_running_pods())
    if not ranked:
        return "No namespaces with Istio sidecars found"

    out = f"Found {len(ranked)} namespaces with Istio sidecars:\n\n"
    out += "Rank | Namespace | Sidecar Count | Recommendation\n"
    out += "-----|-----------|---------------|----------------\n"
    for rank, (namespace, count) in enumerate(ranked):
        out += f"{rank + 1:4d} | {namespace:<9} | {count:13d} | {_recommendation(rank)}\n"
    out += (
        "\n💡 **Recommendation**: Start with the top-ranked namespace for Istio operations as it "
        "likely contains the most Istio configuration and traffic."
    )
    return out


CONFIGURATION_HANDLERS = {
    "discover-istio-namespaces": handle_discover_istio_namespaces,
    "get-envoy-filters": handle_get_envoy_filters,
    "get-telemetry": handle_get_telemetry,
    "get-istio-config": handle_get_istio_config,
    "check-external-dependency-availability": handle_check_external_dependency,
    "get-services": handle_get_services,
    "get-pods-by-service": handle_get_pods_by_service,
}
