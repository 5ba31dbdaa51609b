"""
Networking tools (read-only).

Tools:
  get-virtual-services   — routing rules (hosts, gateways, route counts)
  get-destination-rules  — traffic policies per host
  get-gateways           — ingress/egress load balancer configuration
  get-service-entries    — external services registered in the mesh
"""

from __future__ import annotations

from mcp.types import Tool

from istio_mcp.formatters import format_labels, format_list, item_name, listing_header
from istio_mcp.istio import DESTINATION_RULES, GATEWAYS, SERVICE_ENTRIES, VIRTUAL_SERVICES, Istio
from istio_mcp.tools.params import input_schema, namespace_arg, read_only, string_param


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

NETWORKING_TOOLS: list[Tool] = [
    Tool(
        name="get-virtual-services",
        description=(
            "Get Istio Virtual Services configuration from any namespace. Virtual Services define "
            "routing rules for services in the Istio service mesh, including traffic splitting, "
            "fault injection, and retry policies. Use this to inspect traffic routing configuration "
            "across namespaces."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to query (defaults to 'default'). Istio services can span multiple namespaces."
            ),
        }),
        annotations=read_only("Istio: Virtual Services"),
    ),
    Tool(
        name="get-destination-rules",
        description=(
            "Get Istio Destination Rules from any namespace. Destination Rules define policies for "
            "traffic to services, including load balancing, connection pooling, and outlier "
            "detection. Essential for understanding service mesh traffic policies."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to query (defaults to 'default'). Check multiple namespaces for complete "
                "Istio configuration."
            ),
        }),
        annotations=read_only("Istio: Destination Rules"),
    ),
    Tool(
        name="get-gateways",
        description=(
            "Get Istio Gateways from any namespace. Gateways configure load balancers for incoming "
            "traffic to the service mesh. Use this to inspect ingress/egress configuration and "
            "external access patterns."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to query (defaults to 'default'). Gateway configurations may exist in "
                "ingress or dedicated namespaces."
            ),
        }),
        annotations=read_only("Istio: Gateways"),
    ),
    Tool(
        name="get-service-entries",
        description=(
            "Get Istio Service Entries from any namespace. Service Entries allow adding external "
            "services to the service mesh registry. Use this to inspect external service "
            "configurations and mesh expansion settings."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to query (defaults to 'default'). External service configurations may be "
                "centralized in specific namespaces."
            ),
        }),
        annotations=read_only("Istio: Service Entries"),
    ),
]


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def _render_virtual_services(items: list[dict], namespace: str) -> str:
    lines = [listing_header(VIRTUAL_SERVICES.label, len(items), namespace)]
    for vs in items:
        spec = vs.get("spec") or {}
        lines.append(f"- {item_name(vs)}")
        if spec.get("hosts") is not None:
            lines.append(f"  Hosts: {format_list(spec['hosts'])}")
        if spec.get("gateways") is not None:
            lines.append(f"  Gateways: {format_list(spec['gateways'])}")
        for key, label in (("http", "HTTP"), ("tcp", "TCP"), ("tls", "TLS")):
            if spec.get(key):
                lines.append(f"  {label} Routes: {len(spec[key])}")
        lines.append("")
    return "\n".join(lines) + "\n"


def _render_destination_rules(items: list[dict], namespace: str) -> str:
    lines = [listing_header(DESTINATION_RULES.label, len(items), namespace)]
    for dr in items:
        spec = dr.get("spec") or {}
        lines.append(f"- {item_name(dr)}")
        if spec.get("host"):
            lines.append(f"  Host: {spec['host']}")
    return "\n".join(lines) + "\n"


def _render_gateways(items: list[dict], namespace: str) -> str:
    lines = [listing_header(GATEWAYS.label, len(items), namespace)]
    for gw in items:
        spec = gw.get("spec") or {}
        lines.append(f"- {item_name(gw)}")
        if spec.get("selector") is not None:
            lines.append(f"  Selector: {format_labels(spec['selector'])}")
    return "\n".join(lines) + "\n"


def _render_service_entries(items: list[dict], namespace: str) -> str:
    lines = [listing_header(SERVICE_ENTRIES.label, len(items), namespace)]
    for se in items:
        spec = se.get("spec") or {}
        lines.append(f"- {item_name(se)}")
        if spec.get("hosts") is not None:
            lines.append(f"  Hosts: {format_list(spec['hosts'])}")
        if spec.get("location"):
            lines.append(f"  Location: {spec['location']}")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def handle_get_virtual_services(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    items = await backend.list_resources(VIRTUAL_SERVICES, namespace)
    return _render_virtual_services(items, namespace)


async def handle_get_destination_rules(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    items = await backend.list_resources(DESTINATION_RULES, namespace)
    return _render_destination_rules(items, namespace)


async def handle_get_gateways(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    items = await backend.list_resources(GATEWAYS, namespace)
    return _render_gateways(items, namespace)


async def handle_get_service_entries(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    items = await backend.list_resources(SERVICE_ENTRIES, namespace)
    return _render_service_entries(items, namespace)


NETWORKING_HANDLERS = {
    "get-virtual-services": handle_get_virtual_services,
    "get-destination-rules": handle_get_destination_rules,
    "get-gateways": handle_get_gateways,
    "get-service-entries": handle_get_service_entries,
}
