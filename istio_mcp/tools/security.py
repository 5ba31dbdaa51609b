"""
Security tools (read-only).

Tools:
  get-authorization-policies — access control policies (selector, action)
  get-peer-authentications   — mutual TLS settings (selector, mTLS mode)
"""

from __future__ import annotations

from mcp.types import Tool

from istio_mcp.formatters import format_labels, item_name, listing_header
from istio_mcp.istio import AUTHORIZATION_POLICIES, PEER_AUTHENTICATIONS, Istio
from istio_mcp.tools.params import input_schema, namespace_arg, read_only, string_param


SECURITY_TOOLS: list[Tool] = [
    Tool(
        name="get-authorization-policies",
        description=(
            "Get Istio Authorization Policies from any namespace. Authorization Policies control "
            "access to services in the Istio service mesh, defining who can access what resources. "
            "Use this to inspect security policies and access control configurations across "
            "namespaces."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to query (defaults to 'default'). Security policies may be defined in "
                "multiple namespaces for different service boundaries."
            ),
        }),
        annotations=read_only("Istio: Authorization Policies"),
    ),
    Tool(
        name="get-peer-authentications",
        description=(
            "Get Istio Peer Authentications from any namespace. Peer Authentication policies define "
            "mutual TLS settings and authentication requirements for service-to-service "
            "communication. Use this to inspect mTLS configuration and security posture."
        ),
        inputSchema=input_schema({
            "namespace": string_param(
                "Namespace to query (defaults to 'default'). Authentication policies may be "
                "namespace-specific or inherited from mesh-wide settings."
            ),
        }),
        annotations=read_only("Istio: Peer Authentications"),
    ),
]


def _match_labels(spec: dict) -> dict | None:
    return (spec.get("selector") or {}).get("matchLabels")


def _render_authorization_policies(items: list[dict], namespace: str) -> str:
    lines = [listing_header(AUTHORIZATION_POLICIES.label, len(items), namespace)]
    for ap in items:
        spec = ap.get("spec") or {}
        lines.append(f"- {item_name(ap)}")
        labels = _match_labels(spec)
        if labels is not None:
            lines.append(f"  Selector: {format_labels(labels)}")
        # ALLOW is the API default when action is omitted
        lines.append(f"  Action: {spec.get('action') or 'ALLOW'}")
    return "\n".join(lines) + "\n"


def _render_peer_authentications(items: list[dict], namespace: str) -> str:
    lines = [listing_header(PEER_AUTHENTICATIONS.label, len(items), namespace)]
    for pa in items:
        spec = pa.get("spec") or {}
        lines.append(f"- {item_name(pa)}")
        labels = _match_labels(spec)
        if labels is not None:
            lines.append(f"  Selector: {format_labels(labels)}")
        if spec.get("mtls") is not None:
            lines.append(f"  mTLS Mode: {(spec['mtls'] or {}).get('mode') or 'UNSET'}")
    return "\n".join(lines) + "\n"


async def handle_get_authorization_policies(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    items = await backend.list_resources(AUTHORIZATION_POLICIES, namespace)
    return _render_authorization_policies(items, namespace)


async def handle_get_peer_authentications(backend: Istio, args: dict) -> str:
    namespace = namespace_arg(args)
    items = await backend.list_resources(PEER_AUTHENTICATIONS, namespace)
    return _render_peer_authentications(items, namespace)


SECURITY_HANDLERS = {
    "get-authorization-policies": handle_get_authorization_policies,
    "get-peer-authentications": handle_get_peer_authentications,
}
