"""
MCP prompt templates for Istio troubleshooting workflows.

Each prompt walks the model through the service → pod → proxy workflow,
referencing the exact tool names this server exposes.
"""

from __future__ import annotations

from typing import Callable

from mcp.types import (
    GetPromptResult,
    Prompt,
    PromptArgument,
    PromptMessage,
    TextContent,
)

from istio_mcp.tools.params import DEFAULT_NAMESPACE

# ---------------------------------------------------------------------------
# Prompt definitions
# ---------------------------------------------------------------------------

ALL_PROMPTS: list[Prompt] = [
    Prompt(
        name="debug-service-connectivity",
        description="Trace a service from its Istio routing rules down to the Envoy configuration of the pods behind it.",
        arguments=[
            PromptArgument(name="service", description="Name of the Kubernetes service", required=True),
            PromptArgument(name="namespace", description="Namespace of the service (defaults to 'default')", required=False),
        ],
    ),
    Prompt(
        name="mesh-config-review",
        description="Review the Istio configuration of a namespace: resource counts, security posture and istioctl analysis.",
        arguments=[
            PromptArgument(name="namespace", description="Namespace to review (defaults to 'default')", required=False),
        ],
    ),
    Prompt(
        name="check-external-access",
        description="Verify that a service can reach an external host through the mesh and explain what is missing if not.",
        arguments=[
            PromptArgument(name="service-name", description="Service that needs external access", required=True),
            PromptArgument(name="external-host", description="External hostname, e.g. 'api.example.com'", required=True),
            PromptArgument(name="namespace", description="Namespace of the service (defaults to 'default')", required=False),
        ],
    ),
]

# ---------------------------------------------------------------------------
# Prompt message builders
# ---------------------------------------------------------------------------

_PROMPT_BUILDERS: dict[str, Callable[[dict[str, str]], GetPromptResult]] = {}


def _builder(name: str):
    """Decorator to register a prompt message builder."""
    def decorator(func):
        _PROMPT_BUILDERS[name] = func
        return func
    return decorator


def _required(args: dict[str, str], name: str) -> str:
    value = args.get(name)
    if not value:
        raise ValueError(f"{name} is required")
    return value


def _user_message(description: str, text: str) -> GetPromptResult:
    return GetPromptResult(
        description=description,
        messages=[PromptMessage(role="user", content=TextContent(type="text", text=text))],
    )


@_builder("debug-service-connectivity")
def _debug_service_connectivity(args: dict[str, str]) -> GetPromptResult:
    service = _required(args, "service")
    namespace = args.get("namespace") or DEFAULT_NAMESPACE
    return _user_message(
        f"Debug connectivity for service {service} in namespace {namespace}",
        f"""\
Debug connectivity for the service "{service}" in namespace "{namespace}" by following these steps in order:

1. **Find the backing pods** — Use get-pods-by-service with namespace="{namespace}", service="{service}". Note which pods are running, ready, and have the Istio sidecar. A pod without the sidecar is outside the mesh and none of the proxy tools will work for it.

2. **Check the routing rules** — Use get-virtual-services and get-destination-rules with namespace="{namespace}". Look for rules whose hosts match "{service}" and note traffic splits, subsets and timeouts.

3. **Check proxy sync** — Use get-proxy-status with namespace="{namespace}" and the pod name from step 1. A STALE or NOT SENT status means the proxy has not received the latest configuration.

4. **Inspect the proxy** — For the same pod, use get-proxy-clusters to confirm the upstream clusters exist, get-proxy-routes to confirm the Virtual Service rules reached the proxy, and get-proxy-endpoints to check endpoint health.

5. **Check security policies** — Use get-authorization-policies and get-peer-authentications with namespace="{namespace}". A DENY policy or a STRICT mTLS mode towards a workload without a sidecar will block traffic.

6. **Run the analyzer** — Use get-istio-analyze with namespace="{namespace}" and include any warnings that mention "{service}".

Produce a diagnosis summary with:
- Root cause (or most likely cause)
- Evidence from the tool output
- Recommended configuration change""",
    )


@_builder("mesh-config-review")
def _mesh_config_review(args: dict[str, str]) -> GetPromptResult:
    namespace = args.get("namespace") or DEFAULT_NAMESPACE
    return _user_message(
        f"Istio configuration review for namespace {namespace}",
        f"""\
Review the Istio configuration of namespace "{namespace}" by following these steps:

1. **Locate the mesh** — Use discover-istio-namespaces to see where sidecars are injected. If "{namespace}" is not listed, say so: its workloads are outside the mesh.

2. **Summarize resources** — Use get-istio-config with namespace="{namespace}" to get per-kind counts.

3. **Drill into each kind that is present**:
   - Traffic: get-virtual-services, get-destination-rules, get-gateways, get-service-entries
   - Security: get-authorization-policies, get-peer-authentications
   - Advanced: get-envoy-filters, get-telemetry

4. **Run the analyzer** — Use get-istio-analyze with namespace="{namespace}".

Produce a structured report with these sections:
- **Overview**: resource counts and sidecar coverage
- **Traffic Management**: notable routing rules and policies
- **Security Posture**: mTLS mode and authorization coverage
- **Issues Found**: analyzer findings and anything inconsistent
- **Recommendations**: prioritized list of changes""",
    )


@_builder("check-external-access")
def _check_external_access(args: dict[str, str]) -> GetPromptResult:
    service_name = _required(args, "service-name")
    external_host = _required(args, "external-host")
    namespace = args.get("namespace") or DEFAULT_NAMESPACE
    return _user_message(
        f"Check access from {service_name} to {external_host}",
        f"""\
Check whether the service "{service_name}" in namespace "{namespace}" can reach "{external_host}":

1. **Run the dependency check** — Use check-external-dependency-availability with service-name="{service_name}", external-host="{external_host}", namespace="{namespace}".

2. **Inspect the Service Entries** — Use get-service-entries with namespace="{namespace}", then with namespace="istio-system" for mesh-wide entries. Confirm "{external_host}" is listed and note its location.

3. **Check egress from the proxy** — Use get-pods-by-service with namespace="{namespace}", service="{service_name}" to find a running pod, then get-proxy-clusters for that pod and look for an outbound cluster for "{external_host}".

If the host is not reachable, explain which resource is missing and what it should contain.""",
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_prompt(name: str, args: dict[str, str] | None) -> GetPromptResult:
    """Look up a prompt by name and return the rendered GetPromptResult."""
    builder = _PROMPT_BUILDERS.get(name)
    if builder is None:
        raise ValueError(f"Unknown prompt: {name}")
    return builder(args or {})
