"""Shared output formatting helpers and the result envelope."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from mcp.types import CallToolResult, TextContent


# ---------------------------------------------------------------------------
# Result envelope
# ---------------------------------------------------------------------------

def text_result(content: str) -> CallToolResult:
    """Wrap a handler's formatted output as a successful tool result."""
    return CallToolResult(content=[TextContent(type="text", text=content)])


def error_result(message: str) -> CallToolResult:
    """Wrap an error message as a tool result with ``isError=True``."""
    return CallToolResult(
        content=[TextContent(type="text", text=message)],
        isError=True,
    )


# ---------------------------------------------------------------------------
# Listing helpers
# ---------------------------------------------------------------------------

def listing_header(label: str, count: int, namespace: str) -> str:
    return f"Found {count} {label} in namespace '{namespace}':"


def format_list(values: Iterable[Any]) -> str:
    """Render a list the way it appears in listing output: ``[a, b]``."""
    return "[" + ", ".join(str(v) for v in values) + "]"


def format_labels(labels: Mapping[str, Any] | None) -> str:
    """Render a label map as ``k=v`` pairs sorted by key."""
    if not labels:
        return ""
    return ", ".join(f"{k}={v}" for k, v in sorted(labels.items()))


def label_selector(labels: Mapping[str, Any]) -> str:
    """Build a Kubernetes label selector string (``k=v,k2=v2``)."""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def item_name(obj: Mapping[str, Any]) -> str:
    """Name of an unstructured (custom object) resource."""
    return (obj.get("metadata") or {}).get("name", "<unnamed>")
