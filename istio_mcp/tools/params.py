"""
Typed argument extraction and input-schema helpers shared by every tool module.

Arguments arrive as an untyped dict. Handlers never index it directly; they go
through ``require_string`` / ``optional_string`` so a missing or mistyped value
becomes a ``ToolInputError`` before any backend call is made.
"""

from __future__ import annotations

from typing import Any

from mcp.types import ToolAnnotations

from istio_mcp.errors import ToolInputError

DEFAULT_NAMESPACE = "default"


# ---------------------------------------------------------------------------
# Argument extraction
# ---------------------------------------------------------------------------

def _string_or_none(args: dict, name: str) -> str | None:
    value = args.get(name)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ToolInputError(f"{name} must be a string")
    return value


def require_string(args: dict, name: str, message: str | None = None) -> str:
    value = _string_or_none(args, name)
    if value is None:
        raise ToolInputError(message or f"{name} is required")
    return value


def optional_string(args: dict, name: str, default: str = "") -> str:
    value = _string_or_none(args, name)
    return default if value is None else value


def namespace_arg(args: dict, default: str = DEFAULT_NAMESPACE) -> str:
    return optional_string(args, "namespace", default)


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------

def string_param(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


def input_schema(properties: dict[str, Any] | None = None, required: list[str] | None = None) -> dict:
    schema: dict[str, Any] = {"type": "object", "properties": properties or {}}
    if required:
        schema["required"] = required
    return schema


def read_only(title: str) -> ToolAnnotations:
    """Every tool in this server is read-only and non-destructive."""
    return ToolAnnotations(title=title, readOnlyHint=True, destructiveHint=False)
