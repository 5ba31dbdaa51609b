"""
Operation catalog and profiles.

A profile decides which operations the server exposes. Every catalog is built
from the category groups in a fixed order (networking, security,
configuration, proxy-config) and is rebuilt, never mutated, on reload.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Iterator

from mcp.types import Tool

from istio_mcp.tools.configuration import CONFIGURATION_HANDLERS, CONFIGURATION_TOOLS
from istio_mcp.tools.networking import NETWORKING_HANDLERS, NETWORKING_TOOLS
from istio_mcp.tools.proxy_config import PROXY_CONFIG_HANDLERS, PROXY_CONFIG_TOOLS
from istio_mcp.tools.security import SECURITY_HANDLERS, SECURITY_TOOLS

Handler = Callable[..., Awaitable[str]]


@dataclass(frozen=True)
class Operation:
    """A tool descriptor paired with the handler that serves it."""

    tool: Tool
    handler: Handler
    category: str

    @property
    def name(self) -> str:
        return self.tool.name


class Catalog:
    """Ordered, de-duplicated set of operations with lookup by exact name."""

    def __init__(self, operations: Iterable[Operation]) -> None:
        self._operations = tuple(operations)
        self._by_name: dict[str, Operation] = {}
        for op in self._operations:
            if op.name in self._by_name:
                raise ValueError(f"duplicate operation name: {op.name}")
            self._by_name[op.name] = op

    def get(self, name: str) -> Operation | None:
        return self._by_name.get(name)

    def tools(self) -> list[Tool]:
        return [op.tool for op in self._operations]

    def names(self) -> list[str]:
        return [op.name for op in self._operations]

    def by_category(self, category: str) -> list[Operation]:
        return [op for op in self._operations if op.category == category]

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name


def _group(category: str, tools: list[Tool], handlers: dict[str, Handler]) -> list[Operation]:
    return [Operation(tool=t, handler=handlers[t.name], category=category) for t in tools]


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

class Profile(ABC):
    name: str
    description: str

    @abstractmethod
    def get_operations(self) -> tuple[Operation, ...]:
        ...

    def get_catalog(self) -> Catalog:
        return Catalog(self.get_operations())


class FullProfile(Profile):
    name = "full"
    description = (
        "Complete profile with all Istio service mesh tools for networking, security, "
        "configuration, and proxy debugging across multiple namespaces"
    )

    def get_operations(self) -> tuple[Operation, ...]:
        return (
            *_group("networking", NETWORKING_TOOLS, NETWORKING_HANDLERS),
            *_group("security", SECURITY_TOOLS, SECURITY_HANDLERS),
            *_group("configuration", CONFIGURATION_TOOLS, CONFIGURATION_HANDLERS),
            *_group("proxy-config", PROXY_CONFIG_TOOLS, PROXY_CONFIG_HANDLERS),
        )


PROFILES: list[Profile] = [FullProfile()]
PROFILE_NAMES: list[str] = [p.name for p in PROFILES]


def profile_from_string(name: str) -> Profile | None:
    for profile in PROFILES:
        if profile.name == name:
            return profile
    return None
