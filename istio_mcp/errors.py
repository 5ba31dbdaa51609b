"""
Exception hierarchy.

Every failure a tool handler can hit is an ``IstioError``; the dispatcher in
``server.py`` turns it into an ``isError=True`` result so callers always get a
result envelope instead of a transport-level fault.
"""

from __future__ import annotations


class IstioError(Exception):
    """Base class for errors surfaced to MCP callers as error results."""


class ToolInputError(IstioError):
    """Caller error: a required argument is missing or has the wrong type."""


class BackendUnavailable(IstioError):
    """The Kubernetes or istioctl client could not be constructed."""


class ResourceListError(IstioError):
    """A Kubernetes API read failed (network error, 4xx/5xx, timeout)."""


class IstioctlError(IstioError):
    """Raised when istioctl exits non-zero, times out or cannot be started."""
