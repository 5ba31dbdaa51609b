"""
Istio MCP server.

Exposes read-only Istio tools over MCP in four categories:
  • Networking    — virtual services, destination rules, gateways, service entries
  • Security      — authorization policies, peer authentications
  • Configuration — envoy filters, telemetry, config summary, services and pods
  • Proxy config  — Envoy clusters, listeners, routes, endpoints, status, analyze

Transports: stdio (default), SSE (--sse-port, /sse + /messages/) and
streamable HTTP (--http-port, /mcp).

Environment variables (each mirrors a command-line option):
  ISTIO_MCP_KUBECONFIG   — kubeconfig path (default: KUBECONFIG, ~/.kube/config, in-cluster)
  ISTIO_MCP_PROFILE      — tool profile (default: full)
  ISTIO_MCP_LOG_LEVEL    — 0 warnings only, 1 info, 2+ debug
  ISTIO_MCP_SSE_PORT     — serve SSE on this port
  ISTIO_MCP_HTTP_PORT    — serve streamable HTTP on this port
  ISTIO_MCP_HOST         — bind address for SSE/HTTP (default: 0.0.0.0)
  ISTIO_MCP_ISTIOCTL     — istioctl binary (default: istioctl on PATH)

Run with:
    istio-mcp-server
    python -m istio_mcp.server
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import sys
from collections import Counter
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable

import click
import uvicorn
from mcp.server import Server
from mcp.server.sse import SseServerTransport
from mcp.server.stdio import stdio_server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from mcp.types import CallToolResult, GetPromptResult, Prompt, Tool
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Mount, Route

from istio_mcp.errors import BackendUnavailable, IstioError, ToolInputError
from istio_mcp.formatters import error_result, text_result
from istio_mcp.istio import LIST_TIMEOUT, Istio
from istio_mcp.profiles import PROFILE_NAMES, Catalog, FullProfile, Handler, Profile, profile_from_string
from istio_mcp.prompts import ALL_PROMPTS, get_prompt
from istio_mcp.version import BINARY_NAME, VERSION
from istio_mcp.watcher import watch_kubeconfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class Configuration:
    profile: Profile
    kubeconfig: str | None = None
    istioctl: str = "istioctl"
    request_timeout: float = LIST_TIMEOUT


BackendFactory = Callable[[], Awaitable[Istio]]


@dataclass(frozen=True)
class _Snapshot:
    backend: Istio
    catalog: Catalog


def _default_factory(configuration: Configuration) -> BackendFactory:
    return partial(
        Istio.from_kubeconfig,
        configuration.kubeconfig,
        istioctl=configuration.istioctl,
        request_timeout=configuration.request_timeout,
    )


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class IstioMCPServer:
    """Dispatcher plus the live (backend, catalog) snapshot.

    The snapshot is replaced as a whole by ``reload()``; every invocation reads
    it once, so an in-flight call keeps the handle it started with. A replaced
    handle is closed once its last in-flight call returns.
    """

    def __init__(
        self,
        configuration: Configuration,
        backend: Istio,
        backend_factory: BackendFactory | None = None,
    ) -> None:
        self.configuration = configuration
        self._backend_factory = backend_factory or _default_factory(configuration)
        self._reload_lock = asyncio.Lock()
        self._snapshot = _Snapshot(backend, configuration.profile.get_catalog())
        self._in_flight: Counter[Istio] = Counter()
        self._retired: set[Istio] = set()
        self.server = Server(BINARY_NAME, version=VERSION)
        self._register_handlers()

    @classmethod
    async def create(
        cls, configuration: Configuration, backend_factory: BackendFactory | None = None
    ) -> IstioMCPServer:
        """Build the initial handle on the running loop; raises BackendUnavailable."""
        factory = backend_factory or _default_factory(configuration)
        return cls(configuration, await factory(), factory)

    @property
    def backend(self) -> Istio:
        return self._snapshot.backend

    @property
    def catalog(self) -> Catalog:
        return self._snapshot.catalog

    # -- dispatch -----------------------------------------------------------

    async def invoke(self, name: str, arguments: dict | None) -> CallToolResult:
        snapshot = self._snapshot
        operation = snapshot.catalog.get(name)
        if operation is None:
            return error_result(f"operation {name} not found")

        backend = snapshot.backend
        self._in_flight[backend] += 1
        try:
            return await self._dispatch(name, operation.handler, backend, arguments or {})
        finally:
            self._in_flight[backend] -= 1
            if not self._in_flight[backend]:
                del self._in_flight[backend]
                if backend in self._retired:
                    self._retired.discard(backend)
                    await backend.close()

    async def _dispatch(self, name: str, handler: Handler, backend: Istio, arguments: dict) -> CallToolResult:
        try:
            content = await handler(backend, arguments)
        except ToolInputError as exc:
            return error_result(str(exc))
        except IstioError as exc:
            logger.info("%s failed: %s", name, exc)
            return error_result(str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error in %s", name)
            return error_result(f"Unexpected error: {exc}")
        return text_result(content)

    # -- reload -------------------------------------------------------------

    async def reload(self) -> bool:
        """Rebuild the backend handle and swap it in; keeps the old one on failure."""
        async with self._reload_lock:
            try:
                backend = await self._backend_factory()
            except BackendUnavailable as exc:
                logger.error("Failed to reload Istio client, keeping the current one: %s", exc)
                return False

            old = self._snapshot.backend
            self._snapshot = _Snapshot(backend, self.configuration.profile.get_catalog())
            old.stop_watching()
            self._watch(backend)
            await self._retire(old)
            logger.info("Reloaded Istio client after kubeconfig change")
            return True

    async def _retire(self, backend: Istio) -> None:
        if self._in_flight[backend]:
            self._retired.add(backend)
        else:
            await backend.close()

    def _watch(self, backend: Istio) -> None:
        watch = watch_kubeconfig(backend.source.files, self.reload)
        if watch is not None:
            backend.close_watch = watch.close

    def start_watching(self) -> None:
        """Watch the current handle's kubeconfig files. Needs a running loop."""
        self._watch(self._snapshot.backend)

    async def close(self) -> None:
        """Close every handle still held, the live one included. Runs on the loop."""
        retired, self._retired = self._retired, set()
        for backend in (*retired, self._snapshot.backend):
            await backend.close()

    # -- MCP wiring ---------------------------------------------------------

    def _register_handlers(self) -> None:
        server = self.server

        @server.list_tools()
        async def list_tools() -> list[Tool]:
            return self.catalog.tools()

        # handlers report missing parameters as "<param> is required"
        @server.call_tool(validate_input=False)
        async def call_tool(name: str, arguments: dict) -> CallToolResult:
            return await self.invoke(name, arguments)

        @server.list_prompts()
        async def list_prompts() -> list[Prompt]:
            return ALL_PROMPTS

        @server.get_prompt()
        async def handle_get_prompt(name: str, arguments: dict[str, str] | None) -> GetPromptResult:
            return get_prompt(name, arguments)

    # -- transports ---------------------------------------------------------

    async def serve_stdio(self) -> None:
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )

    def sse_app(self) -> Starlette:
        sse = SseServerTransport("/messages/")

        async def handle_sse(request: Request) -> Response:
            async with sse.connect_sse(request.scope, request.receive, request._send) as (
                read_stream,
                write_stream,
            ):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
            return Response()

        return Starlette(
            routes=[
                Route("/sse", endpoint=handle_sse, methods=["GET"]),
                Mount("/messages/", app=sse.handle_post_message),
            ]
        )

    def http_app(self) -> Starlette:
        session_manager = StreamableHTTPSessionManager(
            app=self.server,
            event_store=None,
            json_response=False,
            stateless=True,
        )

        @contextlib.asynccontextmanager
        async def lifespan(_app: Starlette):
            async with session_manager.run():
                yield

        return Starlette(
            routes=[Mount("/mcp", app=session_manager.handle_request)],
            lifespan=lifespan,
        )


# ---------------------------------------------------------------------------
# Logging / preflight
# ---------------------------------------------------------------------------

def init_logging(level: int) -> None:
    """Map the 0-9 verbosity scale onto stdlib levels; stdout stays clean for stdio."""
    if level <= 0:
        log_level = logging.WARNING
    elif level == 1:
        log_level = logging.INFO
    else:
        log_level = logging.DEBUG
    logging.basicConfig(
        level=log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _preflight(istioctl: str) -> None:
    """Warn when istioctl is missing; resource tools still work without it."""
    if shutil.which(istioctl) is None:
        logger.warning(
            "%s not found on PATH. Proxy tools will fail until it is installed.", istioctl
        )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def _serve_http(app: Starlette, host: str, port: int) -> None:
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    await uvicorn.Server(config).serve()


async def _run(configuration: Configuration, sse_port: int | None, http_port: int | None, host: str) -> None:
    mcp_server = await IstioMCPServer.create(configuration)
    print(
        f"istio MCP server starting — {len(mcp_server.catalog)} tools registered "
        f"(profile {configuration.profile.name})",
        file=sys.stderr,
    )
    try:
        mcp_server.start_watching()
        servers = []
        if sse_port:
            print(f"SSE server starting on {host}:{sse_port} and path /sse", file=sys.stderr)
            servers.append(_serve_http(mcp_server.sse_app(), host, sse_port))
        if http_port:
            print(f"Streaming HTTP server starting on {host}:{http_port} and path /mcp", file=sys.stderr)
            servers.append(_serve_http(mcp_server.http_app(), host, http_port))

        if servers:
            await asyncio.gather(*servers)
        else:
            await mcp_server.serve_stdio()
    finally:
        await mcp_server.close()


@click.command(name=BINARY_NAME, context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--version", "-v", "show_version", is_flag=True, help="Print version information and quit")
@click.option(
    "--log-level",
    type=click.IntRange(0, 9),
    default=0,
    envvar="ISTIO_MCP_LOG_LEVEL",
    show_default=True,
    help="Set the log level (from 0 to 9)",
)
@click.option("--sse-port", type=int, default=None, envvar="ISTIO_MCP_SSE_PORT", help="Start a SSE server on the specified port")
@click.option(
    "--http-port",
    type=int,
    default=None,
    envvar="ISTIO_MCP_HTTP_PORT",
    help="Start a streamable HTTP server on the specified port",
)
@click.option("--host", default="0.0.0.0", envvar="ISTIO_MCP_HOST", show_default=True, help="Bind address for the SSE and HTTP servers")
@click.option(
    "--kubeconfig",
    default=None,
    envvar="ISTIO_MCP_KUBECONFIG",
    help="Path to the kubeconfig file to use for authentication",
)
@click.option(
    "--profile",
    "profile_name",
    default=FullProfile.name,
    envvar="ISTIO_MCP_PROFILE",
    show_default=True,
    help=f"MCP profile to use (one of: {', '.join(PROFILE_NAMES)})",
)
@click.option("--istioctl", default="istioctl", envvar="ISTIO_MCP_ISTIOCTL", show_default=True, help="istioctl binary to run")
def main(
    show_version: bool,
    log_level: int,
    sse_port: int | None,
    http_port: int | None,
    host: str,
    kubeconfig: str | None,
    profile_name: str,
    istioctl: str,
) -> None:
    """Istio Model Context Protocol (MCP) server.

    Read-only tools for Istio Virtual Services, Destination Rules, Gateways,
    security policies and Envoy proxy configuration. Serves stdio unless
    --sse-port or --http-port is given.
    """
    if show_version:
        click.echo(VERSION)
        return

    init_logging(log_level)
    profile = profile_from_string(profile_name)
    if profile is None:
        click.echo(f"Invalid profile name: {profile_name}, valid names are: {', '.join(PROFILE_NAMES)}")
        sys.exit(1)

    logger.info("Starting %s (profile %s)", BINARY_NAME, profile.name)
    _preflight(istioctl)
    configuration = Configuration(profile=profile, kubeconfig=kubeconfig, istioctl=istioctl)
    try:
        asyncio.run(_run(configuration, sse_port, http_port, host))
    except BackendUnavailable as exc:
        click.echo(f"Failed to initialize MCP server: {exc}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
