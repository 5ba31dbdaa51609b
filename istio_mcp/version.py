"""Binary name and version reported to MCP clients and by ``--version``."""

BINARY_NAME = "istio-mcp-server"
VERSION = "0.1.0"
