"""Interfold MCP server — exposes outline and intersection operations as tools for AI agents."""

from interfold.mcp.server import mcp, run_server

__all__ = ["mcp", "run_server"]
