"""Best of JS MCP Server - query the open-source JavaScript landscape."""

from importlib.metadata import version

from bestofjs_mcp.__main__ import _cli as main
from bestofjs_mcp.server import mcp

__version__ = version("bestofjs-mcp")
__all__ = ["mcp", "main", "__version__"]
