"""
Session layer for ui-test.

Connections to the browser-automation backend: an MCP SDK stdio connection to
a Playwright MCP server and the session client that translates test steps into
tool calls.
"""

from .client import SessionClient, PlaywrightSessionClient, parse_tool_value, tool_text
from .connection import McpStdioConnection, ConnectionStatus
from .models import Session

__all__ = [
    "SessionClient",
    "PlaywrightSessionClient",
    "parse_tool_value",
    "tool_text",
    "Session",
    "McpStdioConnection",
    "ConnectionStatus",
]
