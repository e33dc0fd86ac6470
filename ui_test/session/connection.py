"""
Connection to an MCP server running as a child process.

Built on the MCP SDK's stdio client. The SDK's context managers must be
entered and exited by the same task, so each connection runs them inside one
owner task that lives until ``close`` is called.
"""

import asyncio
import logging
import tempfile
from enum import Enum
from typing import Any, Dict, List, Optional

import anyio
from mcp import ClientSession, StdioServerParameters
from mcp import types as mcp_types
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from ..core.exceptions import BackendConnectionError, ProtocolError

STDERR_TAIL_LINES = 20


class ConnectionStatus(Enum):
    """Connection status enumeration."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


class McpStdioConnection:
    """
    One MCP client session over one server process.

    A connection is never shared between sessions; each session spawns its
    own server.
    """

    def __init__(
        self,
        argv: List[str],
        env: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if not argv:
            raise ValueError("Backend command cannot be empty")
        self.argv = list(argv)
        self.env = env or {}
        self.logger = logger or logging.getLogger(__name__)
        self.status = ConnectionStatus.DISCONNECTED
        self.server_info: Dict[str, Any] = {}

        self._session: Optional[ClientSession] = None
        self._owner: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._stop: Optional[asyncio.Event] = None
        self._errlog = None

    @property
    def command(self) -> str:
        return " ".join(self.argv)

    @property
    def is_connected(self) -> bool:
        return (
            self.status == ConnectionStatus.CONNECTED
            and self._owner is not None
            and not self._owner.done()
        )

    @property
    def server_parameters(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.argv[0],
            args=self.argv[1:],
            env=self.env or None,
        )

    def stderr_tail(self) -> str:
        """Last lines the backend wrote to stderr, for error messages."""
        if self._errlog is None or self._errlog.closed:
            return ""
        try:
            self._errlog.seek(0)
            lines = [line.rstrip() for line in self._errlog.read().splitlines()]
        except (OSError, ValueError):
            return ""
        return "\n".join(line for line in lines[-STDERR_TAIL_LINES:] if line)

    async def connect(self) -> Dict[str, Any]:
        """
        Spawn the server and complete the MCP handshake.

        Returns:
            The server's ``serverInfo``

        Raises:
            BackendConnectionError: If the server process cannot be started
            ProtocolError: If the server rejects the handshake or exits
        """
        if self._owner is not None:
            raise ProtocolError("connection was already started", method="initialize")

        self.status = ConnectionStatus.CONNECTING
        self.logger.debug(f"Starting MCP backend: {self.command}")
        self._ready = asyncio.get_running_loop().create_future()
        self._stop = asyncio.Event()
        self._errlog = tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace")
        self._owner = asyncio.ensure_future(self._serve())

        return await self._ready

    async def _serve(self) -> None:
        try:
            async with stdio_client(self.server_parameters, errlog=self._errlog) as (read, write):
                async with ClientSession(read, write) as session:
                    result = await session.initialize()
                    self._session = session
                    self.server_info = result.serverInfo.model_dump()
                    self.status = ConnectionStatus.CONNECTED
                    if not self._ready.done():
                        self._ready.set_result(self.server_info)
                    await self._stop.wait()
        except Exception as e:
            self.status = ConnectionStatus.FAILED
            error = self._translate(_first_leaf(e), "initialize")
            if not self._ready.done():
                self._ready.set_exception(error)
            else:
                self.logger.warning(f"MCP backend connection lost: {error.message}")
        finally:
            self._session = None
            if self.status != ConnectionStatus.FAILED:
                self.status = ConnectionStatus.CLOSED
            if not self._ready.done():
                self._ready.set_exception(
                    ProtocolError("MCP backend connection closed", method="initialize")
                )

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> mcp_types.CallToolResult:
        """
        Call one MCP tool.

        Raises:
            ProtocolError: On an error response or if the backend goes away
        """
        session = self._session
        if session is None or not self.is_connected:
            raise ProtocolError("MCP backend is not connected", method=name)

        try:
            return await session.call_tool(name, arguments)
        except (McpError, anyio.ClosedResourceError, anyio.BrokenResourceError) as e:
            if not isinstance(e, McpError):
                self.status = ConnectionStatus.FAILED
            raise self._translate(e, name)

    def _translate(self, error: BaseException, method: str):
        if isinstance(error, (ProtocolError, BackendConnectionError)):
            return error
        if isinstance(error, McpError):
            return ProtocolError(
                f"MCP error {error.error.code}: {error.error.message}",
                method=method,
                rpc_code=error.error.code,
            )
        if isinstance(error, OSError):
            return BackendConnectionError(
                f"Failed to start MCP backend '{self.argv[0]}': {error}",
                command=self.command,
            )

        reason = f"MCP backend closed the connection: {type(error).__name__}: {error}"
        tail = self.stderr_tail()
        return ProtocolError(f"{reason}: {tail}" if tail else reason, method=method)

    async def close(self, timeout: float = 5.0) -> None:
        """Shut the session and its server process down. Safe to call more than once."""
        owner = self._owner
        if owner is not None and not owner.done():
            self._stop.set()
            # A handshake in progress never reaches the stop event
            if self.status == ConnectionStatus.CONNECTING:
                owner.cancel()
            done, _ = await asyncio.wait({owner}, timeout=timeout)
            if not done:
                self.logger.warning(
                    f"MCP backend did not shut down in {timeout}s, cancelling its session"
                )
                owner.cancel()
                await asyncio.gather(owner, return_exceptions=True)

        if self.status != ConnectionStatus.FAILED:
            self.status = ConnectionStatus.CLOSED
        if self._errlog is not None and not self._errlog.closed:
            self._errlog.close()
        self.logger.debug(f"MCP backend stopped: {self.command}")


def _first_leaf(error: BaseException) -> BaseException:
    """Unwrap the exception groups anyio task groups raise."""
    while getattr(error, "exceptions", None):
        error = error.exceptions[0]
    return error
