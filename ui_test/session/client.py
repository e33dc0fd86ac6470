"""
Session clients for browser automation backends.

A SessionClient opens sessions, executes one step at a time against a session
and closes sessions. It never retries a step; retry policy belongs to the
executor.
"""

import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from mcp import types as mcp_types

from ..core.exceptions import (
    AssertionFailure,
    BackendConnectionError,
    InternalError,
    ProtocolError,
    StepTimeoutError,
)
from ..core.logging_config import log_mcp_call
from ..discovery.models import (
    AssertText,
    AssertVisible,
    Click,
    Fill,
    Navigate,
    Screenshot,
    Wait,
)
from ..execution.models import StepResult, StepStatus
from .connection import McpStdioConnection
from .models import Session


class SessionClient(ABC):
    """Open/execute/close contract every automation backend implements."""

    @abstractmethod
    async def open(self) -> Session:
        """
        Open a new session.

        Raises:
            BackendConnectionError: If the backend is unreachable or rejects
                the handshake within the connection timeout
        """

    @abstractmethod
    async def execute(self, session: Session, step, timeout: float) -> StepResult:
        """Execute one step, returning its outcome instead of raising."""

    @abstractmethod
    async def close(self, session: Session) -> None:
        """Release a session. Idempotent."""

    async def probe(self) -> None:
        """Open and immediately close a session to check the backend is reachable."""
        session = await self.open()
        await self.close(session)


# In-page helpers passed to browser_evaluate. Each returns a plain object so
# the client decides pass/fail without depending on exception text.
_CLICK_JS = """() => {
  const el = document.querySelector(%s);
  if (!el) return {ok: false, reason: 'no element matches selector'};
  el.scrollIntoView({block: 'center'});
  el.click();
  return {ok: true};
}"""

_FILL_JS = """() => {
  const el = document.querySelector(%s);
  if (!el) return {ok: false, reason: 'no element matches selector'};
  el.focus();
  const proto = Object.getPrototypeOf(el);
  const setter = Object.getOwnPropertyDescriptor(proto, 'value');
  if (setter && setter.set) { setter.set.call(el, %s); } else { el.value = %s; }
  el.dispatchEvent(new Event('input', {bubbles: true}));
  el.dispatchEvent(new Event('change', {bubbles: true}));
  return {ok: true};
}"""

_TEXT_JS = """() => {
  const el = document.querySelector(%s);
  if (!el) return {found: false};
  return {found: true, text: el.innerText !== undefined ? el.innerText : el.textContent};
}"""

_VISIBLE_JS = """() => {
  const el = document.querySelector(%s);
  if (!el) return {found: false, visible: false};
  const style = window.getComputedStyle(el);
  const boxed = !!(el.offsetWidth || el.offsetHeight || el.getClientRects().length);
  return {found: true, visible: boxed && style.visibility !== 'hidden' && style.display !== 'none'};
}"""

_RESULT_SECTION = re.compile(r"###\s*Result\s*\n(.*?)(?:\n###|\Z)", re.DOTALL)


class PlaywrightSessionClient(SessionClient):
    """
    Session client for a Playwright MCP server.

    Every session is a separate MCP server process started from ``argv``, so
    sessions never share browser state.
    """

    server_name = "playwright"

    def __init__(
        self,
        argv: List[str],
        connect_timeout: float = 30.0,
        close_timeout: float = 5.0,
        env: Optional[Dict[str, str]] = None,
        artifacts_dir: Optional[Path] = None,
        logger: Optional[logging.Logger] = None,
        connection_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize the Playwright session client.

        Args:
            argv: Command line that starts one MCP server
            connect_timeout: Bound on process start plus handshake, in seconds
            close_timeout: Bound on session shutdown, in seconds
            env: Extra environment variables for the server process
            artifacts_dir: Where screenshots are written
            logger: Optional logger instance
            connection_factory: Builds a connection from ``argv``; defaults to
                McpStdioConnection
        """
        self.argv = list(argv)
        self.connect_timeout = connect_timeout
        self.close_timeout = close_timeout
        self.env = env or {}
        self.artifacts_dir = Path(artifacts_dir) if artifacts_dir else None
        self.logger = logger or logging.getLogger(__name__)
        self._connection_factory = connection_factory or McpStdioConnection

    @classmethod
    def from_config(cls, config, **kwargs) -> "PlaywrightSessionClient":
        return cls(
            argv=config.backend_argv(),
            connect_timeout=config.connect_timeout,
            close_timeout=config.close_timeout,
            env=config.backend_env,
            artifacts_dir=config.artifacts_dir,
            **kwargs,
        )

    async def open(self) -> Session:
        connection = self._connection_factory(self.argv, env=self.env, logger=self.logger)
        start_time = time.monotonic()

        try:
            server_info = await asyncio.wait_for(connection.connect(), self.connect_timeout)
        except asyncio.TimeoutError:
            await connection.close(self.close_timeout)
            log_mcp_call(
                self.logger, self.server_name, "initialize",
                time.monotonic() - start_time, False, error="timeout",
            )
            raise BackendConnectionError(
                f"MCP backend did not complete the handshake within {self.connect_timeout}s",
                command=" ".join(self.argv),
                timeout=self.connect_timeout,
            )
        except (BackendConnectionError, ProtocolError) as e:
            await connection.close(self.close_timeout)
            log_mcp_call(
                self.logger, self.server_name, "initialize",
                time.monotonic() - start_time, False, error=str(e),
            )
            if isinstance(e, BackendConnectionError):
                raise
            raise BackendConnectionError(
                f"MCP backend rejected the handshake: {e}",
                command=" ".join(self.argv),
            )
        except BaseException:
            # Cancelled mid-handshake: the server process is already running
            await connection.close(self.close_timeout)
            raise

        log_mcp_call(
            self.logger, self.server_name, "initialize", time.monotonic() - start_time, True
        )
        return Session(handle=connection, server_info=server_info or {})

    async def execute(self, session: Session, step, timeout: float) -> StepResult:
        label = step.describe()

        if session.closed or not session.usable:
            return StepResult(
                step=label,
                status=StepStatus.ERRORED,
                message="session is no longer usable",
            )

        start_time = time.monotonic()
        try:
            await asyncio.wait_for(self._perform(session, step), timeout)
        except asyncio.TimeoutError:
            session.invalidate()
            error = StepTimeoutError(f"no response within {timeout:g}s", timeout=timeout)
            self.logger.warning(
                f"Step timed out, session {session.id} is no longer usable: {label}",
                extra={"metadata": error.to_dict()},
            )
            return StepResult(
                step=label,
                status=StepStatus.TIMED_OUT,
                message=error.message,
                duration=time.monotonic() - start_time,
            )
        except AssertionFailure as e:
            return StepResult(
                step=label,
                status=StepStatus.FAILED,
                message=e.message,
                duration=time.monotonic() - start_time,
            )
        except (ProtocolError, BackendConnectionError) as e:
            if not session.handle.is_connected:
                session.invalidate()
            return StepResult(
                step=label,
                status=StepStatus.ERRORED,
                message=e.message,
                duration=time.monotonic() - start_time,
            )

        return StepResult(
            step=label, status=StepStatus.PASSED, duration=time.monotonic() - start_time
        )

    async def _perform(self, session: Session, step) -> None:
        if isinstance(step, Navigate):
            await self._call_tool(session, "browser_navigate", {"url": step.url})

        elif isinstance(step, Click):
            outcome = await self._evaluate(session, _CLICK_JS % _js(step.selector))
            self._expect_ok(outcome, step)

        elif isinstance(step, Fill):
            value = _js(step.value)
            outcome = await self._evaluate(
                session, _FILL_JS % (_js(step.selector), value, value)
            )
            self._expect_ok(outcome, step)

        elif isinstance(step, AssertText):
            outcome = await self._evaluate(session, _TEXT_JS % _js(step.selector))
            if not outcome.get("found"):
                raise AssertionFailure(
                    f"no element matches {step.selector!r}", step=step.describe()
                )
            actual = str(outcome.get("text") or "")
            if step.expected not in actual:
                raise AssertionFailure(
                    f"expected text {step.expected!r} in {step.selector!r}, got {_clip(actual)!r}",
                    step=step.describe(),
                )

        elif isinstance(step, AssertVisible):
            outcome = await self._evaluate(session, _VISIBLE_JS % _js(step.selector))
            if not outcome.get("found"):
                raise AssertionFailure(
                    f"no element matches {step.selector!r}", step=step.describe()
                )
            if not outcome.get("visible"):
                raise AssertionFailure(
                    f"element {step.selector!r} is not visible", step=step.describe()
                )

        elif isinstance(step, Screenshot):
            filename = f"{_slug(step.label)}-{session.id}.png"
            if self.artifacts_dir is not None:
                self.artifacts_dir.mkdir(parents=True, exist_ok=True)
                filename = str(self.artifacts_dir / filename)
            await self._call_tool(session, "browser_take_screenshot", {"filename": filename})

        elif isinstance(step, Wait):
            await asyncio.sleep(step.duration)

        else:
            raise InternalError(f"Unsupported step type: {type(step).__name__}")

    def _expect_ok(self, outcome: Dict[str, Any], step) -> None:
        if not outcome.get("ok"):
            reason = outcome.get("reason") or "action was not performed"
            raise AssertionFailure(f"{reason}: {step.selector!r}", step=step.describe())

    async def _evaluate(self, session: Session, function: str) -> Dict[str, Any]:
        result = await self._call_tool(session, "browser_evaluate", {"function": function})
        value = parse_tool_value(result)
        if not isinstance(value, dict):
            raise ProtocolError(
                f"unexpected browser_evaluate result: {_clip(str(value))!r}",
                method="browser_evaluate",
            )
        return value

    async def _call_tool(
        self, session: Session, tool_name: str, arguments: Dict[str, Any]
    ) -> mcp_types.CallToolResult:
        """
        Call an MCP tool on the session's backend.

        Raises:
            ProtocolError: If the connection fails or the tool reports an error
        """
        start_time = time.monotonic()
        try:
            result = await session.handle.call_tool(tool_name, arguments)
        except ProtocolError as e:
            log_mcp_call(
                self.logger, self.server_name, tool_name,
                time.monotonic() - start_time, False, error=e.message,
            )
            raise

        if result.isError:
            message = tool_text(result) or "tool reported an error"
            log_mcp_call(
                self.logger, self.server_name, tool_name,
                time.monotonic() - start_time, False, error=message,
            )
            raise ProtocolError(f"{tool_name} failed: {_clip(message)}", method=tool_name)

        log_mcp_call(
            self.logger, self.server_name, tool_name, time.monotonic() - start_time, True
        )
        return result

    async def close(self, session: Session) -> None:
        if session.closed:
            return
        was_usable = session.usable
        session.closed = True
        session.invalidate()

        connection = session.handle
        try:
            if was_usable and connection.is_connected:
                await asyncio.wait_for(
                    connection.call_tool("browser_close", {}), self.close_timeout
                )
        except (asyncio.TimeoutError, ProtocolError) as e:
            self.logger.debug(f"browser_close failed during session cleanup: {e}")
        finally:
            await connection.close(self.close_timeout)


def tool_text(result: mcp_types.CallToolResult) -> str:
    """Concatenate the text content items of a tool result."""
    parts = [
        item.text for item in result.content if isinstance(item, mcp_types.TextContent)
    ]
    return "\n".join(parts).strip()


def parse_tool_value(result: mcp_types.CallToolResult) -> Any:
    """
    Extract the JSON value a tool returned.

    Newer Playwright MCP servers wrap the value in a markdown ``### Result``
    section; older ones return the bare JSON text.
    """
    if getattr(result, "structuredContent", None) is not None:
        return result.structuredContent

    text = tool_text(result)
    match = _RESULT_SECTION.search(text)
    candidate = match.group(1).strip() if match else text

    value = _loads(candidate)
    # Some servers JSON-encode the value a second time
    if isinstance(value, str):
        inner = _loads(value)
        if inner is not None:
            value = inner
    if value is None:
        raise ProtocolError(
            f"could not decode tool result: {_clip(text)!r}", method="tools/call"
        )
    return value


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def _js(value: str) -> str:
    """Quote a Python string as a JavaScript string literal."""
    return json.dumps(value)


def _slug(label: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", label).strip("-")
    return slug or "screenshot"


def _clip(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."
