"""
Pytest configuration and shared fixtures for ui-test tests.

Provides a scripted fake automation backend, a fake MCP connection, test case
builders and helpers for writing definition files into temporary directories.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List

import pytest
import yaml
from mcp import types as mcp_types

from ui_test.core.config import Config
from ui_test.core.exceptions import BackendConnectionError
from ui_test.discovery.models import (
    AssertText,
    Click,
    Navigate,
    TestCase,
    TestSuite,
)
from ui_test.execution.models import RetryPolicy, StepResult, StepStatus
from ui_test.session.client import SessionClient
from ui_test.session.models import Session


class FakeBackend:
    """
    Scripted stand-in for the automation backend.

    Step outcomes are keyed by step label; a list of statuses is consumed one
    per call and its last entry repeats. Every open, close and step is
    recorded so tests can assert on what reached the backend.
    """

    def __init__(self):
        self.outcomes: Dict[str, List[StepStatus]] = {}
        self.delays: Dict[str, float] = {}
        self.crash_on: set = set()
        self.open_failures = 0
        self.open_delay = 0.0
        self.unreachable = False

        self.opens = 0
        self.closes = 0
        self.clients_created = 0
        self.executed: List[str] = []
        self.active = 0
        self.max_active = 0
        self.open_sessions: set = set()

    def script(self, label: str, *statuses: StepStatus) -> None:
        self.outcomes[label] = list(statuses)

    def next_status(self, label: str) -> StepStatus:
        queue = self.outcomes.get(label)
        if not queue:
            return StepStatus.PASSED
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    @property
    def calls(self) -> int:
        return self.opens + len(self.executed)


class FakeSessionClient(SessionClient):
    """Session client talking to a FakeBackend."""

    def __init__(self, backend: FakeBackend):
        self.backend = backend
        backend.clients_created += 1

    async def open(self) -> Session:
        backend = self.backend
        backend.opens += 1
        if backend.open_delay:
            await asyncio.sleep(backend.open_delay)
        if backend.unreachable or backend.open_failures > 0:
            backend.open_failures = max(backend.open_failures - 1, 0)
            raise BackendConnectionError("fake backend refused the connection")
        session = Session(handle=object())
        backend.open_sessions.add(session.id)
        backend.active += 1
        backend.max_active = max(backend.max_active, backend.active)
        return session

    async def execute(self, session: Session, step, timeout: float) -> StepResult:
        label = step.describe()
        self.backend.executed.append(label)

        if label in self.backend.crash_on:
            raise RuntimeError(f"fake backend crashed on {label}")

        delay = self.backend.delays.get(label, 0)
        if delay:
            try:
                await asyncio.wait_for(asyncio.sleep(delay), timeout)
            except asyncio.TimeoutError:
                session.invalidate()
                return StepResult(step=label, status=StepStatus.TIMED_OUT, message="no response")

        status = self.backend.next_status(label)
        message = None if status == StepStatus.PASSED else f"scripted {status.value}"
        return StepResult(step=label, status=status, message=message)

    async def close(self, session: Session) -> None:
        if session.closed:
            return
        session.closed = True
        self.backend.closes += 1
        self.backend.active -= 1
        self.backend.open_sessions.discard(session.id)


def text_result(value, wrap=True, is_error=False):
    text = value if isinstance(value, str) else json.dumps(value)
    if wrap:
        text = f"### Result\n{text}\n\n### Ran Playwright code\n```js\nawait page.evaluate()\n```"
    return mcp_types.CallToolResult(
        content=[mcp_types.TextContent(type="text", text=text)], isError=is_error
    )


class FakeConnection:
    """Scripted connection: ``tools`` maps tool name to a result, exception or delay."""

    instances = []

    def __init__(self, argv, env=None, logger=None):
        self.argv = argv
        self.env = env
        self.tools = {}
        self.calls = []
        self.is_connected = False
        self.closed = False
        self.connect_delay = 0
        self.connect_error = None
        FakeConnection.instances.append(self)

    async def connect(self):
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error:
            raise self.connect_error
        self.is_connected = True
        return {"name": "Playwright", "version": "0.0.41"}

    async def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        outcome = self.tools.get(name, text_result("ok", wrap=False))
        if isinstance(outcome, float):
            await asyncio.sleep(outcome)
            return mcp_types.CallToolResult(content=[])
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self, timeout=5.0):
        self.closed = True
        self.is_connected = False


def make_case(name: str, steps=None, path: str = "tests/test_ui.yaml", **kwargs) -> TestCase:
    """Build a TestCase without going through discovery."""
    if steps is None:
        steps = (Navigate(url="https://example.com"), Click(selector=f"#{name}"))
    return TestCase(id=f"{path}::{name}", name=name, path=path, steps=tuple(steps), **kwargs)


def make_suite(*cases: TestCase, failures=()) -> TestSuite:
    files = []
    for case in cases:
        if case.path not in files:
            files.append(case.path)
    for failure in failures:
        if failure.path not in files:
            files.append(failure.path)
    return TestSuite(cases=tuple(cases), failures=tuple(failures), files=tuple(sorted(files)))


def write_definition(directory: Path, name: str, data) -> Path:
    """Write a YAML definition file and return its path."""
    path = directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, str):
        path.write_text(data, encoding="utf-8")
    else:
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


@pytest.fixture
def fake_backend():
    """A fresh scripted backend."""
    return FakeBackend()


@pytest.fixture
def client_factory(fake_backend):
    """Factory producing one FakeSessionClient per call."""

    def factory():
        return FakeSessionClient(fake_backend)

    return factory


@pytest.fixture
def fast_policy():
    """Retry policy with short timeouts."""
    return RetryPolicy(step_timeout=1.0, case_timeout=5.0, close_timeout=1.0)


@pytest.fixture
def run_config(tmp_path):
    """Configuration suited to running against the fake backend."""
    return Config(
        jobs=2,
        case_timeout=5.0,
        step_timeout=1.0,
        close_timeout=1.0,
        artifacts_dir=tmp_path / "artifacts",
        preflight=True,
    )


@pytest.fixture
def login_steps():
    return (
        Navigate(url="https://example.com/login"),
        Click(selector="#submit"),
        AssertText(selector="h1", expected="Welcome"),
    )


@pytest.fixture
def sample_tree(tmp_path):
    """A directory holding two valid definition files and one malformed file."""
    root = tmp_path / "suite"
    write_definition(
        root,
        "test_login.yaml",
        {
            "tags": ["auth"],
            "tests": [
                {"name": "valid login", "tags": ["smoke"], "steps": [{"navigate": "https://example.com"}]},
                {"name": "bad password", "steps": [{"click": "#submit"}]},
            ],
        },
    )
    write_definition(root, "test_broken.yaml", "tests: [unclosed")
    write_definition(
        root,
        "nested/test_search.yaml",
        {"name": "search", "steps": [{"fill": {"selector": "#q", "value": "shoes"}}]},
    )
    return root


@pytest.fixture(autouse=True)
def isolate_logging():
    """Undo handlers installed by setup_logging during a test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
