"""
Run orchestration for ui-test.

Wires discovery, selection, the backend preflight and the scheduler together
into one run that always ends in a RunSummary.
"""

import asyncio
import time
from pathlib import Path
from typing import Callable, Optional, Union

from .core.config import Config
from .core.exceptions import BackendConnectionError
from .core.logging_config import get_logger, log_performance
from .core.workflow import RunContext
from .discovery import discover
from .discovery.models import TestSuite
from .execution.executor import TestExecutor
from .execution.models import RetryPolicy, TestResult
from .execution.scheduler import Scheduler
from .reporting.models import RunSummary
from .selection import apply
from .session.client import PlaywrightSessionClient, SessionClient

logger = get_logger(__name__)


class TestRunner:
    """
    Runs the selected test cases of one invocation.

    The runner never shares a session client between cases: every case gets a
    new client from ``client_factory``.
    """

    __test__ = False

    def __init__(
        self,
        config: Config,
        client_factory: Optional[Callable[[], SessionClient]] = None,
        context: Optional[RunContext] = None,
        on_result: Optional[Callable[[TestResult], None]] = None,
    ):
        self.config = config
        self.context = context or RunContext()
        self.client_factory = client_factory or self._default_client_factory
        self.on_result = on_result
        self.policy = RetryPolicy.from_config(config)
        self._scheduler: Optional[Scheduler] = None
        self._cancel_requested = False
        self._cancel_event = asyncio.Event()

    @property
    def run_id(self) -> str:
        return self.context.run_id

    def _default_client_factory(self) -> SessionClient:
        return PlaywrightSessionClient.from_config(self.config)

    def select(
        self,
        test_path: Union[str, Path],
        filter_expr: Optional[str] = None,
        strict: bool = False,
    ) -> TestSuite:
        """
        Discover and filter test cases.

        Raises:
            ConfigError: If the test path is missing or unsupported
            DiscoveryError: In strict mode, if a definition is malformed
        """
        start_time = time.monotonic()
        suite = apply(discover(test_path, strict=strict), filter_expr)
        log_performance(
            logger,
            "test selection",
            time.monotonic() - start_time,
            selected=len(suite),
            failures=len(suite.failures),
        )
        return suite

    async def preflight(self) -> None:
        """
        Open and close one session to prove the backend is reachable.

        Raises:
            BackendConnectionError: If no session can be opened
        """
        start_time = time.monotonic()
        client = self.client_factory()
        await client.probe()
        log_performance(logger, "backend preflight", time.monotonic() - start_time)

    async def run(self, suite: TestSuite) -> RunSummary:
        """
        Run a selected suite.

        Returns:
            RunSummary; a degenerate one with ``error`` set when the backend is
            unreachable before any test ran
        """
        if self.config.preflight and suite.runnable and not self._cancel_requested:
            try:
                await self._preflight_unless_cancelled()
            except BackendConnectionError as e:
                logger.error(
                    f"Automation backend is unreachable: {e.message}",
                    extra={"metadata": e.to_dict()},
                )
                return RunSummary.aborted(
                    self.run_id,
                    f"automation backend is unreachable: {e.message}",
                    started_at=self.context.started_at,
                )

        self._scheduler = Scheduler(
            client_factory=self.client_factory,
            policy=self.policy,
            executor=TestExecutor(),
            on_result=self.on_result,
            run_id=self.run_id,
        )
        if self._cancel_requested:
            self._scheduler.cancel()

        return await self._scheduler.run(suite, self.config.jobs)

    async def _preflight_unless_cancelled(self) -> None:
        """Run the preflight, abandoning it as soon as the run is cancelled."""
        preflight = asyncio.ensure_future(self.preflight())
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({preflight, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not preflight.done():
                preflight.cancel()
            # The client closes a half-open connection when cancelled
            await asyncio.gather(preflight, cancelled, return_exceptions=True)

        if not preflight.cancelled():
            preflight.result()
        else:
            logger.info("Run cancelled during backend preflight")

    def cancel(self) -> None:
        """Cancel the run; safe to call before or during the preflight and scheduling."""
        self._cancel_requested = True
        self._cancel_event.set()
        if self._scheduler is not None:
            self._scheduler.cancel()
