"""
Bounded worker pool over a test suite.

Workers pull cases from a FIFO queue in discovery order and run each with a
fresh session client. Results are re-emitted in discovery order no matter in
which order they complete.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..core.exceptions import InternalError
from ..core.logging_config import get_logger
from ..core.workflow import generate_run_id
from ..discovery.models import DiscoveryFailure, TestCase, TestSuite
from ..reporting.models import RunSummary
from .executor import TestExecutor
from .models import RetryPolicy, TestResult, TestStatus

logger = get_logger(__name__)

CANCELLED_MESSAGE = "run cancelled"
CANCELLED_BEFORE_START_MESSAGE = "run cancelled before start"


def errored_result(case: TestCase, message: str, duration: float = 0.0, attempts: int = 0) -> TestResult:
    """TestResult for a case that could not run to a verdict."""
    return TestResult(
        case_id=case.id,
        name=case.name,
        path=case.path,
        tags=case.tags,
        status=TestStatus.ERRORED,
        message=message,
        attempts=attempts,
        duration=duration,
    )


def discovery_failure_result(failure: DiscoveryFailure) -> TestResult:
    """TestResult reporting a definition file that failed to parse."""
    return TestResult(
        case_id=failure.path,
        name=failure.path,
        path=failure.path,
        status=TestStatus.ERRORED,
        message=f"could not load test definition: {failure.message}",
    )


def merge_discovery_failures(suite: TestSuite, results: List[TestResult]) -> List[TestResult]:
    """
    Interleave parse failures with case results at their file's position.

    ``results`` must be in discovery order; the sort is stable so cases keep
    their relative order.
    """
    if not suite.failures:
        return list(results)
    merged = list(results) + [discovery_failure_result(f) for f in suite.failures]
    return sorted(merged, key=lambda result: suite.file_position(result.path))


class Scheduler:
    """
    Runs a suite with at most ``concurrency`` cases in flight.

    Each worker-iteration gets its own session client from ``client_factory``,
    so no session is ever shared between workers.
    """

    def __init__(
        self,
        client_factory: Callable[[], object],
        policy: Optional[RetryPolicy] = None,
        executor: Optional[TestExecutor] = None,
        on_result: Optional[Callable[[TestResult], None]] = None,
        run_id: Optional[str] = None,
    ):
        self.client_factory = client_factory
        self.policy = policy or RetryPolicy()
        self.executor = executor or TestExecutor()
        self.on_result = on_result
        self.run_id = run_id or generate_run_id()
        self._cancelled = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop pulling new cases and abandon the ones in flight."""
        if not self._cancelled.is_set():
            logger.warning("Cancellation requested, abandoning in-flight tests")
        self._cancelled.set()

    async def run(self, suite: TestSuite, concurrency: int) -> RunSummary:
        """
        Run every case in the suite.

        Args:
            suite: Cases to run, in discovery order
            concurrency: Maximum number of cases in flight

        Returns:
            RunSummary with exactly one result per case, in discovery order
        """
        started_at = datetime.now(timezone.utc)
        start_time = time.monotonic()
        cases = suite.cases
        results: Dict[str, TestResult] = {}

        if cases:
            workers = max(1, min(concurrency, len(cases)))
            queue: asyncio.Queue = asyncio.Queue()
            for case in cases:
                queue.put_nowait(case)

            logger.info(
                f"Running {len(cases)} test(s) with {workers} worker(s)",
                extra={"metadata": {"run_id": self.run_id, "jobs": workers}},
            )

            await asyncio.gather(
                *(self._worker(n, queue, results) for n in range(workers))
            )

        ordered = []
        for case in cases:
            result = results.get(case.id)
            if result is None:
                result = errored_result(case, CANCELLED_BEFORE_START_MESSAGE)
            ordered.append(result)

        summary = RunSummary.build(
            run_id=self.run_id,
            results=merge_discovery_failures(suite, ordered),
            started_at=started_at,
            duration=time.monotonic() - start_time,
            cancelled=self.cancelled,
        )
        logger.info("Run finished", extra={"metadata": summary.to_summary()})
        return summary

    async def _worker(self, worker_id: int, queue: asyncio.Queue, results: Dict[str, TestResult]) -> None:
        while not self.cancelled:
            try:
                case = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            logger.debug(f"Worker {worker_id} picked up {case.id}")
            result = await self._run_case(case)
            results[case.id] = result

            if self.on_result is not None:
                self.on_result(result)

    async def _run_case(self, case: TestCase) -> TestResult:
        start_time = time.monotonic()

        try:
            client = self.client_factory()
        except Exception as e:
            logger.exception(f"Could not create a session client for {case.id}")
            return errored_result(case, InternalError(str(e), case_id=case.id).message)

        task = asyncio.ensure_future(self.executor.run(case, client, self.policy))
        cancel_wait = asyncio.ensure_future(self._cancelled.wait())

        try:
            done, _ = await asyncio.wait(
                {task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            cancel_wait.cancel()

        if task in done:
            try:
                return task.result()
            except Exception as e:
                error = InternalError(f"{type(e).__name__}: {e}", case_id=case.id)
                logger.exception(
                    f"Unexpected error while running {case.id}",
                    extra={"metadata": error.to_dict()},
                )
                return errored_result(
                    case, f"internal error: {error.message}", time.monotonic() - start_time
                )

        # Cancelled: unwinding the executor closes its session
        task.cancel()
        outcome = await asyncio.gather(task, return_exceptions=True)
        if isinstance(outcome[0], Exception):
            logger.warning(f"Error while abandoning {case.id}: {outcome[0]}")
        return errored_result(case, CANCELLED_MESSAGE, time.monotonic() - start_time)
