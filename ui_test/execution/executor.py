"""
Test executor.

Runs one test case against a session client: opens a fresh session per
attempt, executes steps strictly in order, short-circuits on the first
non-passing step, retries whole cases according to the retry policy and bounds
everything by the case timeout.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..core.exceptions import BackendConnectionError
from ..core.logging_config import get_logger, log_performance
from ..discovery.models import TestCase
from .models import RetryPolicy, StepResult, StepStatus, TestResult, TestStatus


@dataclass
class _AttemptState:
    """What the current attempt has done so far; survives case-timeout cancellation."""

    attempts: int = 0
    steps: List[StepResult] = field(default_factory=list)
    current_step: Optional[str] = None
    step_started: float = 0.0

    def begin(self) -> None:
        self.attempts += 1
        self.steps = []
        self.current_step = None


class TestExecutor:
    """
    Executes a single TestCase.

    The executor owns the session it opens for the duration of one attempt and
    always closes it, whether the attempt passes, fails, times out or is
    cancelled.
    """

    __test__ = False

    def __init__(self, logger=None):
        self._logger = logger

    def _case_logger(self, case: TestCase):
        return self._logger or get_logger(__name__, case_id=case.id)

    async def run(
        self, case: TestCase, client, policy: RetryPolicy
    ) -> TestResult:
        """
        Run a test case to completion.

        Args:
            case: Test case to run
            client: Session client used to open one session per attempt
            policy: Retry and timeout policy

        Returns:
            Exactly one TestResult for the case
        """
        logger = self._case_logger(case)

        if case.skip:
            logger.info(f"Skipping test: {case.name}")
            return TestResult(
                case_id=case.id,
                name=case.name,
                path=case.path,
                tags=case.tags,
                status=TestStatus.SKIPPED,
                message=case.skip_reason or "marked skip",
            )

        timeout = case.timeout or policy.case_timeout
        state = _AttemptState()
        start_time = time.monotonic()

        logger.info(
            f"Starting test: {case.name}",
            extra={
                "metadata": {
                    "steps": len(case.steps),
                    "timeout": timeout,
                    "retries": policy.retries,
                }
            },
        )

        try:
            status, message = await asyncio.wait_for(
                self._run_attempts(case, client, policy, state, logger), timeout
            )
            steps = list(state.steps)
        except asyncio.TimeoutError:
            status = TestStatus.TIMED_OUT
            message = f"test exceeded its {timeout:g}s timeout"
            steps = list(state.steps)
            if state.current_step is not None:
                steps.append(
                    StepResult(
                        step=state.current_step,
                        status=StepStatus.TIMED_OUT,
                        message="aborted by test timeout",
                        duration=time.monotonic() - state.step_started,
                    )
                )
            logger.warning(f"Test timed out after {timeout:g}s: {case.name}")

        duration = time.monotonic() - start_time
        result = TestResult(
            case_id=case.id,
            name=case.name,
            path=case.path,
            tags=case.tags,
            status=status,
            steps=tuple(steps),
            message=message,
            attempts=state.attempts,
            duration=duration,
        )

        log_performance(
            logger,
            f"test {case.name}",
            duration,
            status=status.value,
            attempts=state.attempts,
        )
        return result

    async def _run_attempts(
        self,
        case: TestCase,
        client,
        policy: RetryPolicy,
        state: _AttemptState,
        logger,
    ) -> Tuple[TestStatus, Optional[str]]:
        while True:
            state.begin()
            status, message = await self._run_attempt(case, client, policy, state, logger)

            if status == TestStatus.PASSED:
                return status, message

            if not policy.should_retry(status, state.attempts):
                return status, message

            logger.warning(
                f"Attempt {state.attempts} of {case.name} ended {status.value}, retrying",
                extra={"metadata": {"attempt": state.attempts, "reason": message}},
            )

    async def _run_attempt(
        self,
        case: TestCase,
        client,
        policy: RetryPolicy,
        state: _AttemptState,
        logger,
    ) -> Tuple[TestStatus, Optional[str]]:
        try:
            session = await client.open()
        except BackendConnectionError as e:
            logger.error(f"Could not open session for {case.name}: {e.message}")
            return TestStatus.ERRORED, f"could not open session: {e.message}"

        try:
            for step in case.steps:
                state.current_step = step.describe()
                state.step_started = time.monotonic()

                result = await client.execute(session, step, policy.step_timeout)

                state.current_step = None
                state.steps.append(result)

                if not result.passed:
                    logger.info(
                        f"Step {result.status.value}: {result.step}",
                        extra={"metadata": {"reason": result.message}},
                    )
                    return TestStatus.from_step(result.status), f"{result.step}: {result.message}"

            return TestStatus.PASSED, None
        finally:
            await self._close_session(client, session, policy, logger)

    async def _close_session(
        self, client, session, policy: RetryPolicy, logger
    ) -> None:
        try:
            await asyncio.wait_for(client.close(session), policy.close_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Session {session.id} did not close within {policy.close_timeout:g}s")
        except Exception as e:
            logger.warning(f"Error closing session {session.id}: {e}")
