"""
Data models for test execution.

Defines step and test outcomes and the retry policy applied by the executor.
"""

from enum import Enum
from typing import Dict, Any, FrozenSet, Optional, Tuple

from pydantic import BaseModel, Field, ConfigDict, field_validator


class StepStatus(Enum):
    """Outcome of one step."""

    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"


class TestStatus(Enum):
    """Overall outcome of a test case."""

    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"
    SKIPPED = "skipped"

    @classmethod
    def from_step(cls, status: StepStatus) -> "TestStatus":
        return cls(status.value)


TestStatus.__test__ = False


class StepResult(BaseModel):
    """Result of executing one step."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    step: str = Field(..., description="Step label")
    status: StepStatus = Field(..., description="Step outcome")
    message: Optional[str] = Field(None, description="Failure reason or error cause")
    duration: float = Field(0.0, ge=0, description="Step duration in seconds")

    @property
    def passed(self) -> bool:
        return self.status == StepStatus.PASSED


class TestResult(BaseModel):
    """Result of one scheduled test case. Created exactly once, never mutated."""

    __test__ = False

    model_config = ConfigDict(extra="forbid", frozen=True)

    case_id: str = Field(..., description="TestCase identifier")
    name: str = Field(..., description="Test name")
    path: str = Field(..., description="Definition file")
    tags: Tuple[str, ...] = Field(default_factory=tuple)
    status: TestStatus = Field(..., description="Overall status")
    steps: Tuple[StepResult, ...] = Field(
        default_factory=tuple, description="Step results of the final attempt"
    )
    message: Optional[str] = Field(None, description="Reason for a non-passed status")
    attempts: int = Field(0, ge=0, description="Number of attempts made")
    duration: float = Field(0.0, ge=0, description="Wall-clock duration in seconds")

    @property
    def is_success(self) -> bool:
        return self.status == TestStatus.PASSED

    @property
    def is_failure(self) -> bool:
        """Whether this result makes the run fail."""
        return self.status not in (TestStatus.PASSED, TestStatus.SKIPPED)

    def to_summary(self) -> Dict[str, Any]:
        """Create a summary dictionary for logging."""
        return {
            "case_id": self.case_id,
            "status": self.status.value,
            "duration": self.duration,
            "attempts": self.attempts,
            "steps": len(self.steps),
        }


class RetryPolicy(BaseModel):
    """Whole-case retry and timeout policy."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    retries: int = Field(0, ge=0, description="Additional attempts after the first")
    retry_on: FrozenSet[TestStatus] = Field(
        default_factory=lambda: frozenset({TestStatus.ERRORED, TestStatus.TIMED_OUT}),
        description="Terminal statuses that trigger a retry",
    )
    step_timeout: float = Field(15.0, gt=0, description="Per-step timeout in seconds")
    case_timeout: float = Field(60.0, gt=0, description="Default per-case timeout")
    close_timeout: float = Field(5.0, gt=0, description="Session close timeout")

    @field_validator("retry_on")
    @classmethod
    def validate_retry_on(cls, v):
        allowed = {TestStatus.ERRORED, TestStatus.TIMED_OUT}
        if not set(v) <= allowed:
            raise ValueError("retry_on may only contain errored and timed_out")
        return v

    def should_retry(self, status: TestStatus, attempt: int) -> bool:
        """Whether another attempt follows ``attempt`` (1-based)."""
        return status in self.retry_on and attempt <= self.retries

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            retries=config.retries,
            retry_on=frozenset(TestStatus(s) for s in config.retry_on),
            step_timeout=config.step_timeout,
            case_timeout=config.case_timeout,
            close_timeout=config.close_timeout,
        )
