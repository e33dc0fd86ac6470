"""
Pydantic models for reporting.

The RunSummary is the sole input to every report renderer.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..execution.models import TestResult, TestStatus


class ReportFormat(Enum):
    """Report output formats."""

    HUMAN = "human"
    JSON = "json"
    JUNIT = "junit"


EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_USAGE = 2


class RunSummary(BaseModel):
    """Aggregate of one run. Created once at run end, never mutated."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    run_id: str = Field(..., description="Run identifier")
    results: Tuple[TestResult, ...] = Field(
        default_factory=tuple, description="Results in discovery order"
    )
    total: int = Field(0, ge=0)
    passed: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    timed_out: int = Field(0, ge=0)
    errored: int = Field(0, ge=0)
    skipped: int = Field(0, ge=0)
    duration: float = Field(0.0, ge=0, description="Run duration in seconds")
    started_at: datetime = Field(..., description="Run start (UTC)")
    completed_at: datetime = Field(..., description="Run end (UTC)")
    cancelled: bool = Field(False, description="Run was interrupted")
    error: Optional[str] = Field(None, description="Failure that prevented the run")

    @classmethod
    def build(
        cls,
        run_id: str,
        results: Iterable[TestResult],
        started_at: datetime,
        duration: float,
        cancelled: bool = False,
        error: Optional[str] = None,
    ) -> "RunSummary":
        """Count results per status and stamp the completion time."""
        results = tuple(results)
        counts = {status: 0 for status in TestStatus}
        for result in results:
            counts[result.status] += 1

        return cls(
            run_id=run_id,
            results=results,
            total=len(results),
            passed=counts[TestStatus.PASSED],
            failed=counts[TestStatus.FAILED],
            timed_out=counts[TestStatus.TIMED_OUT],
            errored=counts[TestStatus.ERRORED],
            skipped=counts[TestStatus.SKIPPED],
            duration=duration,
            started_at=started_at,
            completed_at=started_at + timedelta(seconds=duration),
            cancelled=cancelled,
            error=error,
        )

    @classmethod
    def aborted(cls, run_id: str, error: str, started_at: Optional[datetime] = None) -> "RunSummary":
        """Degenerate summary for a run that never scheduled a test."""
        started_at = started_at or datetime.now(timezone.utc)
        duration = max((datetime.now(timezone.utc) - started_at).total_seconds(), 0.0)
        return cls.build(run_id, (), started_at, duration, error=error)

    @property
    def has_failures(self) -> bool:
        return any(result.is_failure for result in self.results)

    @property
    def success_rate(self) -> float:
        """Passed share of non-skipped results, as a percentage."""
        considered = self.total - self.skipped
        if considered <= 0:
            return 0.0
        return self.passed / considered * 100

    @property
    def exit_code(self) -> int:
        if self.error is not None:
            return EXIT_USAGE
        if self.cancelled or self.has_failures:
            return EXIT_FAILURES
        return EXIT_OK

    def counts(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "errored": self.errored,
            "skipped": self.skipped,
        }

    def to_summary(self) -> Dict[str, Any]:
        """Create a summary dictionary for logging."""
        return {
            "run_id": self.run_id,
            **self.counts(),
            "duration": self.duration,
            "cancelled": self.cancelled,
        }
