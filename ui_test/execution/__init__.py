"""
Test execution components for ui-test.

This module provides the single-case executor, the bounded worker pool that
schedules a suite, and the result models they produce.
"""

from .executor import TestExecutor
from .scheduler import Scheduler, merge_discovery_failures
from .models import (
    StepStatus,
    TestStatus,
    StepResult,
    TestResult,
    RetryPolicy,
)

__all__ = [
    "TestExecutor",
    "Scheduler",
    "merge_discovery_failures",
    "StepStatus",
    "TestStatus",
    "StepResult",
    "TestResult",
    "RetryPolicy",
]
