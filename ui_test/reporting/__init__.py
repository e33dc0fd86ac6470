"""
Reporting components for ui-test.

Aggregates test results into a RunSummary and renders it as human-readable
text, JSON or JUnit XML.
"""

from .models import ReportFormat, RunSummary, EXIT_OK, EXIT_FAILURES, EXIT_USAGE
from .renderer import ReportRenderer, render, write_report

__all__ = [
    "ReportFormat",
    "RunSummary",
    "EXIT_OK",
    "EXIT_FAILURES",
    "EXIT_USAGE",
    "ReportRenderer",
    "render",
    "write_report",
]
