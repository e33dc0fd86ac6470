"""
Report rendering.

Renders a RunSummary as human-readable text, JSON or JUnit XML. Rendering is
pure; writing the result is a separate step.
"""

import json
import logging
import os
import re
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

from jinja2 import Environment

from ..core.durations import format_duration
from ..core.exceptions import ConfigError
from ..execution.models import TestResult, TestStatus
from .models import ReportFormat, RunSummary

logger = logging.getLogger(__name__)

STATUS_SYMBOLS = {
    TestStatus.PASSED: "✓",
    TestStatus.FAILED: "✗",
    TestStatus.TIMED_OUT: "⏱",
    TestStatus.ERRORED: "!",
    TestStatus.SKIPPED: "-",
}

# Characters XML 1.0 does not allow even when escaped
_XML_INVALID = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")

JUNIT_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<testsuite name="ui-test" tests="{{ summary.total }}" failures="{{ summary.failed + summary.timed_out }}" errors="{{ summary.errored }}" skipped="{{ summary.skipped }}" time="{{ '%.3f' % summary.duration }}" timestamp="{{ summary.started_at.strftime('%Y-%m-%dT%H:%M:%S') }}">
  <properties>
    <property name="run_id" value="{{ summary.run_id }}"/>
{%- if summary.cancelled %}
    <property name="cancelled" value="true"/>
{%- endif %}
{%- if summary.error %}
    <property name="error" value="{{ summary.error | xml_safe }}"/>
{%- endif %}
  </properties>
{%- for result in summary.results %}
  <testcase name="{{ result.name | xml_safe }}" classname="{{ result.path | xml_safe }}" time="{{ '%.3f' % result.duration }}">
{%- if result.status.value == "failed" %}
    <failure message="{{ (result.message or 'test failed') | xml_safe }}" type="assertion">{{ result | step_log | xml_safe }}</failure>
{%- elif result.status.value == "timed_out" %}
    <failure message="{{ (result.message or 'test timed out') | xml_safe }}" type="timeout">{{ result | step_log | xml_safe }}</failure>
{%- elif result.status.value == "errored" %}
    <error message="{{ (result.message or 'test errored') | xml_safe }}">{{ result | step_log | xml_safe }}</error>
{%- elif result.status.value == "skipped" %}
    <skipped message="{{ (result.message or 'skipped') | xml_safe }}"/>
{%- endif %}
  </testcase>
{%- endfor %}
</testsuite>
"""


def _xml_safe(value: Any) -> str:
    return _XML_INVALID.sub("", str(value))


def _step_log(result: TestResult) -> str:
    """One line per step of the final attempt."""
    lines = []
    for step in result.steps:
        line = f"[{step.status.value}] {step.step}"
        if step.message:
            line += f": {step.message}"
        lines.append(line)
    return "\n".join(lines) or (result.message or "")


class ReportRenderer:
    """Renders RunSummary objects in every supported report format."""

    def __init__(self):
        self.jinja_env = Environment(autoescape=True, keep_trailing_newline=True)
        self.jinja_env.filters["xml_safe"] = _xml_safe
        self.jinja_env.filters["step_log"] = _step_log
        self._junit_template = self.jinja_env.from_string(JUNIT_TEMPLATE)

    def render(self, summary: RunSummary, format: Union[ReportFormat, str]) -> str:
        """
        Render a summary.

        Args:
            summary: Completed (or degenerate) run summary
            format: Report format or its name

        Returns:
            The complete report text
        """
        try:
            format = ReportFormat(format)
        except ValueError:
            raise ConfigError(f"Unsupported report format: {format}", setting="format")

        if format == ReportFormat.HUMAN:
            return self.render_human(summary)
        if format == ReportFormat.JSON:
            return self.render_json(summary)
        return self.render_junit(summary)

    def render_human(self, summary: RunSummary) -> str:
        lines = []

        if summary.error:
            lines.append(f"error: {summary.error}")
        if summary.cancelled:
            lines.append("run cancelled: remaining tests were not completed")
        if lines:
            lines.append("")

        for result in summary.results:
            symbol = STATUS_SYMBOLS[result.status]
            lines.append(f"{symbol} {result.case_id} ({format_duration(result.duration)})")
            if result.status != TestStatus.PASSED and result.message:
                lines.append(f"    {result.message}")
            if result.attempts > 1:
                lines.append(f"    after {result.attempts} attempts")

        if summary.results:
            lines.append("")

        noun = "test" if summary.total == 1 else "tests"
        lines.append(
            f"{summary.total} {noun}: {summary.passed} passed, {summary.failed} failed, "
            f"{summary.timed_out} timed out, {summary.errored} errored, "
            f"{summary.skipped} skipped in {format_duration(summary.duration)}"
        )
        return "\n".join(lines) + "\n"

    def render_json(self, summary: RunSummary) -> str:
        document: Dict[str, Any] = {
            "run_id": summary.run_id,
            "started_at": summary.started_at.isoformat(),
            "completed_at": summary.completed_at.isoformat(),
            "duration": summary.duration,
            "cancelled": summary.cancelled,
            "error": summary.error,
            "summary": summary.counts(),
            "results": [result.model_dump(mode="json") for result in summary.results],
        }
        return json.dumps(document, indent=2, ensure_ascii=False) + "\n"

    def render_junit(self, summary: RunSummary) -> str:
        return self._junit_template.render(summary=summary)


_renderer: Optional[ReportRenderer] = None


def render(summary: RunSummary, format: Union[ReportFormat, str] = ReportFormat.HUMAN) -> str:
    """Render a summary with the shared renderer."""
    global _renderer
    if _renderer is None:
        _renderer = ReportRenderer()
    return _renderer.render(summary, format)


def write_report(text: str, path: Optional[Union[str, Path]] = None) -> None:
    """
    Write a rendered report.

    With a path the file is replaced atomically so readers never see a partial
    report; without one the text goes to stdout in a single write.
    """
    if path is None:
        sys.stdout.write(text)
        sys.stdout.flush()
        return

    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{output_path.name}.", suffix=".tmp", dir=str(output_path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_name, output_path)
    except OSError:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    logger.info(f"Saved report to: {output_path}")
