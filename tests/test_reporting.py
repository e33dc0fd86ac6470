"""
Unit tests for reporting.

Tests RunSummary aggregation, exit codes and the human, JSON and JUnit
renderers.
"""

import json
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

import pytest

from ui_test.core.exceptions import ConfigError
from ui_test.execution.models import StepResult, StepStatus, TestResult, TestStatus
from ui_test.reporting import ReportFormat, RunSummary, render, write_report

STARTED = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def _result(name, status, message=None, steps=(), attempts=1, duration=0.5):
    return TestResult(
        case_id=f"tests/test_ui.yaml::{name}",
        name=name,
        path="tests/test_ui.yaml",
        status=status,
        message=message,
        steps=tuple(steps),
        attempts=attempts,
        duration=duration,
    )


@pytest.fixture
def mixed_summary():
    results = [
        _result("passes", TestStatus.PASSED),
        _result(
            "fails",
            TestStatus.FAILED,
            "click #go: no element matches '#go'",
            steps=[
                StepResult(step="navigate https://example.com", status=StepStatus.PASSED),
                StepResult(step="click #go", status=StepStatus.FAILED, message="no element matches '#go'"),
            ],
        ),
        _result("slow", TestStatus.TIMED_OUT, "test exceeded its 5s timeout", attempts=2),
        _result("broken", TestStatus.ERRORED, "could not open session: refused <&>"),
        _result("later", TestStatus.SKIPPED, "not ready", attempts=0, duration=0.0),
    ]
    return RunSummary.build("20261019-abc", results, STARTED, 3.25)


class TestRunSummary:
    """Test cases for RunSummary."""

    def test_counts(self, mixed_summary):
        assert mixed_summary.counts() == {
            "total": 5,
            "passed": 1,
            "failed": 1,
            "timed_out": 1,
            "errored": 1,
            "skipped": 1,
        }
        assert mixed_summary.completed_at > mixed_summary.started_at

    @pytest.mark.parametrize(
        "statuses,expected",
        [
            ([], 0),
            ([TestStatus.PASSED, TestStatus.SKIPPED], 0),
            ([TestStatus.SKIPPED, TestStatus.SKIPPED], 0),
            ([TestStatus.PASSED, TestStatus.FAILED], 1),
            ([TestStatus.TIMED_OUT], 1),
            ([TestStatus.ERRORED, TestStatus.PASSED], 1),
        ],
    )
    def test_exit_code(self, statuses, expected):
        results = [_result(f"t{i}", status) for i, status in enumerate(statuses)]

        assert RunSummary.build("r", results, STARTED, 1.0).exit_code == expected

    def test_aborted_summary_exits_two(self):
        summary = RunSummary.aborted("r", "backend unreachable")

        assert summary.exit_code == 2
        assert summary.total == 0

    def test_cancelled_exits_one(self):
        summary = RunSummary.build("r", [], STARTED, 1.0, cancelled=True)

        assert summary.exit_code == 1

    def test_success_rate_ignores_skipped(self, mixed_summary):
        assert mixed_summary.success_rate == pytest.approx(25.0)


class TestHumanReport:
    """Test cases for the human-readable report."""

    def test_lines(self, mixed_summary):
        text = render(mixed_summary, "human")
        lines = text.splitlines()

        assert lines[0] == "✓ tests/test_ui.yaml::passes (0.50s)"
        assert lines[1] == "✗ tests/test_ui.yaml::fails (0.50s)"
        assert lines[2] == "    click #go: no element matches '#go'"
        assert "⏱ tests/test_ui.yaml::slow (0.50s)" in lines
        assert "! tests/test_ui.yaml::broken (0.50s)" in lines
        assert "- tests/test_ui.yaml::later (0.00s)" in lines
        assert lines[-1] == (
            "5 tests: 1 passed, 1 failed, 1 timed out, 1 errored, 1 skipped in 3.25s"
        )
        assert lines[-2] == ""

    def test_error_printed_first(self):
        summary = RunSummary.aborted("r", "automation backend is unreachable")

        text = render(summary, ReportFormat.HUMAN)

        assert text.startswith("error: automation backend is unreachable")
        assert "0 tests: 0 passed" in text


class TestJsonReport:
    """Test cases for the JSON report."""

    def test_document(self, mixed_summary):
        document = json.loads(render(mixed_summary, "json"))

        assert document["run_id"] == "20261019-abc"
        assert document["summary"]["failed"] == 1
        assert document["cancelled"] is False
        assert document["error"] is None
        assert [r["status"] for r in document["results"]] == [
            "passed", "failed", "timed_out", "errored", "skipped",
        ]
        assert document["results"][1]["steps"][1]["status"] == "failed"


class TestJunitReport:
    """Test cases for the JUnit XML report."""

    def test_structure(self, mixed_summary):
        root = ET.fromstring(render(mixed_summary, "junit").encode("utf-8"))

        assert root.tag == "testsuite"
        assert root.get("tests") == "5"
        assert root.get("failures") == "2"
        assert root.get("errors") == "1"
        assert root.get("skipped") == "1"
        assert root.get("time") == "3.250"

        cases = root.findall("testcase")
        assert [c.get("name") for c in cases] == ["passes", "fails", "slow", "broken", "later"]
        assert all(c.get("classname") == "tests/test_ui.yaml" for c in cases)

        assert list(cases[0]) == []
        assert cases[1].find("failure").get("type") == "assertion"
        assert "click #go" in cases[1].find("failure").text
        assert cases[2].find("failure").get("type") == "timeout"
        assert cases[3].find("error").get("message") == "could not open session: refused <&>"
        assert cases[4].find("skipped").get("message") == "not ready"

    def test_control_characters_removed(self):
        summary = RunSummary.build(
            "r", [_result("odd", TestStatus.FAILED, "bad\x00output\x1b")], STARTED, 1.0
        )

        root = ET.fromstring(render(summary, "junit").encode("utf-8"))

        assert root.find("testcase/failure").get("message") == "badoutput"


class TestRenderErrors:
    def test_unknown_format(self, mixed_summary):
        with pytest.raises(ConfigError):
            render(mixed_summary, "html")


class TestWriteReport:
    """Test cases for writing reports."""

    def test_atomic_write(self, tmp_path):
        target = tmp_path / "out" / "report.xml"

        write_report("<testsuite/>\n", target)

        assert target.read_text(encoding="utf-8") == "<testsuite/>\n"
        assert [p.name for p in target.parent.iterdir()] == ["report.xml"]

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / "report.json"
        target.write_text("old")

        write_report("new", target)

        assert target.read_text() == "new"

    def test_stdout(self, capsys):
        write_report("hello\n")

        assert capsys.readouterr().out == "hello\n"
