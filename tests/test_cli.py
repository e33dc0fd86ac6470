"""
Tests for the ui-test command line.

Exercises the whole pipeline (discovery, selection, scheduling, reporting and
exit codes) against the scripted fake backend.
"""

import json
import os
import xml.etree.ElementTree as ET
from unittest.mock import patch

import pytest

from ui_test import __version__
from ui_test.cli import create_parser, main
from ui_test.execution.models import StepStatus

from conftest import write_definition


@pytest.fixture(autouse=True)
def clean_environment():
    """Keep UI_TEST_* variables from the developer's shell out of the tests."""
    keep = {k: v for k, v in os.environ.items() if not k.startswith("UI_TEST_") and k != "CI"}
    with patch.dict(os.environ, keep, clear=True):
        yield


@pytest.fixture
def scenario_dir(tmp_path):
    """Three tests: one passes, one fails at its second step, one hangs."""
    root = tmp_path / "ui"
    write_definition(
        root,
        "test_a.yaml",
        {"name": "a passes", "steps": [{"navigate": "https://example.com"}, {"click": "#a"}]},
    )
    write_definition(
        root,
        "test_b.yaml",
        {
            "name": "b fails",
            "steps": [
                {"navigate": "https://example.com"},
                {"assert_text": {"selector": "h1", "expected": "Welcome"}},
                {"click": "#never"},
            ],
        },
    )
    write_definition(
        root,
        "test_c.yaml",
        {"name": "c hangs", "steps": [{"click": "#c-slow"}]},
    )
    return root


def _run(args, client_factory):
    return main([str(a) for a in args], client_factory=client_factory)


class TestScenarios:
    """End-to-end runs against the fake backend."""

    def test_pass_fail_timeout_with_two_jobs(self, scenario_dir, fake_backend, client_factory, capsys):
        fake_backend.script("assert_text h1 contains 'Welcome'", StepStatus.FAILED)
        fake_backend.delays["click #c-slow"] = 5.0

        code = _run(
            [scenario_dir, "-j", "2", "--step-timeout", "100ms", "--timeout", "2s", "--format", "json"],
            client_factory,
        )

        assert code == 1
        document = json.loads(capsys.readouterr().out)
        statuses = {r["name"]: r["status"] for r in document["results"]}
        assert statuses == {"a passes": "passed", "b fails": "failed", "c hangs": "timed_out"}
        assert [r["name"] for r in document["results"]] == ["a passes", "b fails", "c hangs"]
        assert "click #never" not in fake_backend.executed
        assert not fake_backend.open_sessions

    def test_all_pass_exits_zero(self, scenario_dir, client_factory, capsys):
        code = _run([scenario_dir / "test_a.yaml"], client_factory)

        out = capsys.readouterr().out
        assert code == 0
        assert "✓" in out
        assert out.rstrip().endswith("s") and "1 test: 1 passed" in out

    def test_empty_directory_exits_zero(self, tmp_path, fake_backend, client_factory, capsys):
        code = _run([tmp_path], client_factory)

        assert code == 0
        assert "0 tests" in capsys.readouterr().out
        assert fake_backend.clients_created == 0

    def test_skipped_only_does_not_fail(self, tmp_path, fake_backend, client_factory):
        write_definition(tmp_path, "test_skip.yaml", {"tests": [{"name": "later", "skip": True}]})

        assert _run([tmp_path], client_factory) == 0
        assert fake_backend.opens == 0

    def test_retries_flag(self, scenario_dir, fake_backend, client_factory, capsys):
        fake_backend.script("click #a", StepStatus.ERRORED, StepStatus.PASSED)

        code = _run([scenario_dir / "test_a.yaml", "--retries", "1", "--no-preflight"], client_factory)

        assert code == 0
        assert fake_backend.opens == 2

    def test_filter(self, scenario_dir, fake_backend, client_factory, capsys):
        code = _run([scenario_dir, "--filter", "test_a", "--no-preflight"], client_factory)

        assert code == 0
        assert fake_backend.opens == 1

    def test_junit_output_file(self, scenario_dir, client_factory, tmp_path, capsys):
        target = tmp_path / "reports" / "junit.xml"

        code = _run([scenario_dir / "test_a.yaml", "--format", "junit", "-o", target], client_factory)

        assert code == 0
        assert capsys.readouterr().out == ""
        root = ET.parse(target).getroot()
        assert root.get("tests") == "1"


class TestDryRun:
    """Dry runs never touch the backend."""

    def test_lists_selection(self, tmp_path, fake_backend, client_factory, capsys):
        write_definition(
            tmp_path,
            "test_list.yaml",
            {
                "tests": [
                    {"name": "one", "steps": [{"click": "#1"}]},
                    {"name": "two", "steps": [{"click": "#2"}]},
                    {"name": "three", "skip": "wip"},
                ]
            },
        )
        write_definition(tmp_path, "test_zbroken.yaml", "tests: [")

        code = _run([tmp_path, "--dry-run"], client_factory)

        lines = capsys.readouterr().out.splitlines()
        assert code == 0
        assert lines[0] == "3 test(s) selected"
        assert lines[1].endswith("::one")
        assert lines[3].endswith("::three [skip]")
        assert lines[4].startswith("! ") and "test_zbroken.yaml" in lines[4]
        assert fake_backend.clients_created == 0
        assert fake_backend.calls == 0

    def test_dry_run_with_filter(self, scenario_dir, fake_backend, client_factory, capsys):
        code = _run([scenario_dir, "-n", "--filter", "hangs"], client_factory)

        out = capsys.readouterr().out
        assert code == 0
        assert out.startswith("1 test(s) selected")
        assert fake_backend.clients_created == 0


class TestExitCodeTwo:
    """Configuration problems and global outages exit 2."""

    def test_missing_path(self, tmp_path, client_factory, capsys):
        code = _run([tmp_path / "missing"], client_factory)

        assert code == 2
        assert "error: Test path does not exist" in capsys.readouterr().out

    @pytest.mark.parametrize(
        "flags",
        [["-j", "0"], ["-j", "many"], ["--timeout", "soon"], ["--retries", "-1"]],
    )
    def test_invalid_flag_values(self, tmp_path, fake_backend, client_factory, flags):
        assert _run([tmp_path] + flags, client_factory) == 2
        assert fake_backend.clients_created == 0

    def test_invalid_config_file(self, tmp_path, client_factory):
        config_file = tmp_path / "ui-test.yaml"
        config_file.write_text("jobs: 2\nmystery: true\n")

        assert _run([tmp_path, "--config", config_file], client_factory) == 2

    def test_strict_discovery(self, tmp_path, fake_backend, client_factory, capsys):
        write_definition(tmp_path, "test_broken.yaml", "tests: [")

        code = _run([tmp_path, "--strict", "--format", "json"], client_factory)

        document = json.loads(capsys.readouterr().out)
        assert code == 2
        assert "test_broken.yaml" in document["error"]
        assert fake_backend.clients_created == 0

    def test_non_strict_discovery_failure_exits_one(self, tmp_path, client_factory):
        write_definition(tmp_path, "test_broken.yaml", "tests: [")

        assert _run([tmp_path], client_factory) == 1

    def test_backend_unreachable_preflight(self, scenario_dir, fake_backend, client_factory, capsys):
        fake_backend.unreachable = True

        code = _run([scenario_dir], client_factory)

        out = capsys.readouterr().out
        assert code == 2
        assert "unreachable" in out
        assert fake_backend.opens == 1

    def test_unreachable_without_preflight_is_per_test(self, scenario_dir, fake_backend, client_factory):
        fake_backend.unreachable = True

        assert _run([scenario_dir, "--no-preflight"], client_factory) == 1
        assert fake_backend.opens == 3

    def test_unexpected_error_still_reports(self, scenario_dir, client_factory, capsys):
        with patch("ui_test.cli.TestRunner.select", side_effect=RuntimeError("kaboom")):
            code = _run([scenario_dir, "--format", "json"], client_factory)

        document = json.loads(capsys.readouterr().out)
        assert code == 2
        assert "kaboom" in document["error"]


class TestParser:
    """Test cases for argument parsing."""

    def test_defaults(self):
        args = create_parser().parse_args([])

        assert args.test_path == "."
        assert args.format == "human"
        assert args.dry_run is False

    def test_help_has_exit_codes(self):
        help_text = create_parser().format_help()

        assert "Exit codes:" in help_text
        assert "skipped tests do not fail a run" in help_text
        assert "CI integration:" in help_text

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_unknown_format_rejected(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["--format", "html"])

        assert exc_info.value.code == 2
