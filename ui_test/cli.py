"""
Main CLI interface for ui-test.

Parses arguments, loads configuration, runs the selected tests and writes the
report. The process exit code is derived from the RunSummary alone.
"""

import argparse
import asyncio
import signal
import sys
from typing import Callable, List, Optional

from . import __version__
from .core.config import Config
from .core.durations import format_duration
from .core.exceptions import ConfigError, DiscoveryError
from .core.logging_config import get_logger, setup_logging
from .core.workflow import RunContext
from .discovery.models import TestSuite
from .execution.models import TestResult
from .reporting.models import EXIT_OK, EXIT_USAGE, ReportFormat, RunSummary
from .reporting.renderer import STATUS_SYMBOLS, render, write_report
from .runner import TestRunner

EPILOG = """
Examples:
  ui-test                                  run every test below the current directory
  ui-test tests/ui -j 8 --retries 1        eight workers, retry errored/timed out tests once
  ui-test --filter "tag:smoke,login"       tests tagged smoke or with "login" in their id
  ui-test -n tests/ui                      list the selected tests without running them
  ui-test --format junit -o report.xml     write a JUnit XML report for CI

CI integration:
  With CI=true the browser runs headless and logs are JSON lines on stderr.
  Reports go to stdout unless -o is given, so they can be piped or archived.
  Settings can also come from --config FILE and UI_TEST_* environment variables.

Exit codes:
  0  all selected tests passed (skipped tests do not fail a run)
  1  one or more tests failed, timed out or errored, or the run was cancelled
  2  invalid configuration or arguments, malformed definitions with --strict,
     or the automation backend was unreachable before any test ran
"""


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ui-test",
        description="ui-test - run declarative UI tests against a Playwright MCP backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )

    parser.add_argument(
        "test_path",
        nargs="?",
        default=".",
        metavar="TEST_PATH",
        help="Test definition file or directory to search (default: current directory)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging and per-test progress lines",
    )
    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="List the selected tests without running them",
    )
    parser.add_argument(
        "--format",
        choices=[f.value for f in ReportFormat],
        default=ReportFormat.HUMAN.value,
        help="Report format (default: human)",
    )
    parser.add_argument(
        "--filter",
        metavar="EXPR",
        help="Comma-separated terms: 'tag:NAME' or a substring of the test id",
    )
    parser.add_argument(
        "--jobs", "-j",
        metavar="N",
        help="Number of tests to run in parallel",
    )
    parser.add_argument(
        "--timeout",
        metavar="DURATION",
        help="Default per-test timeout, e.g. 60s or 2m",
    )
    parser.add_argument(
        "--step-timeout",
        metavar="DURATION",
        help="Per-step timeout, e.g. 15s",
    )
    parser.add_argument(
        "--retries",
        metavar="N",
        help="Times to re-run a test that errored or timed out",
    )
    parser.add_argument(
        "--output", "-o",
        metavar="PATH",
        help="Write the report to a file instead of stdout",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="YAML or JSON configuration file",
    )
    parser.add_argument(
        "--backend-command",
        metavar="CMD",
        help="Command line that starts one MCP server session",
    )
    parser.add_argument(
        "--no-preflight",
        action="store_true",
        help="Skip the backend reachability check before running tests",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Abort with exit code 2 if any test definition is malformed",
    )
    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def config_overrides(args: argparse.Namespace) -> dict:
    """Configuration values given on the command line."""
    return {
        "log_level": "DEBUG" if args.verbose else None,
        "jobs": args.jobs,
        "case_timeout": args.timeout,
        "step_timeout": args.step_timeout,
        "retries": args.retries,
        "backend_command": args.backend_command,
        "preflight": False if args.no_preflight else None,
    }


def print_selection(suite: TestSuite, stream=None) -> None:
    """Dry-run listing of the selected tests."""
    stream = stream or sys.stdout
    lines = [f"{len(suite.cases)} test(s) selected"]
    for case in suite.cases:
        lines.append(f"{case.id} [skip]" if case.skip else case.id)
    for failure in suite.failures:
        lines.append(f"! {failure.path}: {failure.message}")
    stream.write("\n".join(lines) + "\n")
    stream.flush()


def print_progress(result: TestResult) -> None:
    """Progress line on stderr as each test finishes."""
    symbol = STATUS_SYMBOLS[result.status]
    print(
        f"{symbol} {result.case_id} ({format_duration(result.duration)})",
        file=sys.stderr,
        flush=True,
    )


async def run_with_signals(runner: TestRunner, suite: TestSuite) -> RunSummary:
    """Run the suite, turning SIGINT and SIGTERM into a graceful cancel."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not the main thread, or a platform without loop signal support
            pass

    try:
        return await runner.run(suite)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def emit_report(summary: RunSummary, args: argparse.Namespace) -> int:
    """Render and write the report; returns the process exit code."""
    try:
        write_report(render(summary, args.format), args.output)
    except OSError as e:
        print(f"Could not write report to {args.output}: {e}", file=sys.stderr)
        return EXIT_USAGE
    return summary.exit_code


def main(
    args: Optional[List[str]] = None,
    client_factory: Optional[Callable] = None,
) -> int:
    """
    Main CLI entry point.

    Args:
        args: Command-line arguments; defaults to ``sys.argv[1:]``
        client_factory: Builds one session client per test; defaults to a
            Playwright MCP client built from the configuration

    Returns:
        Process exit code
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)
    context = RunContext()

    try:
        config = Config.load(parsed_args.config, overrides=config_overrides(parsed_args))
    except ConfigError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        summary = RunSummary.aborted(context.run_id, e.message, context.started_at)
        return emit_report(summary, parsed_args)

    setup_logging(config, context.run_id)
    logger = get_logger("ui_test.cli")
    logger.info(
        f"ui-test {__version__} starting",
        extra={"metadata": {"test_path": parsed_args.test_path, "config": config.to_dict()}},
    )

    runner = TestRunner(
        config,
        client_factory=client_factory,
        context=context,
        on_result=print_progress if parsed_args.verbose else None,
    )

    try:
        suite = runner.select(
            parsed_args.test_path, parsed_args.filter, strict=parsed_args.strict
        )

        if parsed_args.dry_run:
            print_selection(suite)
            return EXIT_OK

        summary = asyncio.run(run_with_signals(runner, suite))

    except ConfigError as e:
        logger.error(f"Configuration error: {e.message}", extra={"metadata": e.to_dict()})
        summary = RunSummary.aborted(context.run_id, e.message, context.started_at)

    except DiscoveryError as e:
        details = "; ".join(f"{f.path}: {f.message}" for f in e.failures)
        logger.error(f"Test discovery failed: {e.message}", extra={"metadata": e.to_dict()})
        summary = RunSummary.aborted(
            context.run_id, f"{e.message}: {details}", context.started_at
        )

    except KeyboardInterrupt:
        logger.warning("Interrupted before results were collected")
        summary = RunSummary.build(
            context.run_id, (), context.started_at, context.duration, cancelled=True
        )

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        summary = RunSummary.aborted(
            context.run_id, f"internal error: {type(e).__name__}: {e}", context.started_at
        )

    logger.info("ui-test finished", extra={"metadata": summary.to_summary()})
    return emit_report(summary, parsed_args)


if __name__ == "__main__":
    sys.exit(main())
