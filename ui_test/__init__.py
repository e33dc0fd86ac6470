"""
ui-test - UI Test Orchestration Engine

Discovers declarative UI test cases, runs them against a Playwright MCP backend
with bounded parallelism, timeouts and retries, and reports the results.
"""

__version__ = "0.1.0"
__author__ = "ui-test developers"

from .core.config import Config
from .core.exceptions import UITestError
from .core.logging_config import setup_logging
from .core.workflow import RunContext

__all__ = [
    "Config",
    "UITestError",
    "setup_logging",
    "RunContext",
]
