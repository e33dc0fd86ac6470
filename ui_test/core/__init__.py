"""Core components for ui-test."""

from .config import Config
from .exceptions import (
    UITestError,
    ConfigError,
    DiscoveryError,
    BackendConnectionError,
    ProtocolError,
    AssertionFailure,
    StepTimeoutError,
    InternalError,
)
from .logging_config import setup_logging, get_logger
from .workflow import RunContext, generate_run_id

__all__ = [
    "Config",
    "UITestError",
    "ConfigError",
    "DiscoveryError",
    "BackendConnectionError",
    "ProtocolError",
    "AssertionFailure",
    "StepTimeoutError",
    "InternalError",
    "setup_logging",
    "get_logger",
    "RunContext",
    "generate_run_id",
]
