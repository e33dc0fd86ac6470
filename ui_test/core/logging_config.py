"""
Logging configuration for ui-test.

Provides structured JSON logging for CI and a compact text format for local
runs. Console output goes to stderr so reports written to stdout stay clean.
Every record carries the run id; records emitted while a test runs also carry
its case id.
"""

import logging
import logging.handlers
import json
import sys
from datetime import datetime, timezone

from .config import Config

# Record attributes copied into log output when present
CONTEXT_FIELDS = ("case_id", "step", "attempt")

# Backend protocol libraries; their INFO output is per-message noise
CHATTY_LOGGERS = ("mcp", "anyio")

_HANDLER_MARK = "_ui_test_handler"


class RunFormatter(logging.Formatter):
    """Base formatter that knows the run id and the per-case context."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def context(self, record: logging.LogRecord) -> dict:
        return {
            name: getattr(record, name)
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        }


class StructuredFormatter(RunFormatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "run_id": self.run_id,
            "message": record.getMessage(),
        }
        entry.update(self.context(record))

        metadata = getattr(record, "metadata", None)
        if metadata:
            entry["metadata"] = metadata
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(RunFormatter):
    """Compact single-line format for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{timestamp} {record.levelname:<7} {record.name}: {record.getMessage()}"]

        fields = dict(self.context(record))
        fields.update(getattr(record, "metadata", None) or {})
        if fields:
            parts.append(" ".join(f"{key}={value}" for key, value in fields.items()))
        parts.append(f"run={self.run_id[-8:]}")

        line = " | ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(config: Config, run_id: str) -> logging.Logger:
    """
    Install the ui-test handlers on the root logger.

    Handlers from an earlier call are replaced; handlers installed by anyone
    else are left alone.

    Args:
        config: Configuration object with logging settings
        run_id: Unique run identifier for log correlation

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            root_logger.removeHandler(handler)
            handler.close()

    log_level = getattr(logging, config.log_level)
    root_logger.setLevel(log_level)

    if config.log_format == "json":
        formatter = StructuredFormatter(run_id)
    else:
        formatter = TextFormatter(run_id)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    _install(root_logger, console_handler)

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        # Files always get JSON lines
        file_handler.setFormatter(StructuredFormatter(run_id))
        file_handler.setLevel(log_level)
        _install(root_logger, file_handler)

    library_level = logging.DEBUG if config.debug_enabled else logging.WARNING
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    logging.getLogger("ui_test.logging").debug(
        "Logging configured",
        extra={
            "metadata": {
                "log_level": config.log_level,
                "log_format": config.log_format,
                "ci_mode": config.is_ci_mode,
            }
        },
    )
    return root_logger


def _install(root_logger: logging.Logger, handler: logging.Handler) -> None:
    setattr(handler, _HANDLER_MARK, True)
    root_logger.addHandler(handler)


class ContextAdapter(logging.LoggerAdapter):
    """Adds fixed context to every record; extras given at the call site win."""

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        for key, value in self.extra.items():
            extra.setdefault(key, value)
        return msg, kwargs


def get_logger(name: str, **context):
    """Return a logger for ``name``, wrapped in a ContextAdapter when context is given."""
    logger = logging.getLogger(name)
    if context:
        return ContextAdapter(logger, context)
    return logger


def log_performance(logger, operation: str, duration: float, **metadata) -> None:
    """Record how long an operation took."""
    logger.info(
        f"{operation} took {duration:.2f}s",
        extra={"metadata": {"operation": operation, "duration": round(duration, 3), **metadata}},
    )


def log_mcp_call(
    logger,
    server: str,
    method: str,
    duration: float,
    success: bool,
    **metadata,
) -> None:
    """
    Record one call to the automation backend.

    Successful calls are logged at DEBUG so a normal run stays quiet; failures
    are logged at WARNING.

    Args:
        logger: Logger instance
        server: Backend name
        method: Tool or protocol method called
        duration: Call duration in seconds
        success: Whether the call succeeded
        **metadata: Additional metadata, such as the error text
    """
    level = logging.DEBUG if success else logging.WARNING
    outcome = "ok" if success else "failed"

    logger.log(
        level,
        f"{server} {method} {outcome} in {duration * 1000:.0f}ms",
        extra={
            "metadata": {
                "mcp_server": server,
                "method": method,
                "duration": round(duration, 3),
                "success": success,
                **metadata,
            }
        },
    )
