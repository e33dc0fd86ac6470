"""
Configuration management for ui-test.

Handles defaults, an optional YAML/JSON configuration file, environment
variables and command-line overrides. Sources are merged in that order, later
sources winning.
"""

import json
import os
import shlex
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Dict, Any, List, Union

import yaml

from .durations import parse_duration
from .exceptions import ConfigError

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]
VALID_LOG_FORMATS = ["text", "json"]
RETRYABLE_STATUSES = ["errored", "timed_out"]

DEFAULT_BACKEND_COMMAND = ["npx", "@playwright/mcp@latest", "--isolated"]
MAX_DEFAULT_JOBS = 4

_DURATION_FIELDS = ("case_timeout", "step_timeout", "connect_timeout", "close_timeout")

# Environment variable -> config field
_ENV_FIELDS = {
    "UI_TEST_LOG_LEVEL": "log_level",
    "UI_TEST_LOG_FORMAT": "log_format",
    "UI_TEST_LOG_FILE": "log_file",
    "UI_TEST_JOBS": "jobs",
    "UI_TEST_TIMEOUT": "case_timeout",
    "UI_TEST_STEP_TIMEOUT": "step_timeout",
    "UI_TEST_CONNECT_TIMEOUT": "connect_timeout",
    "UI_TEST_RETRIES": "retries",
    "UI_TEST_BACKEND_COMMAND": "backend_command",
    "UI_TEST_HEADLESS": "headless_mode",
    "UI_TEST_ARTIFACTS_DIR": "artifacts_dir",
}


def default_jobs() -> int:
    """Number of available processing units, capped."""
    return max(1, min(os.cpu_count() or 1, MAX_DEFAULT_JOBS))


@dataclass
class Config:
    """Configuration class for ui-test with environment variable support."""

    # Environment detection
    ci_mode: bool = field(default=False)

    # Browser settings
    headless_mode: Optional[bool] = field(default=None)

    # Logging configuration
    log_level: str = field(default="INFO")
    log_format: str = field(default="text")
    log_file: Optional[Path] = field(default=None)

    # Scheduling
    jobs: int = field(default_factory=default_jobs)

    # Timeouts in seconds
    case_timeout: float = field(default=60.0)
    step_timeout: float = field(default=15.0)
    connect_timeout: float = field(default=30.0)
    close_timeout: float = field(default=5.0)

    # Retry policy
    retries: int = field(default=0)
    retry_on: List[str] = field(default_factory=lambda: list(RETRYABLE_STATUSES))

    # Backend (MCP server) configuration
    backend_command: List[str] = field(
        default_factory=lambda: list(DEFAULT_BACKEND_COMMAND)
    )
    backend_env: Dict[str, str] = field(default_factory=dict)
    preflight: bool = field(default=True)

    # Screenshot output
    artifacts_dir: Path = field(default_factory=lambda: Path.cwd() / "artifacts")

    def __post_init__(self):
        """Normalize values after construction."""
        self.log_level = str(self.log_level).upper()
        if self.log_level == "WARN":
            self.log_level = "WARNING"

        self.log_format = str(self.log_format).lower()

        # Machine-readable logs in CI unless explicitly chosen otherwise
        if self.ci_mode and self.log_format == "text":
            self.log_format = "json"

        self.artifacts_dir = Path(self.artifacts_dir)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)

    @property
    def is_ci_mode(self) -> bool:
        """Check if running in CI environment."""
        return self.ci_mode

    @property
    def debug_enabled(self) -> bool:
        """Check if debug logging is enabled."""
        return self.log_level == "DEBUG"

    def get_effective_headless_mode(self) -> bool:
        """Get effective headless mode based on CI and override settings."""
        if self.headless_mode is not None:
            return self.headless_mode
        return self.ci_mode

    def backend_argv(self) -> List[str]:
        """Command line used to launch one backend session."""
        argv = list(self.backend_command)
        if self.get_effective_headless_mode() and "--headless" not in argv:
            argv.append("--headless")
        return argv

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for logging."""
        return {
            "ci_mode": self.ci_mode,
            "headless_mode": self.get_effective_headless_mode(),
            "log_level": self.log_level,
            "log_format": self.log_format,
            "log_file": str(self.log_file) if self.log_file else None,
            "jobs": self.jobs,
            "case_timeout": self.case_timeout,
            "step_timeout": self.step_timeout,
            "connect_timeout": self.connect_timeout,
            "retries": self.retries,
            "retry_on": list(self.retry_on),
            "backend_command": " ".join(self.backend_command),
            "preflight": self.preflight,
            "artifacts_dir": str(self.artifacts_dir),
        }

    def validate(self) -> None:
        """Validate configuration and raise ConfigError if invalid."""
        errors = []

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(
                f"Invalid log level: {self.log_level}. Must be one of {VALID_LOG_LEVELS}"
            )

        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(
                f"Invalid log format: {self.log_format}. Must be one of {VALID_LOG_FORMATS}"
            )

        if self.jobs < 1:
            errors.append(f"jobs must be at least 1, got {self.jobs}")

        for name in _DURATION_FIELDS:
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive, got {getattr(self, name)}")

        if self.retries < 0:
            errors.append(f"retries cannot be negative, got {self.retries}")

        unknown = [s for s in self.retry_on if s not in RETRYABLE_STATUSES]
        if unknown:
            errors.append(
                f"Invalid retry_on statuses: {unknown}. Must be within {RETRYABLE_STATUSES}"
            )

        if not self.backend_command:
            errors.append("backend_command cannot be empty")

        if errors:
            message = "Configuration validation failed: " + "; ".join(errors)
            raise ConfigError(message, setting="config", violations=errors)

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "Config":
        """
        Build a configuration from loosely typed values.

        Durations may be given as strings such as ``30s``; the backend command
        may be a single shell-style string.

        Raises:
            ConfigError: If a key is unknown or a value cannot be converted.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigError(
                f"Unknown configuration keys: {', '.join(unknown)}",
                setting=unknown[0],
            )

        coerced: Dict[str, Any] = {}
        for key, value in values.items():
            try:
                coerced[key] = _coerce(key, value)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {key}: {e}", setting=key)

        return cls(**coerced)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls.from_dict(env_values())

    @classmethod
    def load(
        cls,
        config_file: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "Config":
        """
        Load configuration from all sources.

        Args:
            config_file: Optional YAML or JSON configuration file
            overrides: Command-line values; ``None`` entries are ignored

        Returns:
            Validated configuration
        """
        values: Dict[str, Any] = {}
        if config_file is not None:
            values.update(read_config_file(Path(config_file)))
        values.update(env_values())
        values.update({k: v for k, v in (overrides or {}).items() if v is not None})

        config = cls.from_dict(values)
        config.validate()
        return config


def read_config_file(path: Path) -> Dict[str, Any]:
    """Read a YAML or JSON configuration file into a dictionary."""
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}", setting="config")

    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid configuration file {path}: {e}", setting="config")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Configuration file {path} must contain a mapping", setting="config"
        )
    return data


def env_values() -> Dict[str, Any]:
    """Collect configuration values from the environment."""
    values: Dict[str, Any] = {}

    if os.getenv("CI", "").lower() == "true":
        values["ci_mode"] = True

    for env_name, key in _ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw is not None and raw != "":
            values[key] = raw

    return values


def _coerce(key: str, value: Any) -> Any:
    if key in _DURATION_FIELDS:
        return parse_duration(value)
    if key in ("jobs", "retries"):
        if isinstance(value, bool):
            raise ValueError(f"expected an integer, got {value!r}")
        return int(value)
    if key in ("ci_mode", "preflight"):
        return _to_bool(value)
    if key == "headless_mode":
        return None if value is None else _to_bool(value)
    if key in ("artifacts_dir", "log_file"):
        return None if value is None else Path(value)
    if key == "backend_command":
        if isinstance(value, str):
            return shlex.split(value)
        return [str(part) for part in value]
    if key == "retry_on":
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [str(part) for part in value]
    if key == "backend_env":
        if not isinstance(value, dict):
            raise ValueError("expected a mapping")
        return {str(k): str(v) for k, v in value.items()}
    return value


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"expected a boolean, got {value!r}")
