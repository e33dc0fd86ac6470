"""
Base exception classes for ui-test.

Provides a hierarchy of exceptions for the different ways a run can go wrong,
from bad configuration through backend outages to faults in the orchestrator
itself.
"""

from typing import Optional, Dict, Any, List


class UITestError(Exception):
    """Base exception class for all ui-test errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class ConfigError(UITestError):
    """Raised for bad flags, paths or configuration files."""

    def __init__(
        self,
        message: str,
        setting: Optional[str] = None,
        violations: Optional[List[str]] = None,
    ):
        super().__init__(message, "CONFIG_INVALID")
        self.setting = setting
        self.violations = violations or []
        self.context.update(
            {
                "setting": setting,
                "violations": self.violations,
            }
        )


class DiscoveryError(UITestError):
    """
    Raised when one or more test definitions could not be parsed.

    Discovery is partial-failure tolerant: the error carries every failure
    together with the suite built from the files that did parse.
    """

    def __init__(self, message: str, failures: Optional[list] = None, suite=None):
        super().__init__(message, "DISCOVERY_FAILED")
        self.failures = failures or []
        self.suite = suite
        self.context.update(
            {
                "failed_files": [failure.path for failure in self.failures],
            }
        )


class BackendConnectionError(UITestError):
    """Raised when the automation backend is unreachable or rejects the handshake."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(message, "BACKEND_CONNECTION_FAILED")
        self.command = command
        self.timeout = timeout
        self.context.update(
            {
                "command": command,
                "timeout": timeout,
            }
        )


class ProtocolError(UITestError):
    """Raised when the backend answers with an error or malformed message."""

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        rpc_code: Optional[int] = None,
    ):
        super().__init__(message, "PROTOCOL_ERROR")
        self.method = method
        self.rpc_code = rpc_code
        self.context.update(
            {
                "method": method,
                "rpc_code": rpc_code,
            }
        )


class AssertionFailure(UITestError):
    """Raised when a step's check does not hold in the page."""

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message, "ASSERTION_FAILED")
        self.step = step
        self.context.update({"step": step})


class StepTimeoutError(UITestError):
    """Raised when a backend round-trip exceeds its deadline."""

    def __init__(self, message: str, timeout: Optional[float] = None):
        super().__init__(message, "TIMEOUT")
        self.timeout = timeout
        self.context.update({"timeout": timeout})


class InternalError(UITestError):
    """Raised for unexpected faults inside the orchestrator itself."""

    def __init__(self, message: str, case_id: Optional[str] = None):
        super().__init__(message, "INTERNAL_ERROR")
        self.case_id = case_id
        self.context.update({"case_id": case_id})
