"""
Run identification for ui-test.

Generates run ids used to correlate log lines, screenshots and reports.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any


def generate_run_id() -> str:
    """
    Generate a unique run ID.

    Returns:
        Identifier of the form ``YYYYMMDD-<12 hex chars>``
    """
    suffix = uuid.uuid4().hex[:12]
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    return f"{timestamp}-{suffix}"


@dataclass
class RunContext:
    """Context information for one invocation of the runner."""

    run_id: str = field(default_factory=generate_run_id)
    start_time: float = field(default_factory=time.monotonic)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        """Get current run duration in seconds."""
        return time.monotonic() - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        """Convert run context to dictionary."""
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "duration": self.duration,
            "metadata": self.metadata,
        }
