"""
Session state for the automation backend.

A Session is a live value owned by exactly one executor attempt. It is never a
module-level singleton and never shared between workers.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class Session:
    """One live connection to the automation backend."""

    handle: Any
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    opened_at: float = field(default_factory=time.monotonic)
    server_info: Dict[str, Any] = field(default_factory=dict)
    usable: bool = True
    closed: bool = False

    def invalidate(self) -> None:
        """Mark the session as unusable; it must be closed and not reused."""
        self.usable = False

    @property
    def age(self) -> float:
        return time.monotonic() - self.opened_at
