"""
ActionResult — what a DM-side action reports back to whoever triggered it.

Failures stay local to the client: the message is shown next to the
control, never written to the shared store.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class ActionResult:
    success: bool
    message: str = ""
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "") -> "ActionResult":
        return cls(True, message, data)

    @classmethod
    def fail(cls, message: str, data: Optional[Any] = None) -> "ActionResult":
        return cls(False, message, data)
