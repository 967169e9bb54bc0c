"""Custom exceptions for Beads.

Every error carries a ``kind`` string so callers (human or agent) can tell
failures apart programmatically, e.g. in the CLI's ``{"error": kind}`` output.
"""

from typing import Any, Dict, List, Optional

__all__ = [
    "BeadsError",
    "NotFoundError",
    "InvalidParentError",
    "InvalidEdgeError",
    "CycleDetectedError",
    "CorruptRecordError",
    "LockTimeoutError",
    "MergeConflict",
    "IDCollisionError",
    "ConfigError",
    "ValidationError",
]


class BeadsError(Exception):
    """Base class for all Beads errors."""

    kind = "BeadsError"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": str(self)}


class NotFoundError(BeadsError):
    """Raised when a referenced issue id does not exist."""

    kind = "NotFound"

    def __init__(self, issue_id: str):
        super().__init__(f"Issue {issue_id} not found")
        self.issue_id = issue_id


class InvalidParentError(BeadsError):
    """Raised when a parent is missing or nesting would exceed the limit."""

    kind = "InvalidParent"


class InvalidEdgeError(BeadsError):
    """Raised for self-edges, unknown dependency types and similar."""

    kind = "InvalidEdge"


class CycleDetectedError(BeadsError):
    """Raised when a blocks edge would close a cycle."""

    kind = "CycleDetected"

    def __init__(self, message: str, path: Optional[List[str]] = None):
        super().__init__(message)
        self.path = path or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["path"] = self.path
        return data


class CorruptRecordError(BeadsError):
    """A log line that failed to parse.

    Collected as a warning during replay rather than raised.
    """

    kind = "CorruptRecord"

    def __init__(self, path: str, line_num: int, reason: str):
        super().__init__(f"{path}:{line_num}: {reason}")
        self.path = path
        self.line_num = line_num
        self.reason = reason


class LockTimeoutError(BeadsError):
    """Raised when unable to acquire the workspace lock. Retryable."""

    kind = "LockTimeout"
    retryable = True


class MergeConflict(BeadsError):
    """Structural problem introduced by reconciliation.

    Warning-level: collected into merge reports, never used to drop data.
    ``reason`` is ``"id_collision"`` or ``"cycle"``.
    """

    kind = "MergeConflict"

    def __init__(self, reason: str, message: str, **details: Any):
        super().__init__(message)
        self.reason = reason
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        data.update(self.details)
        return data


class IDCollisionError(BeadsError):
    """Raised when unable to generate unique ID after max retries."""

    kind = "IDCollision"


class ConfigError(BeadsError):
    """Raised for a missing workspace or malformed config file."""

    kind = "ConfigError"


class ValidationError(BeadsError):
    """Raised when a field value is out of range (status, priority, type)."""

    kind = "ValidationError"
