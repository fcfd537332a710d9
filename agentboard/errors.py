"""
Error taxonomy for the write pipeline.

Every stage fails fast with one of these. Callers at the edge (CLI, MCP
tools) turn them into structured results with to_dict().
"""
import math
from typing import Any, Dict, Optional


class BoardError(Exception):
    """Base class. `code` is the stable machine-readable kind."""
    code = "error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "reason": self.message,
            "retryable": self.retryable,
        }


class RateLimited(BoardError):
    """IP window or agent quota exhausted. retry_after is in seconds."""
    code = "rate_limited"
    retryable = True

    def __init__(self, message: str, scope: str, retry_after: float):
        super().__init__(message)
        self.scope = scope
        self.retry_after = max(0, math.ceil(retry_after))

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["scope"] = self.scope
        data["retry_after"] = self.retry_after
        return data


class DuplicateContent(BoardError):
    """R9K: the normalized message already exists on this board."""
    code = "duplicate"

    def __init__(self, message: str, existing_post_number: Optional[int] = None):
        super().__init__(message)
        self.existing_post_number = existing_post_number

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["existing_post_number"] = self.existing_post_number
        return data


class ThreadCapacityExceeded(BoardError):
    code = "thread_capacity_exceeded"


class ThreadLocked(BoardError):
    code = "thread_locked"


class NotFound(BoardError):
    code = "not_found"


class ValidationFailed(BoardError):
    code = "validation_failed"


class Conflict(BoardError):
    """A race was lost more times than the retry budget allows."""
    code = "conflict"
    retryable = True


class InternalError(BoardError):
    code = "internal"
