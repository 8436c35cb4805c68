"""
Typed rejections raised by the item lifecycle engine and its collaborators.

Every error carries a stable ``code`` for programmatic handling and a
human-readable ``message`` suitable for showing to a user.
"""

from typing import Any, Dict, Optional


class BoardError(Exception):
    """Base class for all engine rejections."""

    default_code = "BOARD_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code or self.default_code
        self.message = message
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "error": self.code.lower(),
            "code": self.code,
            "message": self.message,
        }


class ItemNotFoundError(BoardError):
    """Raised when an operation names an item the store does not hold."""

    default_code = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item '{item_id}' not found")


class BoardNotFoundError(BoardError):
    default_code = "BOARD_NOT_FOUND"

    def __init__(self, board_id: str):
        self.board_id = board_id
        super().__init__(f"Board '{board_id}' not found")


class PermissionDeniedError(BoardError):
    """Raised when an actor lacks the capability an operation requires."""

    default_code = "PERMISSION_DENIED"


class InvalidOperationError(BoardError):
    """Raised when an operation's input is well-typed but not acceptable."""

    default_code = "INVALID_OPERATION"


class VersionConflictError(BoardError):
    """Raised when a write was based on a stale item version."""

    default_code = "VERSION_CONFLICT"

    def __init__(self, item_id: str, expected: int, actual: Optional[int]):
        self.item_id = item_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Item '{item_id}' was modified concurrently "
            f"(expected stored version {expected}, found {actual})"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"item_id": self.item_id, "expected": self.expected, "actual": self.actual})
        return data


class PersistenceError(BoardError):
    """Raised when the persistence collaborator fails to store a write."""

    default_code = "PERSISTENCE_FAILED"


class HistoryMismatchError(BoardError):
    """Raised when an item's cached score or stage disagrees with its history."""

    default_code = "HISTORY_MISMATCH"
