"""
Exception hierarchy for face tagging.

Every error carries a short user-facing message next to the detailed one, so the
pipeline can report a status line without leaking internals.
"""

from typing import Any


class FaceTaggerError(Exception):
    """Base exception for all face tagging errors."""

    def __init__(
        self,
        message: str,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.user_message = user_message or "Face recognition failed"
        self.details = details or {}


class ToolUnavailableError(FaceTaggerError):
    """Raised when the face_recognition executable cannot be found on PATH."""

    def __init__(self, executable: str) -> None:
        super().__init__(
            f"Recognizer executable not found: {executable}",
            user_message="Face recognition not found",
            details={"executable": executable},
        )
        self.executable = executable


class RecognizerProcessError(FaceTaggerError):
    """Raised when the recognizer cannot be started or exits with a non-zero status."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(
            message,
            details={"returncode": returncode, "stderr": stderr},
        )
        self.returncode = returncode
        self.stderr = stderr


class OutputUnreadableError(FaceTaggerError):
    """Raised when the recognizer output artifact cannot be opened or read."""


class CatalogError(FaceTaggerError):
    """Raised when tags cannot be read from or written to the catalog."""
