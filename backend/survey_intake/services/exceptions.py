from __future__ import annotations


class IntakeError(Exception):
    """Base exception for submission intake errors."""


class EncodingRecoveryFailure(IntakeError):
    """Text could not be redecoded; the original value was kept."""

    def __init__(self, text: str, reason: str) -> None:
        self.text = text
        self.reason = reason
        super().__init__(f"encoding recovery failed ({reason}): {text!r}")


class GoogleAuthError(IntakeError):
    """Raised when a Google access token cannot be obtained."""


class StorageError(IntakeError):
    """Raised when a file cannot be stored or removed."""


class PersistError(IntakeError):
    """Raised when a structured record cannot be written."""


class NotificationError(IntakeError):
    """Raised when a notification cannot be delivered."""
