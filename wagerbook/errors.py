"""Error taxonomy shared by the event source, session and submission layers."""

from __future__ import annotations


class WagerbookError(Exception):
    """Base class for failures raised at wagerbook I/O boundaries."""


class SourceError(WagerbookError):
    """Raised when the remote event source cannot produce usable logs."""


class SourceUnavailable(SourceError):
    """Raised on transport or provider failure; the coordinator may retry it."""


class MalformedLog(SourceError):
    """Raised when a returned log entry cannot be decoded into the expected shape."""

    def __init__(self, message: str, *, entry: object | None = None) -> None:
        super().__init__(message)
        self.entry = entry


class SessionError(WagerbookError):
    """Raised when a wallet connection attempt cannot complete."""


class NoWalletAvailable(SessionError):
    """Raised when no wallet provider with signing capability is present."""


class UserRejected(SessionError):
    """Raised when the user declines the wallet connection or transaction."""


class SubmissionFailed(WagerbookError):
    """Raised when a wager transaction is rejected, reverted or never confirmed."""
