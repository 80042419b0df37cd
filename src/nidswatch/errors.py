"""
Exception hierarchy for NIDS Watch.

Only ValidationError and NotFoundError are meant to reach a synchronous
caller. The remaining errors are raised inside background work and absorbed
where they occur.
"""

from __future__ import annotations


class NidsWatchError(Exception):
    """Base class for all NIDS Watch errors."""


class ValidationError(NidsWatchError):
    """Caller input is missing required fields or is malformed."""


class NotFoundError(NidsWatchError):
    """A referenced record does not exist."""

    def __init__(self, message: str, target_type: str = "", target_id: object = None):
        super().__init__(message)
        self.target_type = target_type
        self.target_id = target_id


class DecodeError(NidsWatchError):
    """A sensor output line could not be decoded as an event object."""

    def __init__(self, message: str, raw_line: str = ""):
        super().__init__(message)
        self.raw_line = raw_line


class ProcessError(NidsWatchError):
    """The sensor process failed to spawn or exited abnormally."""

    def __init__(self, message: str, returncode: int | None = None, cause: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.cause = cause


class StoreError(NidsWatchError):
    """The underlying persistence layer failed."""
