"""Exceptions raised by the sync engine."""

from typing import Optional


class CaseStreamError(Exception):
    """Base class for engine errors."""
    pass


class TransportError(CaseStreamError):
    """The push channel failed to open or broke while streaming."""
    pass


class MalformedMessage(CaseStreamError):
    """A snapshot or delta payload could not be parsed into events."""

    def __init__(self, kind: str, detail: str):
        super().__init__(f"Malformed {kind} message: {detail}")
        self.kind = kind
        self.detail = detail


class CommandRejected(CaseStreamError):
    """
    The server did not accept a dispatched command.

    status_code is None when the command never got a response (transport
    failure after all retries).
    """

    def __init__(
        self,
        reason: str,
        status_code: Optional[int] = None,
        event_id: Optional[str] = None,
    ):
        if status_code is None:
            message = f"Failed to send event: {reason}"
        else:
            message = f"Failed to send event: {status_code} {reason}"
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code
        self.event_id = event_id
