from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for errors raised while routing a client action."""

    code = "sync_error"

    def __init__(self, message: str, *, event_type: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.event_type = event_type

    def to_payload(self) -> dict:
        payload = {"code": self.code, "reason": self.message}
        if self.event_type is not None:
            payload["event_type"] = self.event_type
        return payload


class SessionNotFound(SyncError):
    """Unknown or ended session. Terminal for the attempt: clients restart the join flow."""

    code = "session_not_found"


class NotPermitted(SyncError):
    """The actor's role, identity or the current pacing mode forbids the action."""

    code = "not_permitted"


class InvalidPayload(SyncError):
    code = "invalid_payload"


class ConnectionLost(SyncError):
    code = "connection_lost"


class StoreError(RuntimeError):
    pass
