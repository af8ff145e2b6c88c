"""
Error taxonomy for the sync engine.

Every public operation either returns its result or raises exactly one
``EngineError`` subclass. Underlying library errors (httpx, pydantic, OSError)
are wrapped at component boundaries with ``raise ... from e``.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine failures."""

    kind = "engine_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NodeInitError(EngineError):
    """The light client could not be initialized or started."""

    kind = "node_init"


class NodeNotReadyError(EngineError):
    """An operation required a running light client but it never came up."""

    kind = "node_not_ready"


class AlreadySwitchingError(EngineError):
    """A network switch is already in progress."""

    kind = "already_switching"


class SyncInProgressError(EngineError):
    """A resync or registration is already running."""

    kind = "sync_in_progress"


class RegistrationError(EngineError):
    """The tracked script could not be registered with the light client."""

    kind = "registration"


class QueryError(EngineError):
    """A light client query failed or returned an unexpected shape."""

    kind = "query"


class ValidationError(EngineError):
    """A transaction was rejected before any network call was made."""

    kind = "validation"


class BroadcastError(EngineError):
    """
    The light client refused to relay a transaction.

    Attributes:
        user_message: Human-readable explanation derived from the raw failure
        raw_message: Original error text from the light client
    """

    kind = "broadcast"

    def __init__(self, message: str, user_message: str | None = None) -> None:
        super().__init__(message)
        self.raw_message = message
        self.user_message = user_message or message


class PollTimeout(EngineError):
    """Polling gave up before reaching a terminal state. Never fatal."""

    kind = "poll_timeout"


__all__ = [
    "EngineError",
    "NodeInitError",
    "NodeNotReadyError",
    "AlreadySwitchingError",
    "SyncInProgressError",
    "RegistrationError",
    "QueryError",
    "ValidationError",
    "BroadcastError",
    "PollTimeout",
]
