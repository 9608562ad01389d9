"""Exception hierarchy for zkcoord.

Errors fall into a handful of families so callers can catch at the level
they care about:

- KeeperError: service-level failures reported by the coordination service
  (no such node, node exists, version conflict, ...)
- InterruptedSessionError: the session was expired, closed, or is
  reconnecting. Recoverable by re-running the acquisition or vote after
  the client reconnects; never retried inside the library.
- LockWaitTimeoutError: a blocking acquisition ran out of time
- LockAssertionFailedError: assert_locked() found the lock is not held
- misuse errors (InvalidStateError, EventDispatchThreadError,
  BadArgumentsError) that signal a programming mistake

Example:
    try:
        locker.lock(wait=5.0)
    except LockWaitTimeoutError:
        logger.warning("lock busy")
    except InterruptedSessionError as exc:
        logger.warning("session interrupted (%s), will retry", exc.state)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zkcoord.events import SessionState


class CoordinationError(Exception):
    """Base exception for all zkcoord errors."""

    pass


# -----------------------------------------------------------------------------
# Service-level errors
# -----------------------------------------------------------------------------


class KeeperError(CoordinationError):
    """Error reported by the coordination service for a single operation."""

    def __init__(self, message: str = "", path: str | None = None) -> None:
        self.path = path
        if path and not message:
            message = path
        super().__init__(message)


class NoNodeError(KeeperError):
    """The node (or its parent, for create) does not exist."""

    pass


class NodeExistsError(KeeperError):
    """The node already exists."""

    pass


class BadVersionError(KeeperError):
    """The expected version did not match the node's version."""

    pass


class NotEmptyError(KeeperError):
    """The node has children and cannot be deleted."""

    pass


class NoChildrenForEphemeralsError(KeeperError):
    """Ephemeral nodes cannot have children."""

    pass


class OperationTimeoutError(KeeperError):
    """The service did not answer in time."""

    pass


# -----------------------------------------------------------------------------
# Session interruption
# -----------------------------------------------------------------------------


class InterruptedSessionError(KeeperError):
    """The session is no longer usable for the current operation.

    Attributes:
        state: The session state that caused the interruption, if known.
    """

    def __init__(
        self,
        message: str = "",
        path: str | None = None,
        state: SessionState | None = None,
    ) -> None:
        super().__init__(message, path)
        self.state = state


class SessionExpiredError(InterruptedSessionError):
    """The session expired; all ephemeral nodes it owned are gone."""

    pass


class ConnectionLossError(InterruptedSessionError):
    """The client is not connected (it is trying to reconnect)."""

    pass


class ConnectionClosedError(InterruptedSessionError):
    """The client connection was closed."""

    pass


# -----------------------------------------------------------------------------
# Library errors
# -----------------------------------------------------------------------------


class LockWaitTimeoutError(CoordinationError):
    """Raised when the timeout expires while blocked waiting for a lock."""

    pass


class LockAssertionFailedError(CoordinationError):
    """Raised by assert_locked() when the lock is not actually held."""

    pass


class InvalidStateError(CoordinationError):
    """An object was used in a state that does not allow the operation."""

    pass


class EventDispatchThreadError(CoordinationError):
    """A blocking call was made from the event delivery thread."""

    pass


class WakeUpError(CoordinationError):
    """A blocked waiter was interrupted by another thread."""

    pass


class BadArgumentsError(CoordinationError, ValueError):
    """Invalid arguments were passed to a recipe."""

    pass


class ExecutorNotRunningError(CoordinationError):
    """Work was deferred to an executor that has been shut down."""

    pass
