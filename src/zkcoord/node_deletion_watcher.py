"""Block until a set of nodes has been deleted.

NodeDeletionWatcher waits until at most ``threshold`` of the given paths
still exist. Only the last ``threshold + 1`` unfinished paths are watched
at any time; when one of them goes away the watched window slides down
the list. Session loss, a timeout or an explicit interrupt() end the wait
early.

Example:
    watcher = NodeDeletionWatcher(client, "/_zklocking/job/ex0000000003")
    watcher.block_until_deleted(timeout=30.0)   # True, or raises

    # Elsewhere, to give up:
    watcher.interrupt()                        # blocked thread gets WakeUpError
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING

from zkcoord.events import INTERRUPTING_STATES, NodeEvent, SessionEvent, SessionState
from zkcoord.exceptions import (
    BadArgumentsError,
    ConnectionClosedError,
    ConnectionLossError,
    InterruptedSessionError,
    InvalidStateError,
    LockWaitTimeoutError,
    SessionExpiredError,
    WakeUpError,
)

if TYPE_CHECKING:
    from zkcoord.client.threaded import CoordinationClient
    from zkcoord.event_handler import Subscription

logger = logging.getLogger(__name__)


class WaitStatus(str, Enum):
    """Lifecycle of a watcher."""

    NOT_YET = "not_yet"
    BLOCKED = "blocked"
    NOT_ANYMORE = "not_anymore"


class WatchResult(str, Enum):
    """Terminal result of a wait; the first one to happen wins."""

    DELETED = "deleted"
    TIMED_OUT = "timed_out"
    INTERRUPTED = "interrupted"
    EXPIRED_SESSION = "expired_session"
    CONNECTING = "connecting"
    CLOSED = "closed"


_SESSION_RESULTS: dict[SessionState, WatchResult] = {
    SessionState.EXPIRED_SESSION: WatchResult.EXPIRED_SESSION,
    SessionState.CONNECTING: WatchResult.CONNECTING,
    SessionState.CLOSED: WatchResult.CLOSED,
}


class NodeDeletionWatcher:
    """Waits for nodes to be deleted.

    Args:
        client: Client used to watch the nodes
        paths: A path or a non-empty ordered sequence of paths
        threshold: How many of the paths may remain for the wait to succeed
    """

    def __init__(
        self,
        client: CoordinationClient,
        paths: str | Sequence[str],
        threshold: int = 0,
    ):
        path_list = [paths] if isinstance(paths, str) else list(paths)
        if not path_list:
            raise BadArgumentsError("at least one path is required")
        if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
            raise BadArgumentsError(f"threshold must be a non-negative int, not {threshold!r}")

        self.client = client
        self.paths: tuple[str, ...] = tuple(path_list)
        self.threshold = threshold

        self._cond = threading.Condition()
        self._status = WaitStatus.NOT_YET
        self._result: WatchResult | None = None
        self._remaining: list[str] = list(path_list)
        self._watched: set[str] = set()
        self._subscriptions: list[Subscription] = []

    def __repr__(self) -> str:
        return (
            f"NodeDeletionWatcher(paths={list(self.paths)!r}, threshold={self.threshold}, "
            f"status={self._status.value})"
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def path(self) -> str:
        """The first path (convenient for single-path watchers)."""
        return self.paths[0]

    @property
    def result(self) -> WatchResult | None:
        with self._cond:
            return self._result

    @property
    def remaining_paths(self) -> list[str]:
        with self._cond:
            return list(self._remaining)

    @property
    def done(self) -> bool:
        with self._cond:
            return self._result is not None

    @property
    def blocked(self) -> bool:
        with self._cond:
            return self._status is WaitStatus.BLOCKED

    @property
    def timed_out(self) -> bool:
        with self._cond:
            return self._result is WatchResult.TIMED_OUT

    def wait_until_blocked(self, timeout: float | None = None) -> bool:
        """Wait for another thread to enter block_until_deleted().

        Returns:
            True if that thread is (still) blocked
        """
        with self._cond:
            self._cond.wait_for(lambda: self._status is not WaitStatus.NOT_YET, timeout)
            return self._status is WaitStatus.BLOCKED

    def interrupt(self) -> None:
        """Wake the blocked thread with WakeUpError. No-op once a result exists."""
        self._finish(WatchResult.INTERRUPTED)

    # -------------------------------------------------------------------------
    # Blocking
    # -------------------------------------------------------------------------

    def block_until_deleted(self, timeout: float | None = None) -> bool:
        """Block until at most ``threshold`` of the paths remain.

        May only be called once per watcher.

        Args:
            timeout: Seconds to wait, None to wait forever

        Returns:
            True once the threshold is met

        Raises:
            LockWaitTimeoutError: the timeout elapsed first
            WakeUpError: another thread called interrupt()
            SessionExpiredError, ConnectionLossError, ConnectionClosedError:
                the session was interrupted while waiting
            InvalidStateError: called a second time
        """
        self.client.assert_not_on_event_dispatch_thread("block_until_deleted")
        deadline = time.monotonic() + timeout if timeout is not None else None

        with self._cond:
            if self._status is not WaitStatus.NOT_YET:
                raise InvalidStateError(f"block_until_deleted already called for {list(self.paths)}")
            self._status = WaitStatus.BLOCKED
            self._cond.notify_all()

        try:
            self._subscribe_to_session_states()
            try:
                self._watch_appropriate_nodes()
            except InterruptedSessionError as exc:
                # Lost the session before the state event reached us
                session_result = _SESSION_RESULTS.get(exc.state)  # type: ignore[arg-type]
                if session_result is None:
                    raise
                self._finish(session_result)

            with self._cond:
                remaining = max(0.0, deadline - time.monotonic()) if deadline is not None else None
                self._cond.wait_for(lambda: self._result is not None, remaining)
                if self._result is None:
                    self._result = WatchResult.TIMED_OUT
                result = self._result
        finally:
            with self._cond:
                self._status = WaitStatus.NOT_ANYMORE
                self._cond.notify_all()
            self._unsubscribe_all()

        logger.debug("Deletion wait on %s finished: %s", list(self.paths), result.value)
        return self._interpret(result)

    def _interpret(self, result: WatchResult) -> bool:
        if result is WatchResult.DELETED:
            return True
        if result is WatchResult.TIMED_OUT:
            raise LockWaitTimeoutError(f"timed out waiting for deletion of {list(self.paths)}")
        if result is WatchResult.INTERRUPTED:
            raise WakeUpError(f"woken up while waiting for deletion of {list(self.paths)}")
        if result is WatchResult.EXPIRED_SESSION:
            raise SessionExpiredError(
                "session expired while waiting", path=self.path, state=SessionState.EXPIRED_SESSION
            )
        if result is WatchResult.CONNECTING:
            raise ConnectionLossError(
                "connection lost while waiting", path=self.path, state=SessionState.CONNECTING
            )
        raise ConnectionClosedError(
            "connection closed while waiting", path=self.path, state=SessionState.CLOSED
        )

    # -------------------------------------------------------------------------
    # Watching
    # -------------------------------------------------------------------------

    def _subscribe_to_session_states(self) -> None:
        subscriptions = [
            self.client.register_state_handler(state, self._on_session_event)
            for state in INTERRUPTING_STATES
        ]
        with self._cond:
            self._subscriptions.extend(subscriptions)

    def _watch_appropriate_nodes(self) -> None:
        """Watch the last threshold + 1 unfinished paths.

        Loops while existence checks find watched paths already gone, since
        each one moves the window further down the list.
        """
        while True:
            with self._cond:
                if self._result is not None:
                    return
                if len(self._remaining) <= self.threshold:
                    self._result = WatchResult.DELETED
                    self._cond.notify_all()
                    return
                window = self._remaining[-(self.threshold + 1) :]
                to_watch = [path for path in window if path not in self._watched]
                self._watched.update(to_watch)

            if not to_watch:
                return

            finished_any = False
            for path in to_watch:
                subscription = self.client.register(path, self._on_node_event)
                with self._cond:
                    self._subscriptions.append(subscription)
                if self.client.exists(path, watch=True) is None:
                    self._finish_node(path)
                    finished_any = True

            if not finished_any:
                return

    def _on_node_event(self, event: NodeEvent) -> None:
        with self._cond:
            if self._result is not None or event.path not in self._remaining:
                return

        if event.node_deleted or self.client.exists(event.path, watch=True) is None:
            self._finish_node(event.path)
            self._watch_appropriate_nodes()

    def _on_session_event(self, event: SessionEvent) -> None:
        self._finish(_SESSION_RESULTS[event.state])

    def _finish_node(self, path: str) -> None:
        with self._cond:
            if path in self._remaining:
                self._remaining.remove(path)
            self._watched.discard(path)
            if self._result is None and len(self._remaining) <= self.threshold:
                self._result = WatchResult.DELETED
                self._cond.notify_all()

    def _finish(self, result: WatchResult) -> None:
        with self._cond:
            if self._result is not None:
                return
            self._result = result
            self._cond.notify_all()

    def _unsubscribe_all(self) -> None:
        with self._cond:
            subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.unsubscribe()
