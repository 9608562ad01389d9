"""Thread-based coordination client.

CoordinationClient owns one Connection, one EventHandler and one
CallbackExecutor, and is the entry point for the recipes:

- raw node operations, with watches routed through the EventHandler
- subscriptions to node and session events
- factories for locks, semaphores and elections

Example:
    with CoordinationClient.connect(Settings(hosts="zk1:2181")) as client:
        with client.exclusive_locker("nightly-report").with_lock(wait=60):
            run_report()
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from typing import Any

from zkcoord.client.base import Connection
from zkcoord.client.kazoo import KazooConnection
from zkcoord.config import Settings
from zkcoord.election import Candidate, Observer
from zkcoord.event_handler import EventCallback, EventHandler, Subscription, SubscriptionKey
from zkcoord.events import AnyEvent, EventType, SessionEvent, SessionState, Stat, WatchKind
from zkcoord.exceptions import EventDispatchThreadError, KeeperError, NodeExistsError
from zkcoord.executor import CallbackExecutor
from zkcoord.locker import ExclusiveLocker, Semaphore, SharedLocker
from zkcoord.node_deletion_watcher import NodeDeletionWatcher
from zkcoord.observability.logging import LogContext, configure_logging
from zkcoord.observability.metrics import MetricsRegistry, get_metrics

logger = logging.getLogger(__name__)


class CoordinationClient:
    """High level client for the coordination recipes.

    Args:
        connection: An open Connection
        settings: Settings (defaults read from the environment)
        executor: Executor for callbacks (built from settings if omitted)
        metrics: Metrics registry (the global one if omitted)
    """

    def __init__(
        self,
        connection: Connection,
        settings: Settings | None = None,
        executor: CallbackExecutor | None = None,
        metrics: MetricsRegistry | None = None,
    ):
        self.settings = settings or Settings()
        self.connection = connection
        self.metrics = metrics or (
            get_metrics() if self.settings.enable_metrics else MetricsRegistry()
        )
        self.executor = executor or CallbackExecutor(max_workers=self.settings.callback_workers)
        self.executor.on_exception(self._on_deferred_error)
        self.event_handler = EventHandler(
            self.executor,
            raw_hook=self._handle_raw_event,
            metrics=self.metrics,
        )
        self._closed = False
        self._close_lock = threading.Lock()

        connection.add_listener(self.event_handler.dispatch)

    @classmethod
    def connect(
        cls,
        settings: Settings | None = None,
        setup_logging: bool = False,
    ) -> CoordinationClient:
        """Connect to the ensemble described by settings.

        Args:
            settings: Settings (defaults read from the environment)
            setup_logging: Also call configure_logging() from settings

        Returns:
            Connected client
        """
        settings = settings or Settings()
        if setup_logging:
            configure_logging(json_format=settings.log_json, level=settings.log_level)

        connection = KazooConnection(settings.hosts, session_timeout=settings.session_timeout)
        connection.start(timeout=settings.connect_timeout)
        return cls(connection, settings)

    def __enter__(self) -> CoordinationClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"CoordinationClient(session_id={self.session_id!r}, state={self.state.value})"

    # -------------------------------------------------------------------------
    # Session state
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.connection.state

    @property
    def session_id(self) -> int | None:
        return self.connection.session_id

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    @property
    def connecting(self) -> bool:
        return self.state is SessionState.CONNECTING

    @property
    def expired_session(self) -> bool:
        return self.state is SessionState.EXPIRED_SESSION

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def close(self) -> None:
        """Close the session, then stop dispatching and the executor."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        try:
            self.connection.close()
        finally:
            # Let queued callbacks (including the CLOSED notification) run
            self.executor.shutdown(wait=True)
            self.event_handler.close()

    # -------------------------------------------------------------------------
    # Node operations
    # -------------------------------------------------------------------------

    def create(
        self,
        path: str,
        data: bytes = b"",
        ephemeral: bool = False,
        sequential: bool = False,
    ) -> str:
        """Create a node and return its actual path (with any sequence suffix)."""
        return self.connection.create(path, data, ephemeral=ephemeral, sequential=sequential)

    def exists(self, path: str, watch: bool = False) -> Stat | None:
        """Stat a node, optionally arming a data watch (even if it is absent)."""
        if watch:
            return self.event_handler.arm_watch(
                WatchKind.DATA, path, lambda watcher: self.connection.exists(path, watcher)
            )
        return self.connection.exists(path)

    stat = exists

    def get(self, path: str, watch: bool = False) -> tuple[bytes, Stat]:
        if watch:
            return self.event_handler.arm_watch(
                WatchKind.DATA, path, lambda watcher: self.connection.get(path, watcher)
            )
        return self.connection.get(path)

    def get_children(self, path: str, watch: bool = False) -> list[str]:
        if watch:
            return self.event_handler.arm_watch(
                WatchKind.CHILD, path, lambda watcher: self.connection.get_children(path, watcher)
            )
        return self.connection.get_children(path)

    children = get_children

    def set(self, path: str, data: bytes, version: int = -1) -> Stat:
        return self.connection.set(path, data, version=version)

    def delete(
        self,
        path: str,
        version: int = -1,
        ignore: tuple[type[KeeperError], ...] = (),
    ) -> bool:
        """Delete a node.

        Args:
            path: Node to delete
            version: Expected version, -1 for any
            ignore: Errors to swallow (e.g. (NoNodeError,))

        Returns:
            True if deleted, False if an ignored error occurred
        """
        try:
            self.connection.delete(path, version=version)
        except ignore as exc:
            logger.debug("Ignoring %s deleting %s", type(exc).__name__, path)
            return False
        return True

    def ensure_path(self, path: str) -> str:
        """Create path and any missing ancestors as persistent nodes."""
        current = ""
        for part in path.strip("/").split("/"):
            if not part:
                continue
            current = f"{current}/{part}"
            if self.connection.exists(current) is not None:
                continue
            try:
                self.connection.create(current)
            except NodeExistsError:
                pass
        return path

    mkdir_p = ensure_path

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def register(
        self,
        path: str | SubscriptionKey,
        callback: EventCallback,
        only: EventType | Iterable[EventType] | None = None,
    ) -> Subscription:
        """Subscribe to events for a path; see EventHandler.register()."""
        return self.event_handler.register(path, callback, only=only)

    def register_state_handler(
        self,
        state: SessionState | SubscriptionKey,
        callback: EventCallback,
    ) -> Subscription:
        return self.event_handler.register_state_handler(state, callback)

    def on_connected(self, callback: EventCallback) -> Subscription:
        return self.register_state_handler(SessionState.CONNECTED, callback)

    def on_connecting(self, callback: EventCallback) -> Subscription:
        return self.register_state_handler(SessionState.CONNECTING, callback)

    def on_expired_session(self, callback: EventCallback) -> Subscription:
        return self.register_state_handler(SessionState.EXPIRED_SESSION, callback)

    def defer(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
        """Run fn on the callback executor."""
        return self.executor.defer(fn, *args, **kwargs)

    def block_until_node_deleted(self, path: str, timeout: float | None = None) -> bool:
        """Block until path does not exist; see NodeDeletionWatcher."""
        return NodeDeletionWatcher(self, path).block_until_deleted(timeout=timeout)

    def is_event_dispatch_thread(self) -> bool:
        """True on the connection's delivery thread or a callback worker.

        Watch callbacks run on the executor, and so does the wake-up of any
        blocked waiter, so blocking there can starve the pool.
        """
        return self.connection.is_event_thread() or self.executor.on_threadpool()

    def assert_not_on_event_dispatch_thread(self, operation: str = "this operation") -> None:
        """Raise EventDispatchThreadError if called while delivering an event."""
        if self.is_event_dispatch_thread():
            raise EventDispatchThreadError(
                f"{operation} blocks and cannot be called on the event dispatch thread"
            )

    def _on_deferred_error(self, exc: BaseException) -> None:
        self.metrics.watch_callback_errors_total.inc()

    def _handle_raw_event(self, event: AnyEvent) -> None:
        if not isinstance(event, SessionEvent):
            return

        with LogContext(session_id=f"0x{self.session_id or 0:x}"):
            logger.info("Session state changed to %s", event.state.value)

        if event.state in (SessionState.EXPIRED_SESSION, SessionState.CLOSED):
            # A new session starts with no server watches
            self.event_handler.clear_outstanding_watch_restrictions()

    # -------------------------------------------------------------------------
    # Recipes
    # -------------------------------------------------------------------------

    def exclusive_locker(self, name: str, root: str | None = None) -> ExclusiveLocker:
        return ExclusiveLocker(self, name, root)

    def shared_locker(self, name: str, root: str | None = None) -> SharedLocker:
        return SharedLocker(self, name, root)

    def semaphore(self, name: str, size: int, root: str | None = None) -> Semaphore:
        return Semaphore(self, name, size, root)

    def election_candidate(
        self,
        name: str,
        data: bytes = b"",
        root: str | None = None,
    ) -> Candidate:
        return Candidate(self, name, data=data, root=root)

    def election_observer(self, name: str, root: str | None = None) -> Observer:
        return Observer(self, name, root)
