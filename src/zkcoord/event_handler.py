"""Watch registration and event dispatch.

The EventHandler sits between a Connection and application callbacks:

- Subscriptions are keyed by node path, by session state, or by one of
  the two wildcard keys (all node events, all state events)
- At most one server watch per (path, kind) is outstanding at a time;
  later requests for the same watch ride on the one already armed
- Every delivered event is fanned out to matching subscribers through
  the CallbackExecutor, so a slow or broken callback never stalls the
  connection's delivery thread

Example:
    handler = EventHandler(executor)
    sub = handler.register("/app/config", on_change, only=EventType.CHANGED)
    data, stat = handler.arm_watch(
        WatchKind.DATA, "/app/config", lambda w: connection.get("/app/config", w)
    )
    sub.unsubscribe()
"""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Callable, Iterable
from enum import Enum
from typing import TYPE_CHECKING, Any, NamedTuple, TypeVar

from zkcoord.events import (
    NODE_EVENT_TYPES,
    AnyEvent,
    EventType,
    NodeEvent,
    SessionEvent,
    SessionState,
    WatchKind,
)
from zkcoord.exceptions import BadArgumentsError, ExecutorNotRunningError
from zkcoord.executor import CallbackExecutor
from zkcoord.observability.metrics import MetricsRegistry, get_metrics

if TYPE_CHECKING:
    from zkcoord.client.base import Watcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

EventCallback = Callable[[Any], None]
RawHook = Callable[[AnyEvent], None]


class KeyKind(str, Enum):
    """What a subscription key refers to."""

    PATH = "path"
    STATE = "state"
    ALL_NODES = "all_nodes"
    ALL_STATES = "all_states"


class SubscriptionKey(NamedTuple):
    """Registry key. Paths and session states never share a key space."""

    kind: KeyKind
    value: str | SessionState | None = None

    @classmethod
    def for_path(cls, path: str) -> SubscriptionKey:
        return cls(KeyKind.PATH, path)

    @classmethod
    def for_state(cls, state: SessionState) -> SubscriptionKey:
        return cls(KeyKind.STATE, state)


ALL_NODE_EVENTS = SubscriptionKey(KeyKind.ALL_NODES)
ALL_STATE_EVENTS = SubscriptionKey(KeyKind.ALL_STATES)


class Subscription:
    """Handle for a registered callback.

    Call unsubscribe() to stop receiving events; it is safe to call more
    than once. Subscriptions are also context managers that unsubscribe
    on exit.
    """

    def __init__(
        self,
        handler: EventHandler,
        key: SubscriptionKey,
        callback: EventCallback,
        interests: frozenset[EventType],
    ):
        self.handler = handler
        self.key = key
        self.callback = callback
        self.interests = interests
        self._active = True

    @property
    def path(self) -> str | None:
        """Path this subscription watches, None for state and wildcard keys."""
        return self.key.value if self.key.kind is KeyKind.PATH else None  # type: ignore[return-value]

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        self.handler.unregister(self)

    def interested_in(self, event: AnyEvent) -> bool:
        if isinstance(event, NodeEvent):
            return event.interest_key in self.interests
        return True

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        return f"Subscription(key={self.key!r}, active={self._active})"


class EventHandler:
    """Registry of subscriptions plus the outstanding-watch bookkeeping.

    Args:
        executor: Where subscriber callbacks run
        raw_hook: Called on the delivery thread with every event before
            subscribers are scheduled
        metrics: Metrics registry (defaults to the global one)
    """

    def __init__(
        self,
        executor: CallbackExecutor,
        raw_hook: RawHook | None = None,
        metrics: MetricsRegistry | None = None,
    ):
        self._executor = executor
        self._raw_hook = raw_hook
        self._metrics = metrics or get_metrics()
        self._lock = threading.Lock()
        self._subscriptions: dict[SubscriptionKey, list[Subscription]] = {}
        self._outstanding: dict[WatchKind, set[str]] = {kind: set() for kind in WatchKind}
        self._closed = False

        # One watcher object per kind so the connection can dedupe them
        self._watchers: dict[WatchKind, Watcher] = {
            kind: functools.partial(self._on_watch_fired, kind) for kind in WatchKind
        }

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(
        self,
        path: str | SubscriptionKey,
        callback: EventCallback,
        only: EventType | Iterable[EventType] | None = None,
    ) -> Subscription:
        """Subscribe to node events for a path (or ALL_NODE_EVENTS).

        Registering does not arm a server watch; a read with watch=True
        (or arm_watch) does.

        Args:
            path: Absolute node path, or ALL_NODE_EVENTS
            callback: Called with each matching NodeEvent
            only: Restrict to these event types (default: all node events)

        Returns:
            Subscription handle
        """
        if isinstance(path, SubscriptionKey):
            if path != ALL_NODE_EVENTS:
                raise BadArgumentsError(f"register() takes a path or ALL_NODE_EVENTS, not {path!r}")
            key = path
        else:
            key = SubscriptionKey.for_path(path)

        return self._add(key, callback, self._interests(only))

    def register_state_handler(
        self,
        state: SessionState | SubscriptionKey,
        callback: EventCallback,
    ) -> Subscription:
        """Subscribe to a session state (or ALL_STATE_EVENTS)."""
        if isinstance(state, SubscriptionKey):
            if state != ALL_STATE_EVENTS:
                raise BadArgumentsError(
                    f"register_state_handler() takes a state or ALL_STATE_EVENTS, not {state!r}"
                )
            key = state
        else:
            key = SubscriptionKey.for_state(SessionState(state))

        return self._add(key, callback, frozenset())

    def unregister(self, subscription: Subscription) -> None:
        """Remove a subscription. Idempotent."""
        with self._lock:
            subscription._active = False
            subscribers = self._subscriptions.get(subscription.key)
            if not subscribers:
                return
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                del self._subscriptions[subscription.key]

    def subscriptions_for(self, key: SubscriptionKey) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions.get(key, ()))

    def _add(
        self,
        key: SubscriptionKey,
        callback: EventCallback,
        interests: frozenset[EventType],
    ) -> Subscription:
        subscription = Subscription(self, key, callback, interests)
        with self._lock:
            self._subscriptions.setdefault(key, []).append(subscription)
        return subscription

    @staticmethod
    def _interests(only: EventType | Iterable[EventType] | None) -> frozenset[EventType]:
        if only is None:
            return NODE_EVENT_TYPES
        if isinstance(only, EventType):
            only = (only,)
        interests = frozenset(EventType(value) for value in only)
        unknown = interests - NODE_EVENT_TYPES
        if unknown or not interests:
            raise BadArgumentsError(
                f"only= must be a non-empty subset of {sorted(e.value for e in NODE_EVENT_TYPES)}"
            )
        return interests

    # -------------------------------------------------------------------------
    # Outstanding watches
    # -------------------------------------------------------------------------

    def arm_watch(self, kind: WatchKind, path: str, request: Callable[[Watcher | None], T]) -> T:
        """Perform a read that wants a watch on (kind, path).

        request is called with the watcher to pass to the connection, or
        with None when a watch for this (kind, path) is already outstanding.
        If the request raises, the token is rolled back so a later call can
        arm again.
        """
        with self._lock:
            outstanding = self._outstanding[kind]
            owner = path not in outstanding
            if owner:
                outstanding.add(path)

        if not owner:
            return request(None)

        try:
            return request(self._watchers[kind])
        except BaseException:
            with self._lock:
                self._outstanding[kind].discard(path)
            raise

    def watch_outstanding(self, kind: WatchKind, path: str) -> bool:
        with self._lock:
            return path in self._outstanding[kind]

    @property
    def outstanding_watches(self) -> dict[WatchKind, frozenset[str]]:
        """Snapshot of outstanding watch tokens by kind."""
        with self._lock:
            return {kind: frozenset(paths) for kind, paths in self._outstanding.items()}

    def clear_outstanding_watch_restrictions(self) -> None:
        """Forget every outstanding token (the session's server watches are gone)."""
        with self._lock:
            for paths in self._outstanding.values():
                paths.clear()

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def dispatch(self, event: AnyEvent, kind: WatchKind | None = None) -> None:
        """Deliver an event to the raw hook and every matching subscriber.

        Args:
            event: NodeEvent or SessionEvent
            kind: For node events, the kind of watch that fired; its
                outstanding token is cleared
        """
        if self._raw_hook is not None:
            try:
                self._raw_hook(event)
            except Exception:
                logger.exception("Error in raw event hook for %s", event)

        if isinstance(event, NodeEvent):
            keys = (SubscriptionKey.for_path(event.path), ALL_NODE_EVENTS)
        elif isinstance(event, SessionEvent):
            keys = (SubscriptionKey.for_state(event.state), ALL_STATE_EVENTS)
        else:
            raise BadArgumentsError(f"don't know how to dispatch {event!r}")

        with self._lock:
            if self._closed:
                return
            if isinstance(event, NodeEvent) and kind is not None:
                self._outstanding[kind].discard(event.path)
            subscribers = [sub for key in keys for sub in self._subscriptions.get(key, ())]

        logger.debug("Dispatching %s to %d subscriber(s)", event, len(subscribers))

        for subscription in subscribers:
            if not subscription.interested_in(event):
                continue
            try:
                self._executor.defer(self._invoke, subscription, event)
            except ExecutorNotRunningError:
                logger.debug("Executor stopped, dropping %s for %r", event, subscription)

    def _on_watch_fired(self, kind: WatchKind, event: NodeEvent) -> None:
        self.dispatch(event, kind)

    def _invoke(self, subscription: Subscription, event: AnyEvent) -> None:
        if not subscription.active:
            return
        try:
            subscription.callback(event)
        except Exception:
            self._metrics.watch_callback_errors_total.inc()
            logger.exception("Error in callback for %s (%r)", event, subscription)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def close(self) -> None:
        """Drop every subscription and token; later events are ignored."""
        with self._lock:
            self._closed = True
            for subscribers in self._subscriptions.values():
                for subscription in subscribers:
                    subscription._active = False
            self._subscriptions.clear()
            for paths in self._outstanding.values():
                paths.clear()
