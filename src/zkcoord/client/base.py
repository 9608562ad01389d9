"""Connection interface to the coordination service.

A Connection is the raw wire client: it performs single-node operations
and delivers one-shot watch events and session transitions. Everything
higher level (watch deduplication, locks, elections) lives above it.

Implementations:
- InMemoryConnection: process-local namespace, for single-process use and tests
- KazooConnection: a real ZooKeeper ensemble through kazoo

All events are delivered from the implementation's own delivery context.
Callbacks are invoked through _deliver() so is_event_thread() can tell
whether the caller is currently inside a delivery.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable

from zkcoord.events import NodeEvent, SessionEvent, SessionState, Stat

logger = logging.getLogger(__name__)


Watcher = Callable[[NodeEvent], None]
StateListener = Callable[[SessionEvent], None]


class Connection(ABC):
    """Abstract connection to the coordination service."""

    def __init__(self) -> None:
        self._listeners: list[StateListener] = []
        self._listeners_lock = threading.Lock()
        self._delivery = threading.local()

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    @property
    @abstractmethod
    def state(self) -> SessionState:
        """Current session state."""
        pass

    @property
    @abstractmethod
    def session_id(self) -> int | None:
        """Server-assigned session id, None before the first connect."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the session; ephemeral nodes it owns are removed."""
        pass

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    def add_listener(self, listener: StateListener) -> None:
        """Receive every session state transition."""
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def is_event_thread(self) -> bool:
        """True if the caller is running inside an event delivery."""
        return getattr(self._delivery, "active", False)

    # -------------------------------------------------------------------------
    # Node operations
    # -------------------------------------------------------------------------

    @abstractmethod
    def create(
        self,
        path: str,
        data: bytes = b"",
        ephemeral: bool = False,
        sequential: bool = False,
    ) -> str:
        """Create a node and return its actual path."""
        pass

    @abstractmethod
    def exists(self, path: str, watcher: Watcher | None = None) -> Stat | None:
        """Stat a node; a watcher is armed whether or not it exists."""
        pass

    @abstractmethod
    def get(self, path: str, watcher: Watcher | None = None) -> tuple[bytes, Stat]:
        """Read a node's data; raises NoNodeError (and arms no watch) if absent."""
        pass

    @abstractmethod
    def get_children(self, path: str, watcher: Watcher | None = None) -> list[str]:
        """List child names; raises NoNodeError (and arms no watch) if absent."""
        pass

    @abstractmethod
    def set(self, path: str, data: bytes, version: int = -1) -> Stat:
        pass

    @abstractmethod
    def delete(self, path: str, version: int = -1) -> None:
        pass

    # -------------------------------------------------------------------------
    # Delivery helpers for implementations
    # -------------------------------------------------------------------------

    def _deliver(self, callback: Callable[..., None], event: NodeEvent | SessionEvent) -> None:
        """Invoke a raw callback, marking this thread as the delivery thread."""
        self._delivery.active = True
        try:
            callback(event)
        except Exception:
            logger.exception("Error delivering %s", event)
        finally:
            self._delivery.active = False

    def _notify_listeners(self, state: SessionState) -> None:
        event = SessionEvent(state)
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            self._deliver(listener, event)
