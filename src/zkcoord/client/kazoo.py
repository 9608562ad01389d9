"""ZooKeeper connection through kazoo.

Adapts kazoo.client.KazooClient to the Connection interface:
- kazoo exceptions become zkcoord.exceptions
- WatchedEvent becomes NodeEvent, ZnodeStat becomes Stat
- KazooState transitions become SessionState events

Example:
    connection = KazooConnection("zk1:2181,zk2:2181", session_timeout=10.0)
    connection.start(timeout=15.0)
    client = CoordinationClient(connection)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from kazoo import exceptions as kazoo_errors
from kazoo.client import KazooClient
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.protocol.states import KazooState, WatchedEvent, ZnodeStat

from zkcoord.client.base import Connection, Watcher
from zkcoord.events import EventType, NodeEvent, SessionState, Stat
from zkcoord.exceptions import (
    BadVersionError,
    ConnectionClosedError,
    ConnectionLossError,
    KeeperError,
    NoChildrenForEphemeralsError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    OperationTimeoutError,
    SessionExpiredError,
)

logger = logging.getLogger(__name__)


_STATE_MAP: dict[str, SessionState] = {
    KazooState.CONNECTED: SessionState.CONNECTED,
    KazooState.SUSPENDED: SessionState.CONNECTING,
    KazooState.LOST: SessionState.EXPIRED_SESSION,
}

_EVENT_MAP: dict[str, EventType] = {
    "CREATED": EventType.CREATED,
    "DELETED": EventType.DELETED,
    "CHANGED": EventType.CHANGED,
    "CHILD": EventType.CHILD,
    "NONE": EventType.NOT_WATCHING,
}

# Order matters: most specific first
_ERROR_MAP: tuple[tuple[type[Exception], type[KeeperError]], ...] = (
    (kazoo_errors.NoNodeError, NoNodeError),
    (kazoo_errors.NodeExistsError, NodeExistsError),
    (kazoo_errors.BadVersionError, BadVersionError),
    (kazoo_errors.NotEmptyError, NotEmptyError),
    (kazoo_errors.NoChildrenForEphemeralsError, NoChildrenForEphemeralsError),
    (kazoo_errors.ConnectionClosedError, ConnectionClosedError),
    (kazoo_errors.SessionExpiredError, SessionExpiredError),
    (kazoo_errors.ConnectionLoss, ConnectionLossError),
    (kazoo_errors.OperationTimeoutError, OperationTimeoutError),
    (KazooTimeoutError, OperationTimeoutError),
)

_SESSION_ERROR_STATES: dict[type[KeeperError], SessionState] = {
    SessionExpiredError: SessionState.EXPIRED_SESSION,
    ConnectionClosedError: SessionState.CLOSED,
    ConnectionLossError: SessionState.CONNECTING,
}


def to_stat(zstat: ZnodeStat) -> Stat:
    """Convert a kazoo ZnodeStat to a Stat."""
    return Stat(
        version=zstat.version,
        cversion=zstat.cversion,
        ctime=zstat.ctime,
        mtime=zstat.mtime,
        ephemeral_owner=zstat.ephemeralOwner,
        num_children=zstat.numChildren,
        data_length=zstat.dataLength,
    )


def to_node_event(event: WatchedEvent) -> NodeEvent:
    """Convert a kazoo WatchedEvent to a NodeEvent."""
    return NodeEvent(_EVENT_MAP.get(event.type, EventType.NOT_WATCHING), event.path)


def to_session_state(state: str) -> SessionState:
    return _STATE_MAP[state]


@contextmanager
def translate_errors(path: str | None = None) -> Iterator[None]:
    """Re-raise kazoo errors as their zkcoord counterparts."""
    try:
        yield
    except kazoo_errors.KazooException as exc:
        raise _translate(exc, path) from exc
    except KazooTimeoutError as exc:
        raise OperationTimeoutError(str(exc), path=path) from exc


def _translate(exc: Exception, path: str | None) -> Exception:
    for kazoo_type, our_type in _ERROR_MAP:
        if isinstance(exc, kazoo_type):
            state = _SESSION_ERROR_STATES.get(our_type)
            if state is not None:
                return our_type(str(exc), path=path, state=state)
            return our_type(str(exc), path=path)
    return KeeperError(f"{type(exc).__name__}: {exc}", path=path)


class KazooConnection(Connection):
    """Connection to a ZooKeeper ensemble backed by kazoo.

    Args:
        hosts: Comma separated host:port list
        session_timeout: Session timeout in seconds
        client: Pre-built KazooClient (hosts and timeout are then ignored)
    """

    def __init__(
        self,
        hosts: str = "localhost:2181",
        session_timeout: float = 10.0,
        client: KazooClient | None = None,
    ):
        super().__init__()
        self._client = client or KazooClient(hosts=hosts, timeout=session_timeout)
        self._closed = False
        self._state = SessionState.CONNECTING
        self._state_lock = threading.Lock()
        self._adapters: dict[Watcher, Callable[[WatchedEvent], None]] = {}
        self._adapters_lock = threading.Lock()
        self._client.add_listener(self._on_kazoo_state)

    @property
    def kazoo(self) -> KazooClient:
        """The underlying KazooClient."""
        return self._client

    def start(self, timeout: float = 15.0) -> None:
        """Connect to the ensemble, waiting up to timeout seconds."""
        with translate_errors():
            self._client.start(timeout=timeout)
        with self._state_lock:
            self._state = SessionState.CONNECTED
        logger.info("Connected to ZooKeeper, session 0x%x", self.session_id or 0)

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def session_id(self) -> int | None:
        client_id = self._client.client_id
        return client_id[0] if client_id else None

    def close(self) -> None:
        with self._state_lock:
            if self._closed:
                return
            self._closed = True

        self._client.remove_listener(self._on_kazoo_state)
        try:
            self._client.stop()
        finally:
            self._client.close()

        with self._state_lock:
            self._state = SessionState.CLOSED
        self._notify_listeners(SessionState.CLOSED)
        logger.info("ZooKeeper connection closed")

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
        with translate_errors(path):
            return self._client.create(path, data, ephemeral=ephemeral, sequence=sequential)

    def exists(self, path: str, watcher: Watcher | None = None) -> Stat | None:
        with translate_errors(path):
            zstat = self._client.exists(path, watch=self._adapt(watcher))
        return to_stat(zstat) if zstat is not None else None

    def get(self, path: str, watcher: Watcher | None = None) -> tuple[bytes, Stat]:
        with translate_errors(path):
            data, zstat = self._client.get(path, watch=self._adapt(watcher))
        return data, to_stat(zstat)

    def get_children(self, path: str, watcher: Watcher | None = None) -> list[str]:
        with translate_errors(path):
            return list(self._client.get_children(path, watch=self._adapt(watcher)))

    def set(self, path: str, data: bytes, version: int = -1) -> Stat:
        with translate_errors(path):
            return to_stat(self._client.set(path, data, version=version))

    def delete(self, path: str, version: int = -1) -> None:
        with translate_errors(path):
            self._client.delete(path, version=version)

    # -------------------------------------------------------------------------
    # Event adaptation
    # -------------------------------------------------------------------------

    def _adapt(self, watcher: Watcher | None) -> Callable[[WatchedEvent], None] | None:
        # kazoo dedupes watchers per path by identity, so each watcher
        # keeps a single adapter
        if watcher is None:
            return None

        with self._adapters_lock:
            adapter = self._adapters.get(watcher)
            if adapter is None:

                def adapter(event: WatchedEvent, _watcher: Watcher = watcher) -> None:
                    self._deliver(_watcher, to_node_event(event))

                self._adapters[watcher] = adapter
            return adapter

    def _on_kazoo_state(self, kazoo_state: str) -> None:
        state = to_session_state(kazoo_state)
        with self._state_lock:
            if self._closed:
                return
            self._state = state

        logger.debug("Session state %s -> %s", kazoo_state, state.value)
        self._notify_listeners(state)
