"""In-process coordination namespace.

InMemoryEnsemble plays the part of the server: one tree of nodes shared
by any number of InMemoryConnection sessions. It keeps the semantics the
recipes depend on:

- persistent and ephemeral nodes; ephemerals vanish with their session
- sequential suffixes, 10-digit zero-padded, per parent, never reused
- versions, ctime and child counts in Stat
- one-shot DATA watches (exists/get) and CHILD watches (get_children),
  deduplicated per session and watcher, fired at most once
- per-session delivery thread, so events arrive in the order they fired

Suitable for single-process deployments and for tests. For a real
ensemble use KazooConnection instead.

Example:
    ensemble = InMemoryEnsemble()
    client_a = CoordinationClient(ensemble.connect())
    client_b = CoordinationClient(ensemble.connect())
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from dataclasses import dataclass, field

from zkcoord.client.base import Connection, Watcher
from zkcoord.events import EventType, NodeEvent, SessionState, Stat, WatchKind
from zkcoord.exceptions import (
    BadArgumentsError,
    BadVersionError,
    ConnectionClosedError,
    ConnectionLossError,
    NoChildrenForEphemeralsError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    SessionExpiredError,
)

logger = logging.getLogger(__name__)

SEQUENCE_FORMAT = "{:010d}"

_STOP = object()


def validate_path(path: str) -> None:
    """Reject paths the service would refuse."""
    if not isinstance(path, str) or not path.startswith("/"):
        raise BadArgumentsError(f"path must be an absolute string path, not {path!r}")
    if path != "/" and (path.endswith("/") or "//" in path):
        raise BadArgumentsError(f"invalid path {path!r}")


def parent_path(path: str) -> str:
    return path.rsplit("/", 1)[0] or "/"


def basename(path: str) -> str:
    return path.rsplit("/", 1)[1]


@dataclass
class _ZNode:
    data: bytes
    ctime: int
    mtime: int
    ephemeral_owner: int = 0
    version: int = 0
    cversion: int = 0
    next_sequence: int = 0
    children: set[str] = field(default_factory=set)

    def stat(self) -> Stat:
        return Stat(
            version=self.version,
            cversion=self.cversion,
            ctime=self.ctime,
            mtime=self.mtime,
            ephemeral_owner=self.ephemeral_owner,
            num_children=len(self.children),
            data_length=len(self.data),
        )


class InMemoryEnsemble:
    """A process-local coordination service shared by many sessions."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._last_time = 0
        now = self._clock()
        self._nodes: dict[str, _ZNode] = {"/": _ZNode(b"", now, now)}
        self._watches: dict[tuple[WatchKind, str], dict[int, list[Watcher]]] = {}
        self._sessions: dict[int, InMemoryConnection] = {}
        self._session_ids = itertools.count(0x1000001)

    def connect(self) -> InMemoryConnection:
        """Open a new session."""
        return InMemoryConnection(self)

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def dump(self) -> dict[str, bytes]:
        """Snapshot of every path and its data (for debugging and tests)."""
        with self._lock:
            return {path: node.data for path, node in sorted(self._nodes.items())}

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def _open_session(self, connection: InMemoryConnection) -> int:
        with self._lock:
            session_id = next(self._session_ids)
            self._sessions[session_id] = connection
            return session_id

    def _close_session(self, session_id: int) -> None:
        with self._lock:
            for watchers in self._watches.values():
                watchers.pop(session_id, None)

            self._sessions.pop(session_id, None)

            owned = [
                path
                for path, node in self._nodes.items()
                if node.ephemeral_owner == session_id
            ]
            for path in owned:
                self._remove(path)

        logger.debug("Session 0x%x closed, removed %d ephemeral node(s)", session_id, len(owned))

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def create(
        self,
        session_id: int,
        path: str,
        data: bytes,
        ephemeral: bool,
        sequential: bool,
    ) -> str:
        validate_path(path)
        if path == "/":
            raise NodeExistsError(path=path)

        with self._lock:
            parent = self._nodes.get(parent_path(path))
            if parent is None:
                raise NoNodeError(path=path)
            if parent.ephemeral_owner:
                raise NoChildrenForEphemeralsError(path=path)

            if sequential:
                path = path + SEQUENCE_FORMAT.format(parent.next_sequence)
                parent.next_sequence += 1

            if path in self._nodes:
                raise NodeExistsError(path=path)

            now = self._clock()
            self._nodes[path] = _ZNode(
                data=bytes(data),
                ctime=now,
                mtime=now,
                ephemeral_owner=session_id if ephemeral else 0,
            )
            parent.children.add(basename(path))
            parent.cversion += 1

            self._trigger(WatchKind.DATA, path, EventType.CREATED)
            self._trigger(WatchKind.CHILD, parent_path(path), EventType.CHILD)

        return path

    def exists(self, session_id: int, path: str, watcher: Watcher | None) -> Stat | None:
        validate_path(path)
        with self._lock:
            if watcher is not None:
                self._add_watch(WatchKind.DATA, path, session_id, watcher)
            node = self._nodes.get(path)
            return node.stat() if node else None

    def get(self, session_id: int, path: str, watcher: Watcher | None) -> tuple[bytes, Stat]:
        validate_path(path)
        with self._lock:
            node = self._nodes.get(path)
            if node is None:
                raise NoNodeError(path=path)
            if watcher is not None:
                self._add_watch(WatchKind.DATA, path, session_id, watcher)
            return node.data, node.stat()

    def get_children(self, session_id: int, path: str, watcher: Watcher | None) -> list[str]:
        validate_path(path)
        with self._lock:
            node = self._nodes.get(path)
            if node is None:
                raise NoNodeError(path=path)
            if watcher is not None:
                self._add_watch(WatchKind.CHILD, path, session_id, watcher)
            return sorted(node.children)

    def set(self, session_id: int, path: str, data: bytes, version: int) -> Stat:
        validate_path(path)
        with self._lock:
            node = self._nodes.get(path)
            if node is None:
                raise NoNodeError(path=path)
            if version != -1 and version != node.version:
                raise BadVersionError(path=path)

            node.data = bytes(data)
            node.version += 1
            node.mtime = self._clock()

            self._trigger(WatchKind.DATA, path, EventType.CHANGED)
            return node.stat()

    def delete(self, session_id: int, path: str, version: int) -> None:
        validate_path(path)
        if path == "/":
            raise BadArgumentsError("cannot delete the root node")

        with self._lock:
            node = self._nodes.get(path)
            if node is None:
                raise NoNodeError(path=path)
            if version != -1 and version != node.version:
                raise BadVersionError(path=path)
            if node.children:
                raise NotEmptyError(path=path)

            self._remove(path)

    # -------------------------------------------------------------------------
    # Internals (callers hold self._lock)
    # -------------------------------------------------------------------------

    def _remove(self, path: str) -> None:
        del self._nodes[path]

        parent = self._nodes.get(parent_path(path))
        if parent is not None:
            parent.children.discard(basename(path))
            parent.cversion += 1

        self._trigger(WatchKind.DATA, path, EventType.DELETED)
        self._trigger(WatchKind.CHILD, path, EventType.DELETED)
        self._trigger(WatchKind.CHILD, parent_path(path), EventType.CHILD)

    def _add_watch(self, kind: WatchKind, path: str, session_id: int, watcher: Watcher) -> None:
        watchers = self._watches.setdefault((kind, path), {}).setdefault(session_id, [])
        if watcher not in watchers:
            watchers.append(watcher)

    def _trigger(self, kind: WatchKind, path: str, event_type: EventType) -> None:
        by_session = self._watches.pop((kind, path), None)
        if not by_session:
            return

        event = NodeEvent(event_type, path)
        for session_id, watchers in by_session.items():
            connection = self._sessions.get(session_id)
            if connection is None:
                continue
            for watcher in watchers:
                connection._enqueue(watcher, event)

    def _clock(self) -> int:
        # Strictly increasing milliseconds, so a re-created node never
        # shares a ctime with the node it replaced
        now = time.time_ns() // 1_000_000
        self._last_time = max(now, self._last_time + 1)
        return self._last_time


class InMemoryConnection(Connection):
    """A session on an InMemoryEnsemble.

    Events are delivered in order on a dedicated thread. The test hooks
    expire_session(), disconnect() and reconnect() drive session state the
    way a flaky network would.
    """

    def __init__(self, ensemble: InMemoryEnsemble) -> None:
        super().__init__()
        self._ensemble = ensemble
        self._state = SessionState.CONNECTED
        self._state_lock = threading.Lock()
        self._queue: queue.SimpleQueue[object] = queue.SimpleQueue()
        self._session_id = ensemble._open_session(self)
        self._thread = threading.Thread(
            target=self._dispatch_loop,
            name=f"zkcoord-memory-0x{self._session_id:x}",
            daemon=True,
        )
        self._thread.start()

    @property
    def ensemble(self) -> InMemoryEnsemble:
        return self._ensemble

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def session_id(self) -> int:
        return self._session_id

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
        self._check_usable(path)
        return self._ensemble.create(self._session_id, path, data, ephemeral, sequential)

    def exists(self, path: str, watcher: Watcher | None = None) -> Stat | None:
        self._check_usable(path)
        return self._ensemble.exists(self._session_id, path, watcher)

    def get(self, path: str, watcher: Watcher | None = None) -> tuple[bytes, Stat]:
        self._check_usable(path)
        return self._ensemble.get(self._session_id, path, watcher)

    def get_children(self, path: str, watcher: Watcher | None = None) -> list[str]:
        self._check_usable(path)
        return self._ensemble.get_children(self._session_id, path, watcher)

    def set(self, path: str, data: bytes, version: int = -1) -> Stat:
        self._check_usable(path)
        return self._ensemble.set(self._session_id, path, data, version)

    def delete(self, path: str, version: int = -1) -> None:
        self._check_usable(path)
        self._ensemble.delete(self._session_id, path, version)

    # -------------------------------------------------------------------------
    # Session control
    # -------------------------------------------------------------------------

    def close(self) -> None:
        with self._state_lock:
            if self._state is SessionState.CLOSED:
                return
            previous = self._state
            self._state = SessionState.CLOSED

        if previous is not SessionState.EXPIRED_SESSION:
            self._ensemble._close_session(self._session_id)

        self._queue.put((None, SessionState.CLOSED))
        self._queue.put(_STOP)

        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=5.0)

    def expire_session(self) -> None:
        """Expire the session server-side, as if it timed out."""
        with self._state_lock:
            if self._state in (SessionState.EXPIRED_SESSION, SessionState.CLOSED):
                return
            self._state = SessionState.EXPIRED_SESSION

        self._ensemble._close_session(self._session_id)
        self._queue.put((None, SessionState.EXPIRED_SESSION))

    def disconnect(self) -> None:
        """Lose the connection but keep the session (and its watches)."""
        self._transition(SessionState.CONNECTED, SessionState.CONNECTING)

    def reconnect(self) -> None:
        """Re-establish a connection lost with disconnect()."""
        self._transition(SessionState.CONNECTING, SessionState.CONNECTED)

    def _transition(self, expected: SessionState, new: SessionState) -> None:
        with self._state_lock:
            if self._state is not expected:
                return
            self._state = new
        self._queue.put((None, new))

    def _check_usable(self, path: str | None = None) -> None:
        state = self.state
        if state is SessionState.EXPIRED_SESSION:
            raise SessionExpiredError("session expired", path=path, state=state)
        if state is SessionState.CLOSED:
            raise ConnectionClosedError("connection closed", path=path, state=state)
        if state is SessionState.CONNECTING:
            raise ConnectionLossError("not connected", path=path, state=state)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def _enqueue(self, watcher: Watcher, event: NodeEvent) -> None:
        self._queue.put((watcher, event))

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            target, payload = item  # type: ignore[misc]
            if target is None:
                self._notify_listeners(payload)
            else:
                self._deliver(target, payload)
