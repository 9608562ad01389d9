"""Event and stat types shared by connections and the dispatch layer.

Connections turn whatever their driver delivers into these immutable
values before handing them to the EventHandler:

- NodeEvent: a one-shot watch fired for a path
- SessionEvent: the session moved to a new state
- Stat: node metadata returned by exists/get/set
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EventType(str, Enum):
    """Type of a node event."""

    CREATED = "created"
    DELETED = "deleted"
    CHANGED = "changed"
    CHILD = "child"
    SESSION = "session"
    NOT_WATCHING = "not_watching"


# Event types a subscriber can filter on with register(..., only=...)
NODE_EVENT_TYPES = frozenset(
    {EventType.CREATED, EventType.DELETED, EventType.CHANGED, EventType.CHILD}
)


class SessionState(str, Enum):
    """State of the client session."""

    CONNECTING = "connecting"
    ASSOCIATING = "associating"
    CONNECTED = "connected"
    CONNECTED_READ_ONLY = "connected_read_only"
    AUTH_FAILED = "auth_failed"
    EXPIRED_SESSION = "expired_session"
    CLOSED = "closed"

    @property
    def client_invalid(self) -> bool:
        """True if the session can never be used again."""
        return self in (SessionState.EXPIRED_SESSION, SessionState.AUTH_FAILED)


# States that interrupt anything blocked waiting on the server
INTERRUPTING_STATES = (
    SessionState.EXPIRED_SESSION,
    SessionState.CONNECTING,
    SessionState.CLOSED,
)


class WatchKind(str, Enum):
    """Kind of server watch.

    DATA watches are set by exists() and get(), CHILD watches by
    get_children().
    """

    DATA = "data"
    CHILD = "child"


@dataclass(frozen=True, slots=True)
class Stat:
    """Node metadata."""

    version: int = 0
    cversion: int = 0
    ctime: int = 0
    mtime: int = 0
    ephemeral_owner: int = 0
    num_children: int = 0
    data_length: int = 0

    @property
    def ephemeral(self) -> bool:
        return self.ephemeral_owner != 0


@dataclass(frozen=True, slots=True)
class NodeEvent:
    """A watch fired for a node."""

    type: EventType
    path: str
    state: SessionState = SessionState.CONNECTED

    @property
    def node_created(self) -> bool:
        return self.type is EventType.CREATED

    @property
    def node_deleted(self) -> bool:
        return self.type is EventType.DELETED

    @property
    def node_changed(self) -> bool:
        return self.type is EventType.CHANGED

    @property
    def node_child(self) -> bool:
        return self.type is EventType.CHILD

    @property
    def interest_key(self) -> EventType:
        return self.type


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """The session changed state."""

    state: SessionState
    type: EventType = EventType.SESSION

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


AnyEvent = NodeEvent | SessionEvent
