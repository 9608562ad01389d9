"""One-shot notification that the election leader has published its ack."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from zkcoord.events import NodeEvent

if TYPE_CHECKING:
    from zkcoord.client.threaded import CoordinationClient
    from zkcoord.election.base import ElectionCallback

logger = logging.getLogger(__name__)


class LeaderAckSubscription:
    """Calls ``callback`` once, as soon as the ack node exists.

    If the node already exists the callback runs immediately, on the
    calling thread. Otherwise it runs on the callback executor when the
    node shows up.
    """

    def __init__(
        self,
        client: CoordinationClient,
        leader_ack_path: str,
        callback: ElectionCallback,
    ):
        self.client = client
        self.leader_ack_path = leader_ack_path
        self.callback = callback
        self._lock = threading.Lock()
        self._called = False
        self._active = True

        self._subscription = client.register(leader_ack_path, self._on_event)
        if client.exists(leader_ack_path, watch=True) is not None:
            logger.debug("%s exists, notifying", leader_ack_path)
            self._fire()

    @property
    def called(self) -> bool:
        with self._lock:
            return self._called

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    def unsubscribe(self) -> None:
        with self._lock:
            self._active = False
        self._subscription.unsubscribe()

    def _on_event(self, event: NodeEvent) -> None:
        if not self.active:
            return

        if event.node_created or event.node_changed:
            self._fire()
        elif self.client.exists(self.leader_ack_path, watch=True) is not None:
            logger.debug("%s created behind our back, notifying", self.leader_ack_path)
            self._fire()

    def _fire(self) -> None:
        with self._lock:
            if self._called or not self._active:
                return
            self._called = True

        self.unsubscribe()
        try:
            self.callback()
        except Exception:
            logger.exception("Error in leader ack callback for %s", self.leader_ack_path)
