"""Watches an election without taking part in it."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from zkcoord.election.base import ElectionBase, ElectionCallback
from zkcoord.events import NodeEvent

if TYPE_CHECKING:
    from zkcoord.client.threaded import CoordinationClient
    from zkcoord.event_handler import Subscription

logger = logging.getLogger(__name__)


class Observer(ElectionBase):
    """Tracks whether the election currently has an acknowledged leader.

    Fires on_leaders_death callbacks when the ack node goes away and
    on_new_leader callbacks when one appears. Ambiguous events are
    resolved by re-reading the ack node with a fresh watch.

    Example:
        observer = client.election_observer("scheduler")
        observer.on_new_leader(lambda: print("leader:", observer.leader_data()))
        observer.on_leaders_death(pause_submissions)
        observer.observe()
    """

    def __init__(self, client: CoordinationClient, name: str, root: str | None = None):
        super().__init__(client, name, root)
        self._leader_death_callbacks: list[ElectionCallback] = []
        self._new_leader_callbacks: list[ElectionCallback] = []
        self._leader_alive: bool | None = None
        self._observing = False
        self._subscription: Subscription | None = None

    @property
    def leader_alive(self) -> bool | None:
        """Last observed leader state, None before observe()."""
        with self._mutex:
            return self._leader_alive

    @property
    def observing(self) -> bool:
        with self._mutex:
            return self._observing

    def on_leaders_death(self, callback: ElectionCallback) -> ElectionCallback:
        with self._mutex:
            self._leader_death_callbacks.append(callback)
        return callback

    def on_new_leader(self, callback: ElectionCallback) -> ElectionCallback:
        with self._mutex:
            self._new_leader_callbacks.append(callback)
        return callback

    def observe(self) -> None:
        """Start watching; fires the callback matching the current state."""
        with self._mutex:
            if self._observing:
                return
            self._observing = True
            self._subscription = self.client.register(self.leader_ack_path, self._on_ack_event)

        self._transition(self.leader_acked(watch=True))

    def close(self) -> None:
        """Stop watching and forget all callbacks."""
        with self._mutex:
            if not self._observing:
                return
            if self._subscription is not None:
                self._subscription.unsubscribe()
                self._subscription = None
            self._leader_death_callbacks.clear()
            self._new_leader_callbacks.clear()
            self._leader_alive = None
            self._observing = False

    def _on_ack_event(self, event: NodeEvent) -> None:
        if event.node_deleted:
            self._transition(False)
        elif event.node_created:
            self._transition(True)
        else:
            self._transition(self.leader_acked(watch=True))

    def _transition(self, alive: bool) -> None:
        while True:
            with self._mutex:
                if not self._observing:
                    return
                changed = alive != self._leader_alive
                if changed:
                    self._leader_alive = alive
                    callbacks = list(
                        self._new_leader_callbacks if alive else self._leader_death_callbacks
                    )

            if changed:
                logger.info("Leader of %r is %s", self.name, "alive" if alive else "dead")
                self._safe_call(callbacks)

            # The ack may have changed again while callbacks ran
            current = self.leader_acked(watch=True)
            if current == alive:
                return
            alive = current
