"""Election participant.

Every candidate casts an ephemeral sequential ballot. The lowest ballot
wins: its owner fires the winning callbacks and then publishes the ack
node. Everyone else waits for the ack to appear, fires the losing
callbacks and watches the ballot just below its own; when that ballot
disappears it votes again.

Example:
    candidate = client.election_candidate("scheduler", data=b"host-a:8080")
    candidate.on_winning_election(start_scheduling)
    candidate.on_losing_election(lambda: logger.info("following"))
    candidate.vote()

    if candidate.wait_for_leadership(timeout=30.0):
        ...
"""

from __future__ import annotations

import functools
import logging
import threading
from typing import TYPE_CHECKING

from zkcoord.election.base import VOTE_PREFIX, ElectionBase, ElectionCallback
from zkcoord.election.leader_ack import LeaderAckSubscription
from zkcoord.events import NodeEvent
from zkcoord.exceptions import NodeExistsError, NoNodeError
from zkcoord.locker.base import digit_from

if TYPE_CHECKING:
    from zkcoord.client.threaded import CoordinationClient
    from zkcoord.event_handler import Subscription

logger = logging.getLogger(__name__)


class Candidate(ElectionBase):
    """A participant that can become leader.

    Args:
        client: Client used for all node operations
        name: Election name
        data: Payload stored in the ballot and, once leader, the ack node
        root: Root under which elections live (defaults from settings)
    """

    def __init__(
        self,
        client: CoordinationClient,
        name: str,
        data: bytes = b"",
        root: str | None = None,
    ):
        super().__init__(client, name, root)
        self.data = data
        self._cond = threading.Condition(self._mutex)
        self._leader: bool | None = None
        self._vote_path: str | None = None
        self._generation = 0
        self._winner_callbacks: list[ElectionCallback] = []
        self._loser_callbacks: list[ElectionCallback] = []
        self._ack_subscription: LeaderAckSubscription | None = None
        self._next_ballot_subscription: Subscription | None = None

    def __repr__(self) -> str:
        return f"Candidate(name={self.name!r}, vote_path={self._vote_path!r}, leader={self._leader})"

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def leader(self) -> bool:
        """True if we won the most recent vote."""
        with self._mutex:
            return bool(self._leader)

    @property
    def voted(self) -> bool:
        """True once a vote has produced a result."""
        with self._mutex:
            return self._leader is not None

    @property
    def vote_path(self) -> str | None:
        with self._mutex:
            return self._vote_path

    def on_winning_election(self, callback: ElectionCallback) -> ElectionCallback:
        """Register a callback fired when we become leader (usable as a decorator)."""
        with self._mutex:
            self._winner_callbacks.append(callback)
        return callback

    def on_losing_election(self, callback: ElectionCallback) -> ElectionCallback:
        """Register a callback fired when someone else has taken the lead."""
        with self._mutex:
            self._loser_callbacks.append(callback)
        return callback

    def wait_for_leadership(self, timeout: float | None = None) -> bool:
        """Block until we are leader.

        Returns:
            True if leadership was acquired, False on timeout
        """
        self.client.assert_not_on_event_dispatch_thread("wait_for_leadership")
        with self._cond:
            return self._cond.wait_for(lambda: bool(self._leader), timeout)

    # -------------------------------------------------------------------------
    # Voting
    # -------------------------------------------------------------------------

    def vote(self) -> None:
        """Cast our ballot (once) and evaluate the election.

        Election callbacks run after the decision is made, outside the
        candidate's lock.
        """
        with self._mutex:
            self._generation += 1
            generation = self._generation
            self._clear_subscriptions()

            if self._vote_path is None:
                self._vote_path = self._cast_ballot(self.data)
                logger.debug("Cast ballot %s", self._vote_path)

            ballots = self._get_ballots()
            our_ballot = self._vote_path.rsplit("/", 1)[1]
            if our_ballot not in ballots:
                # Our ephemeral ballot went away with a previous session
                self._vote_path = self._cast_ballot(self.data)
                our_ballot = self._vote_path.rsplit("/", 1)[1]
                ballots = self._get_ballots()

            our_index = ballots.index(our_ballot)
            self._leader = our_index == 0
            winner_callbacks = list(self._winner_callbacks)

        if our_index == 0:
            self._handle_winning_election(generation, winner_callbacks)
        else:
            self._handle_losing_election(generation, ballots[our_index - 1])

    def close(self) -> None:
        """Withdraw from the election, giving up leadership if we hold it."""
        with self._cond:
            self._generation += 1
            self._clear_subscriptions()

            if self._leader:
                self.client.delete(self.leader_ack_path, ignore=(NoNodeError,))
            if self._vote_path is not None:
                self.client.delete(self._vote_path, ignore=(NoNodeError,))

            self._vote_path = None
            self._leader = None
            self._cond.notify_all()

        logger.info("Left election %r", self.name)

    def _get_ballots(self) -> list[str]:
        children = self.client.get_children(self.root_vote_path)
        ballots = [name for name in children if name.startswith(VOTE_PREFIX)]
        return sorted(ballots, key=digit_from)

    def _handle_winning_election(
        self, generation: int, callbacks: list[ElectionCallback]
    ) -> None:
        logger.info("Won election %r, data: %r", self.name, self.data)
        self.client.metrics.elections_total.labels(election=self.name, outcome="leader").inc()

        self._safe_call(callbacks)

        with self._cond:
            if generation != self._generation:
                return
            self._acknowledge_win()
            self._cond.notify_all()

    def _acknowledge_win(self) -> None:
        try:
            self.client.create(self.leader_ack_path, self.data, ephemeral=True)
        except NodeExistsError:
            logger.debug("%s already exists", self.leader_ack_path)

    def _handle_losing_election(self, generation: int, next_ballot: str) -> None:
        logger.info("Not the leader of %r, data: %r", self.name, self.data)
        self.client.metrics.elections_total.labels(election=self.name, outcome="follower").inc()

        next_ballot_path = f"{self.root_vote_path}/{next_ballot}"
        subscription = LeaderAckSubscription(
            self.client,
            self.leader_ack_path,
            functools.partial(self._on_leader_acked, generation, next_ballot_path),
        )
        with self._mutex:
            if generation != self._generation:
                subscription.unsubscribe()
                return
            self._ack_subscription = subscription

    def _on_leader_acked(self, generation: int, next_ballot_path: str) -> None:
        with self._mutex:
            if generation != self._generation:
                return
            callbacks = list(self._loser_callbacks)

        self._safe_call(callbacks)

        with self._mutex:
            if generation != self._generation:
                return
            logger.info("Following %s for changes", next_ballot_path)
            self._next_ballot_subscription = self.client.register(
                next_ballot_path,
                functools.partial(self._on_next_ballot_event, generation),
            )
            predecessor_gone = self.client.exists(next_ballot_path, watch=True) is None

        if predecessor_gone:
            logger.debug("%s did not exist, voting again", next_ballot_path)
            self._revote(generation)

    def _on_next_ballot_event(self, generation: int, event: NodeEvent) -> None:
        if event.node_deleted:
            logger.debug("%s was deleted, voting again", event.path)
            self._revote(generation)
        elif self.client.exists(event.path, watch=True) is None:
            logger.debug("%s was deleted (detected on re-watch), voting again", event.path)
            self._revote(generation)

    def _revote(self, generation: int) -> None:
        with self._mutex:
            if generation != self._generation:
                return
        self.client.defer(self.vote)

    def _clear_subscriptions(self) -> None:
        if self._ack_subscription is not None:
            self._ack_subscription.unsubscribe()
            self._ack_subscription = None
        if self._next_ballot_subscription is not None:
            self._next_ballot_subscription.unsubscribe()
            self._next_ballot_subscription = None
