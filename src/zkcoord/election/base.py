"""Shared pieces of the election recipe.

Node layout:
    <root>/<escaped election name>/ballot<10 digit sequence>   (one per candidate)
    <root>/<escaped election name>/leader_ack                  (created by the leader)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from zkcoord.exceptions import NoNodeError
from zkcoord.locker.base import CREATE_ATTEMPTS, escape_name

if TYPE_CHECKING:
    from zkcoord.client.threaded import CoordinationClient

logger = logging.getLogger(__name__)

VOTE_PREFIX = "ballot"
LEADER_ACK_NAME = "leader_ack"

ElectionCallback = Callable[[], None]


class ElectionBase:
    """State common to candidates and observers.

    Args:
        client: Client used for all node operations
        name: Election name; '/' is escaped to '__'
        root: Root under which elections live (defaults from settings)
    """

    def __init__(self, client: CoordinationClient, name: str, root: str | None = None):
        self.client = client
        self.name = name
        self.root = root or client.settings.election_root
        self.root_vote_path = f"{self.root}/{escape_name(name)}"
        self.leader_ack_path = f"{self.root_vote_path}/{LEADER_ACK_NAME}"
        self._mutex = threading.RLock()

    def leader_acked(self, watch: bool = False) -> bool:
        """True if the current leader has published its ack node."""
        return self.client.exists(self.leader_ack_path, watch=watch) is not None

    def leader_data(self) -> bytes | None:
        """Data the current leader published, None if there is no leader."""
        try:
            data, _ = self.client.get(self.leader_ack_path)
        except NoNodeError:
            return None
        return data

    def _cast_ballot(self, data: bytes) -> str:
        ballot = f"{self.root_vote_path}/{VOTE_PREFIX}"
        for _ in range(CREATE_ATTEMPTS - 1):
            try:
                return self.client.create(ballot, data, ephemeral=True, sequential=True)
            except NoNodeError:
                self.client.ensure_path(self.root_vote_path)
        return self.client.create(ballot, data, ephemeral=True, sequential=True)

    def _safe_call(self, callbacks: Iterable[ElectionCallback]) -> None:
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Error in election callback for %r", self.name)
