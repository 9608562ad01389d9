"""Leader election.

Provides:
- Candidate: casts a ballot; the lowest ballot leads and publishes an ack
- Observer: follows the ack node without voting
- LeaderAckSubscription: one-shot notification that the ack exists
"""

from zkcoord.election.base import LEADER_ACK_NAME, VOTE_PREFIX, ElectionBase
from zkcoord.election.candidate import Candidate
from zkcoord.election.leader_ack import LeaderAckSubscription
from zkcoord.election.observer import Observer

__all__ = [
    "ElectionBase",
    "Candidate",
    "Observer",
    "LeaderAckSubscription",
    "VOTE_PREFIX",
    "LEADER_ACK_NAME",
]
