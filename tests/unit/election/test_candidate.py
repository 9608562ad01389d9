"""Tests for election candidates."""

from __future__ import annotations

import threading

import pytest

from zkcoord.client import CoordinationClient
from zkcoord.election import Candidate
from tests.helpers import wait_until

ELECTION = "/_zkelection/president"
ACK = f"{ELECTION}/leader_ack"


class Calls:
    """Thread-safe callback recorder."""

    def __init__(self) -> None:
        self.names: list[str] = []
        self._lock = threading.Lock()

    def record(self, name: str):
        def callback() -> None:
            with self._lock:
                self.names.append(name)

        return callback

    def count(self, name: str) -> int:
        with self._lock:
            return self.names.count(name)


@pytest.fixture
def calls() -> Calls:
    return Calls()


def candidate(client: CoordinationClient, data: bytes, calls: Calls) -> Candidate:
    """A candidate that records ``<data>:won`` and ``<data>:lost``."""
    cand = client.election_candidate("president", data=data)
    cand.on_winning_election(calls.record(f"{data.decode()}:won"))
    cand.on_losing_election(calls.record(f"{data.decode()}:lost"))
    return cand


class TestVoting:
    """Winning and losing."""

    def test_first_candidate_wins(self, client: CoordinationClient, calls: Calls) -> None:
        """The lowest ballot leads and publishes its data in the ack."""
        obama = candidate(client, b"obama", calls)

        obama.vote()

        assert obama.leader
        assert obama.voted
        assert obama.vote_path == f"{ELECTION}/ballot0000000000"
        assert calls.names == ["obama:won"]
        assert obama.leader_acked()
        assert obama.leader_data() == b"obama"

    def test_second_candidate_loses(
        self, client: CoordinationClient, client2: CoordinationClient, calls: Calls
    ) -> None:
        """A later candidate follows once the ack exists."""
        obama = candidate(client, b"obama", calls)
        palin = candidate(client2, b"palin", calls)
        obama.vote()

        palin.vote()

        assert not palin.leader
        assert palin.voted
        assert wait_until(lambda: calls.count("palin:lost") == 1)
        assert calls.count("palin:won") == 0
        assert palin.leader_data() == b"obama"

    def test_ack_created_after_winner_callbacks(
        self, client: CoordinationClient, client2: CoordinationClient
    ) -> None:
        """Winner callbacks run before the ack is published."""
        seen: list[bool] = []
        obama = client.election_candidate("president", data=b"obama")

        @obama.on_winning_election
        def check_ack() -> None:
            seen.append(client2.exists(ACK) is None)

        obama.vote()

        assert seen == [True]
        assert client2.exists(ACK) is not None

    def test_loser_waits_for_ack(
        self,
        client: CoordinationClient,
        client3: CoordinationClient,
        calls: Calls,
    ) -> None:
        """Losing callbacks wait until the leader acknowledges."""
        client3.ensure_path(ELECTION)
        client3.create(f"{ELECTION}/ballot", b"silent", ephemeral=True, sequential=True)
        palin = candidate(client, b"palin", calls)

        palin.vote()

        assert not palin.leader
        assert not wait_until(lambda: calls.count("palin:lost"), timeout=0.2)

        client3.create(ACK, b"silent", ephemeral=True)

        assert wait_until(lambda: calls.count("palin:lost") == 1)

    def test_vote_is_idempotent(self, client: CoordinationClient, calls: Calls) -> None:
        """Voting again reuses the existing ballot."""
        obama = candidate(client, b"obama", calls)
        obama.vote()
        first_path = obama.vote_path

        obama.vote()

        assert obama.vote_path == first_path
        assert client.get_children(ELECTION) == ["ballot0000000000", "leader_ack"]

    def test_winner_callback_error_does_not_stop_election(
        self, client: CoordinationClient, calls: Calls
    ) -> None:
        """A raising callback is logged; later callbacks and the ack still happen."""
        obama = client.election_candidate("president", data=b"obama")

        @obama.on_winning_election
        def broken() -> None:
            raise RuntimeError("boom")

        obama.on_winning_election(calls.record("after"))

        obama.vote()

        assert obama.leader
        assert calls.names == ["after"]
        assert obama.leader_acked()

    def test_custom_root_and_escaped_name(self, client: CoordinationClient) -> None:
        """Election nodes follow the root and name escaping rules."""
        cand = client.election_candidate("team/lead", root="/elections")
        cand.vote()

        assert cand.vote_path == "/elections/team__lead/ballot0000000000"
        assert cand.leader_ack_path == "/elections/team__lead/leader_ack"


class TestSuccession:
    """Leadership moving between candidates."""

    def test_follower_takes_over_when_leader_session_dies(
        self, client: CoordinationClient, client2: CoordinationClient, calls: Calls
    ) -> None:
        """The next ballot re-votes and wins when the leader disappears."""
        obama = candidate(client, b"obama", calls)
        palin = candidate(client2, b"palin", calls)
        obama.vote()
        palin.vote()
        assert wait_until(lambda: calls.count("palin:lost") == 1)

        client.connection.expire_session()

        assert palin.wait_for_leadership(timeout=5.0)
        assert calls.count("palin:won") == 1
        assert wait_until(lambda: palin.leader_data() == b"palin")

    def test_chain_of_three(
        self,
        client: CoordinationClient,
        client2: CoordinationClient,
        client3: CoordinationClient,
        calls: Calls,
    ) -> None:
        """Removing a middle follower does not change the leader."""
        a = candidate(client, b"a", calls)
        b = candidate(client2, b"b", calls)
        c = candidate(client3, b"c", calls)
        for cand in (a, b, c):
            cand.vote()
        assert wait_until(lambda: calls.count("c:lost") == 1)

        b.close()

        # c re-votes, still loses, and now follows a directly
        assert wait_until(lambda: calls.count("c:lost") == 2)
        assert a.leader
        assert not c.leader

        a.close()

        assert c.wait_for_leadership(timeout=5.0)
        assert wait_until(lambda: c.leader_data() == b"c")

    def test_close_gives_up_leadership(
        self, client: CoordinationClient, client2: CoordinationClient, calls: Calls
    ) -> None:
        """Closing the leader removes its ack and ballot."""
        obama = candidate(client, b"obama", calls)
        obama.vote()

        obama.close()

        assert not obama.leader
        assert not obama.voted
        assert obama.vote_path is None
        assert client2.exists(ACK) is None
        assert client2.get_children(ELECTION) == []

    def test_wait_for_leadership_times_out_for_follower(
        self, client: CoordinationClient, client2: CoordinationClient, calls: Calls
    ) -> None:
        """A follower that never wins gets False."""
        candidate(client, b"obama", calls).vote()
        palin = candidate(client2, b"palin", calls)
        palin.vote()

        assert palin.wait_for_leadership(timeout=0.1) is False

    def test_missing_ballot_is_cast_again(
        self, client: CoordinationClient, client2: CoordinationClient, calls: Calls
    ) -> None:
        """A ballot removed behind our back is replaced on the next vote."""
        obama = candidate(client, b"obama", calls)
        obama.vote()
        client2.delete(obama.vote_path)

        obama.vote()

        assert obama.leader
        assert obama.vote_path == f"{ELECTION}/ballot0000000001"
        assert client2.get_children(ELECTION) == ["ballot0000000001", "leader_ack"]


class TestCallbackLocking:
    """Election callbacks run without the candidate's lock held."""

    @staticmethod
    def read_leader_from_thread(cand: Candidate, seen: list[object]) -> None:
        reader = threading.Thread(target=lambda: seen.append(cand.leader))
        reader.start()
        reader.join(1.0)
        seen.append("blocked" if reader.is_alive() else "done")

    def test_winner_callback_can_wait_on_another_thread(
        self, client: CoordinationClient
    ) -> None:
        """A thread started by a winner callback can read candidate state."""
        seen: list[object] = []
        obama = client.election_candidate("president", data=b"obama")
        obama.on_winning_election(lambda: self.read_leader_from_thread(obama, seen))

        obama.vote()

        assert seen == [True, "done"]
        assert obama.leader_acked()

    def test_loser_callback_can_wait_on_another_thread(
        self, client: CoordinationClient, client2: CoordinationClient
    ) -> None:
        """The same holds for losing callbacks fired once the ack appears."""
        seen: list[object] = []
        client2.election_candidate("president", data=b"obama").vote()
        palin = client.election_candidate("president", data=b"palin")
        palin.on_losing_election(lambda: self.read_leader_from_thread(palin, seen))

        palin.vote()

        assert wait_until(lambda: len(seen) == 2)
        assert seen == [False, "done"]
