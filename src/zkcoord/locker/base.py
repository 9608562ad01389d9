"""Common machinery for sequence-ordered locks.

A lock attempt creates an ephemeral sequential candidate node under

    <root>/<escaped resource name>/<prefix><10 digit sequence>

and then evaluates the subclass's predicate over the ordered siblings.
Ordering always uses the numeric suffix, never the prefix, so exclusive
and shared candidates interleave by arrival.

Blocking acquisition waits (through NodeDeletionWatcher) for enough of
the candidates that block us to go away, then re-reads the siblings and
re-checks, until the predicate holds.

Losing the session releases the candidate server-side but does not
clear ``locked``; call assert_locked() before relying on the lock.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, ClassVar

from zkcoord.events import Stat
from zkcoord.exceptions import (
    BadArgumentsError,
    InterruptedSessionError,
    LockAssertionFailedError,
    LockWaitTimeoutError,
    NoNodeError,
    NotEmptyError,
)
from zkcoord.locker.options import LockOptions
from zkcoord.node_deletion_watcher import NodeDeletionWatcher
from zkcoord.observability.logging import LogContext

if TYPE_CHECKING:
    from zkcoord.client.threaded import CoordinationClient
    from zkcoord.config import Settings

logger = logging.getLogger(__name__)

_SEQUENCE_RE = re.compile(r"(\d+)$")

# Attempts at creating a candidate whose resource node keeps disappearing
CREATE_ATTEMPTS = 5


def digit_from(path: str) -> int:
    """Sequence number at the end of a candidate path or name."""
    match = _SEQUENCE_RE.search(path)
    if match is None:
        raise BadArgumentsError(f"{path!r} has no sequence suffix")
    return int(match.group(1))


def escape_name(name: str) -> str:
    """Resource names may contain '/', node names may not."""
    return name.replace("/", "__")


class LockerBase(ABC):
    """Base class for ExclusiveLocker, SharedLocker and Semaphore.

    Args:
        client: Client the candidate nodes are created with
        name: Resource name; '/' is escaped to '__'
        root: Root under which resources live (defaults from settings)
    """

    prefix: ClassVar[str]
    kind: ClassVar[str]

    def __init__(self, client: CoordinationClient, name: str, root: str | None = None):
        if not name:
            raise BadArgumentsError("lock name must not be empty")

        self.client = client
        self.name = name
        self.root = root or self.default_root(client.settings)
        self.root_lock_path = f"{self.root}/{escape_name(name)}"

        self._mutex = threading.RLock()
        self._cond = threading.Condition(self._mutex)
        self._locked = False
        self._lock_path: str | None = None
        self._parent_stat: Stat | None = None
        self._watcher: NodeDeletionWatcher | None = None

    @classmethod
    def default_root(cls, settings: Settings) -> str:
        return settings.lock_root

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, lock_path={self._lock_path!r}, "
            f"locked={self._locked})"
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def locked(self) -> bool:
        with self._mutex:
            return self._locked

    @property
    def lock_path(self) -> str | None:
        with self._mutex:
            return self._lock_path

    @property
    def lock_basename(self) -> str | None:
        with self._mutex:
            return self._lock_path.rsplit("/", 1)[1] if self._lock_path else None

    @property
    def lock_number(self) -> int | None:
        with self._mutex:
            return digit_from(self._lock_path) if self._lock_path else None

    @property
    def waiting(self) -> bool:
        """True while a lock() call is blocked waiting for other candidates."""
        with self._mutex:
            return self._watcher is not None and self._watcher.blocked

    def wait_until_blocked(self, timeout: float | None = None) -> bool:
        """Wait for another thread's lock() call to start blocking.

        Returns:
            True if it is blocked, False if it never got that far
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        with self._cond:
            if not self._cond.wait_for(lambda: self._watcher is not None, timeout):
                return False
            watcher = self._watcher

        remaining = max(0.0, deadline - time.monotonic()) if deadline is not None else None
        return watcher.wait_until_blocked(remaining)  # type: ignore[union-attr]

    # -------------------------------------------------------------------------
    # Acquire / release
    # -------------------------------------------------------------------------

    def lock(self, wait: bool | float | None = False) -> bool:
        """Acquire the lock.

        Args:
            wait: False/None to try once, True to block until acquired,
                or a number of seconds to block at most

        Returns:
            True if the lock is held, False if it was busy and wait was False

        Raises:
            LockWaitTimeoutError: wait was a number and it elapsed
            InterruptedSessionError: the session was lost while acquiring
        """
        if self.locked:
            return True

        options = LockOptions.from_wait(wait)
        if options.blocking:
            self.client.assert_not_on_event_dispatch_thread("lock")

        metrics = self.client.metrics
        started = time.monotonic()
        outcome = "error"
        acquired = False

        with LogContext(resource=self.root_lock_path):
            try:
                self._create_lock_path()
                acquired = self._got_lock() or (
                    options.blocking and self._block_until_lock(options.timeout)
                )
                outcome = "acquired" if acquired else "busy"
            except LockWaitTimeoutError:
                outcome = "timeout"
                raise
            finally:
                if acquired:
                    with self._cond:
                        self._locked = True
                else:
                    self._abandon_lock_path()

                metrics.lock_acquisitions_total.labels(kind=self.kind, result=outcome).inc()
                if options.blocking:
                    metrics.lock_wait_seconds.labels(kind=self.kind).observe(
                        time.monotonic() - started
                    )

            logger.debug("lock() on %s: %s", self.root_lock_path, outcome)

        return acquired

    def acquire(self, blocking: bool = True, timeout: float | None = None) -> bool:
        """threading.Lock style spelling of lock()."""
        if blocking and timeout is not None:
            return self.lock(wait=timeout)
        return self.lock(wait=blocking)

    def unlock(self) -> bool:
        """Release the lock.

        Returns:
            True if our candidate was removed, False if we did not hold the
            lock (or its parent had been replaced)
        """
        with self._cond:
            if not self._locked:
                return False
            try:
                with LogContext(resource=self.root_lock_path):
                    logger.debug("Unlocking %s", self._lock_path)
                    return self._cleanup_lock_path()
            finally:
                self._locked = False
                self._watcher = None
                self._cond.notify_all()

    release = unlock

    @contextmanager
    def with_lock(self, wait: bool | float = True) -> Iterator[LockerBase]:
        """Hold the lock for the duration of a with block.

        Raises:
            BadArgumentsError: wait=False (a with block needs the lock)
        """
        if wait is False:
            raise BadArgumentsError("with_lock() always blocks, wait=False is not allowed")

        self.lock(wait=wait)
        try:
            yield self
        finally:
            self.unlock()

    def __enter__(self) -> LockerBase:
        self.lock(wait=True)
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unlock()

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def assert_locked(self) -> None:
        """Check that we really hold the lock right now.

        Raises:
            LockAssertionFailedError: with the first reason we don't
        """
        with self._mutex:
            if not self._locked:
                raise LockAssertionFailedError("have not obtained the lock yet")
            if not self._lock_path:
                raise LockAssertionFailedError(f"lock_path was {self._lock_path!r}")
            if not self.client.connected:
                raise LockAssertionFailedError(
                    f"session is not connected (state: {self.client.state.value})"
                )
            if self.client.exists(self._lock_path) is None:
                raise LockAssertionFailedError(f"the lock path {self._lock_path} did not exist!")
            if not self._root_lock_path_same():
                raise LockAssertionFailedError("the parent node was replaced!")
            if not self._got_lock():
                raise LockAssertionFailedError("we do not actually hold the lock")

    def verify(self) -> bool:
        """Non-raising assert_locked()."""
        try:
            self.assert_locked()
        except LockAssertionFailedError:
            return False
        return True

    @abstractmethod
    def acquirable(self) -> bool:
        """True if a non-blocking lock() would probably succeed now."""
        pass

    # -------------------------------------------------------------------------
    # Predicate
    # -------------------------------------------------------------------------

    @abstractmethod
    def _blocking_locks(self) -> list[str]:
        """Names of the siblings standing between us and the lock."""
        pass

    def _allowed_blocking_locks_remaining(self) -> int:
        return 0

    def _got_lock(self) -> bool:
        with self._mutex:
            if self._lock_path is None:
                return False
            return len(self._blocking_locks()) <= self._allowed_blocking_locks_remaining()

    def _lock_children(self) -> list[str]:
        return self.client.get_children(self.root_lock_path)

    def _ordered_lock_children(self) -> list[str]:
        children = [name for name in self._lock_children() if _SEQUENCE_RE.search(name)]
        return sorted(children, key=digit_from)

    def _lower_lock_names(self) -> list[str]:
        ordered = self._ordered_lock_children()
        number = self.lock_number
        if number is None:
            return ordered
        return [name for name in ordered if digit_from(name) < number]

    # -------------------------------------------------------------------------
    # Candidate node
    # -------------------------------------------------------------------------

    def _create_lock_path(self) -> str:
        with self._mutex:
            if self._lock_path_exists():
                return self._lock_path  # type: ignore[return-value]

            path = self._create_candidate()
            self._lock_path = path
            self._parent_stat = self.client.stat(self.root_lock_path)

        logger.debug("Got lock path %s", path)
        return path

    def _create_candidate(self) -> str:
        # Another client's cleanup may delete the empty resource node between
        # our ensure_path() and create()
        candidate = f"{self.root_lock_path}/{self.prefix}"
        for _ in range(CREATE_ATTEMPTS - 1):
            try:
                return self.client.create(candidate, ephemeral=True, sequential=True)
            except NoNodeError:
                self.client.ensure_path(self.root_lock_path)
        return self.client.create(candidate, ephemeral=True, sequential=True)

    def _lock_path_exists(self) -> bool:
        with self._mutex:
            if self._lock_path is None or not self._root_lock_path_same():
                return False
            return self.client.exists(self._lock_path) is not None

    def _root_lock_path_same(self) -> bool:
        with self._mutex:
            if self._parent_stat is None:
                return False
            current = self.client.stat(self.root_lock_path)
            return current is not None and current.ctime == self._parent_stat.ctime

    def _cleanup_lock_path(self) -> bool:
        with self._mutex:
            lock_path = self._lock_path
            try:
                if lock_path is None or not self._root_lock_path_same():
                    return False
                logger.debug("Removing lock path %s", lock_path)
                self.client.delete(lock_path, ignore=(NoNodeError,))
                self.client.delete(self.root_lock_path, ignore=(NotEmptyError, NoNodeError))
                return True
            finally:
                self._lock_path = None
                self._parent_stat = None

    def _abandon_lock_path(self) -> None:
        # Cleanup after a failed attempt; with the session gone the candidate
        # is removed (or will be) by the server
        try:
            self._cleanup_lock_path()
        except InterruptedSessionError as exc:
            logger.warning("Could not remove candidate under %s: %s", self.root_lock_path, exc)

    # -------------------------------------------------------------------------
    # Blocking
    # -------------------------------------------------------------------------

    def _blocking_lock_paths(self) -> list[str]:
        return [f"{self.root_lock_path}/{name}" for name in self._blocking_locks()]

    def _block_until_lock(self, timeout: float | None = None) -> bool:
        deadline = time.monotonic() + timeout if timeout is not None else None
        allowed = self._allowed_blocking_locks_remaining()

        while True:
            paths = self._blocking_lock_paths()
            if len(paths) <= allowed:
                return True

            watcher = NodeDeletionWatcher(self.client, paths, threshold=allowed)
            with self._cond:
                self._watcher = watcher
                self._cond.notify_all()

            logger.debug("%s blocking on %s", self.lock_basename, paths)
            remaining = max(0.0, deadline - time.monotonic()) if deadline is not None else None
            watcher.block_until_deleted(timeout=remaining)
