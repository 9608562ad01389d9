"""Counting semaphore."""

from __future__ import annotations

from typing import TYPE_CHECKING

from zkcoord.exceptions import BadArgumentsError, NoNodeError
from zkcoord.locker.base import LockerBase

if TYPE_CHECKING:
    from zkcoord.client.threaded import CoordinationClient
    from zkcoord.config import Settings

SEMAPHORE_LOCK_PREFIX = "sem"


class Semaphore(LockerBase):
    """Lets up to ``size`` clients hold a resource at once.

    A candidate holds the semaphore while fewer than ``size`` candidates
    have a lower sequence number. Blocking waits until enough lower
    candidates are gone to bring that count under ``size``.

    Args:
        client: Client the candidate nodes are created with
        name: Resource name
        size: Number of concurrent holders, an int >= 1
        root: Root under which semaphores live (defaults from settings)
    """

    prefix = SEMAPHORE_LOCK_PREFIX
    kind = "semaphore"

    def __init__(
        self,
        client: CoordinationClient,
        name: str,
        size: int,
        root: str | None = None,
    ):
        if isinstance(size, bool) or not isinstance(size, int):
            raise BadArgumentsError(f"semaphore size must be an int, not {size!r}")
        if size < 1:
            raise BadArgumentsError(f"semaphore size must be >= 1, not {size}")

        self.size = size
        super().__init__(client, name, root)

    @classmethod
    def default_root(cls, settings: Settings) -> str:
        return settings.semaphore_root

    def __repr__(self) -> str:
        return (
            f"Semaphore(name={self.name!r}, size={self.size}, lock_path={self.lock_path!r}, "
            f"locked={self.locked})"
        )

    def acquirable(self) -> bool:
        if self.locked:
            return True
        try:
            return not self._blocked_by_semaphore()
        except NoNodeError:
            return True

    def _blocked_by_semaphore(self) -> bool:
        return len(self._blocking_locks()) >= self.size

    def _blocking_locks(self) -> list[str]:
        return self._lower_lock_names()

    def _allowed_blocking_locks_remaining(self) -> int:
        return self.size - 1
