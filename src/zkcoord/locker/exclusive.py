"""Exclusive (write) lock."""

from __future__ import annotations

from zkcoord.exceptions import NoNodeError
from zkcoord.locker.base import LockerBase

EXCLUSIVE_LOCK_PREFIX = "ex"


class ExclusiveLocker(LockerBase):
    """Mutual exclusion across every client of a resource.

    The holder is the candidate with the lowest sequence number among all
    siblings, shared or exclusive. Used with SharedLocker on the same
    resource name it is the write side of a read/write lock.

    Example:
        locker = client.exclusive_locker("reports/daily")
        with locker.with_lock(wait=30.0):
            build_report()
    """

    prefix = EXCLUSIVE_LOCK_PREFIX
    kind = "exclusive"

    def acquirable(self) -> bool:
        if self.locked:
            return True
        try:
            stat = self.client.stat(self.root_lock_path)
        except NoNodeError:
            return True
        return stat is None or stat.num_children == 0

    def _blocking_locks(self) -> list[str]:
        # Every lower candidate blocks us; only the nearest one is watched
        return self._lower_lock_names()
