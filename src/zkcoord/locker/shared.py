"""Shared (read) lock."""

from __future__ import annotations

from zkcoord.exceptions import NoNodeError
from zkcoord.locker.base import LockerBase
from zkcoord.locker.exclusive import EXCLUSIVE_LOCK_PREFIX

SHARED_LOCK_PREFIX = "sh"


class SharedLocker(LockerBase):
    """The read side of a read/write lock.

    Any number of shared holders may coexist. A shared candidate holds the
    lock once no exclusive candidate on the same resource has a lower
    sequence number; lower shared candidates never block it.

    Example:
        reader = client.shared_locker("inventory")
        writer = client.exclusive_locker("inventory")
    """

    prefix = SHARED_LOCK_PREFIX
    kind = "shared"

    def acquirable(self) -> bool:
        if self.locked:
            return True
        try:
            children = self._lock_children()
        except NoNodeError:
            return True
        return not any(name.startswith(EXCLUSIVE_LOCK_PREFIX) for name in children)

    def _blocking_locks(self) -> list[str]:
        return [
            name for name in self._lower_lock_names() if name.startswith(EXCLUSIVE_LOCK_PREFIX)
        ]
