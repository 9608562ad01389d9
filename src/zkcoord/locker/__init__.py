"""Cluster-wide locks built from ephemeral sequential nodes.

Provides:
- ExclusiveLocker: one holder at a time (the write side)
- SharedLocker: many readers, excluded by lower exclusive candidates
- Semaphore: up to N holders

Node layout:
    <root>/<escaped resource name>/<prefix><10 digit sequence>

with prefixes "ex", "sh" and "sem".
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from zkcoord.locker.base import LockerBase, digit_from, escape_name
from zkcoord.locker.exclusive import EXCLUSIVE_LOCK_PREFIX, ExclusiveLocker
from zkcoord.locker.options import LockOptions
from zkcoord.locker.semaphore import SEMAPHORE_LOCK_PREFIX, Semaphore
from zkcoord.locker.shared import SHARED_LOCK_PREFIX, SharedLocker

if TYPE_CHECKING:
    from zkcoord.client.threaded import CoordinationClient


def exclusive_locker(client: CoordinationClient, name: str, root: str | None = None) -> ExclusiveLocker:
    return ExclusiveLocker(client, name, root)


def shared_locker(client: CoordinationClient, name: str, root: str | None = None) -> SharedLocker:
    return SharedLocker(client, name, root)


def semaphore(
    client: CoordinationClient, name: str, size: int, root: str | None = None
) -> Semaphore:
    return Semaphore(client, name, size, root)


__all__ = [
    "LockerBase",
    "ExclusiveLocker",
    "SharedLocker",
    "Semaphore",
    "LockOptions",
    "EXCLUSIVE_LOCK_PREFIX",
    "SHARED_LOCK_PREFIX",
    "SEMAPHORE_LOCK_PREFIX",
    "exclusive_locker",
    "shared_locker",
    "semaphore",
    "digit_from",
    "escape_name",
]
