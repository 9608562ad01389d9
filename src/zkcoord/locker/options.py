"""Options accepted by LockerBase.lock()."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from zkcoord.exceptions import BadArgumentsError


@dataclass(frozen=True, slots=True)
class LockOptions:
    """How long a lock() call may block.

    ``wait`` may be:
    - False or None: try once, never block
    - True: block until acquired
    - a number >= 0: block for at most that many seconds
    """

    blocking: bool = False
    timeout: float | None = None

    @classmethod
    def from_wait(cls, wait: Any) -> LockOptions:
        if wait is None or isinstance(wait, bool):
            return cls(blocking=bool(wait))

        if isinstance(wait, (int, float)):
            if wait < 0:
                raise BadArgumentsError(
                    f"wait must be a non-negative number of seconds, not {wait!r}"
                )
            return cls(blocking=True, timeout=float(wait))

        raise BadArgumentsError(f"wait must be True, False, None or a number, not {wait!r}")
