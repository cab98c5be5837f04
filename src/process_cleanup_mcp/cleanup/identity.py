"""Self exclusion: never kill the process running the cleanup."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable

logger = logging.getLogger(__name__)


def current_process_id() -> str:
    """PID of this process, formatted like the PIDs parsed from tool output."""
    return str(os.getpid())


def exclude_self(candidates: Iterable[str], self_id: str) -> frozenset[str]:
    """Remove the current process from the candidate set.

    Only the exact id is removed; parents (e.g. a hosting shell) are kept.

    Args:
        candidates: Discovered process ids
        self_id: Id of the process running the cleanup

    Returns:
        Candidates without ``self_id``
    """
    remaining = frozenset(candidates)
    if self_id in remaining:
        logger.debug(f"Excluding own process {self_id} from cleanup")
        remaining = remaining - {self_id}
    return remaining


def sort_pids(pids: Iterable[str]) -> list[str]:
    """Sort process ids numerically."""
    return sorted(pids, key=int)
