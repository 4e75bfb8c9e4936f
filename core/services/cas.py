from __future__ import annotations

import logging
from typing import Callable, TypeVar

from core.services.exceptions import ConcurrentUpdateError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_conflict(fn: Callable[[], T], *, attempts: int = 5) -> T:
    """
    Run a read-modify-CAS callable until it wins the version check.

    `fn` must re-read the record on every call. The last ConcurrentUpdateError
    is re-raised once `attempts` are used up.
    """
    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ConcurrentUpdateError as exc:
            if attempt == attempts:
                raise
            logger.info("Retrying after version conflict (%s/%s): %s", attempt, attempts, exc)
    raise AssertionError("unreachable")
