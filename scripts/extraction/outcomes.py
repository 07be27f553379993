"""Best-effort fan-in over per-item calls.

``settle_all`` runs a callable for every item and records success or failure
per item instead of stopping at the first exception. Callers decide which
failures, if any, to escalate.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger("extraction.outcomes")

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class Outcome(Generic[T, R]):
    item: T
    result: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def settle_all(
    items: list[T], fn: Callable[[T], R], max_workers: int = 1
) -> list[Outcome[T, R]]:
    """Call ``fn`` on every item; one outcome per item, in input order.

    With ``max_workers > 1`` the calls run on a thread pool and the join waits
    for all of them.
    """
    if max_workers <= 1 or len(items) <= 1:
        return [_settle(item, fn) for item in items]
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="extract") as pool:
        return list(pool.map(lambda item: _settle(item, fn), items))


def _settle(item: T, fn: Callable[[T], R]) -> Outcome[T, R]:
    try:
        return Outcome(item=item, result=fn(item))
    except Exception as exc:
        return Outcome(item=item, error=exc)


def log_failures(outcomes: list[Outcome[Any, Any]], what: str) -> int:
    """Log every failed outcome. Returns the number of failures."""
    failures = [o for o in outcomes if not o.ok]
    for o in failures:
        logger.error("ERROR: %s %s failed, reason: %s", what, o.item, o.error)
    return len(failures)
