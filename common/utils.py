from __future__ import annotations

import asyncio
import time
from typing import Optional

from common.errors import ResolutionCancelled


def clamp(v: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, v)))


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insert/delete/substitute, unit cost)."""
    if len(a) < len(b):
        a, b = b, a
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost))
        prev = cur
    return prev[-1]


def name_similarity(a: str, b: str) -> float:
    """
    1 - edit_distance / len(longer), case-insensitive. Two empty names are
    considered identical (1.0).
    """
    a = a.strip().lower()
    b = b.strip().lower()
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein(a, b)) / float(longer)


class CancellationToken:
    """
    Cooperative cancellation for one query.

    The owner calls cancel(); the pipeline checks raise_if_cancelled() between
    stages and races wait() against its only suspension point.

    Usage:
        token = CancellationToken()
        task = asyncio.create_task(orch.resolve(meta, mode, tap, token=token))
        ...
        token.cancel("user backed out")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None
        self.cancelled_at: Optional[float] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self.cancelled_at = time.time()
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ResolutionCancelled(self.reason or "cancelled")
