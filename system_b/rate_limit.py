from __future__ import annotations

import json
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

from common.errors import QuotaExceeded
from common.logging_setup import get_logger


log = get_logger("system_b")


def _day_key(t: float) -> str:
    return datetime.fromtimestamp(t, timezone.utc).strftime("%Y-%m-%d")


def _hour_key(t: float) -> str:
    return datetime.fromtimestamp(t, timezone.utc).strftime("%Y-%m-%dT%H")


class UsageLimiter:
    """
    Daily + hourly call budget for a paid candidate provider.

    Counters are keyed by UTC day / hour and persisted to a small JSON file so
    budgets survive restarts. The clock is injected (seconds since epoch) so
    tests can move time.

        {"daily": {"2025-06-01": 12}, "hourly": {"2025-06-01T14": 3}}

    Args:
        store_path: JSON file for counters (None keeps them in memory)
        max_daily: calls allowed per UTC day
        max_hourly: calls allowed per UTC hour
        clock: callable returning epoch seconds
        warn_fraction: log a warning once daily usage passes this share
    """

    def __init__(
        self,
        store_path: Optional[str] = None,
        *,
        max_daily: int = 100,
        max_hourly: int = 10,
        clock: Callable[[], float] = time.time,
        warn_fraction: float = 0.8,
    ):
        self.store_path = Path(store_path) if store_path else None
        self.max_daily = int(max_daily)
        self.max_hourly = int(max_hourly)
        self.clock = clock
        self.warn_fraction = float(warn_fraction)
        self._lock = threading.Lock()
        self._daily: Dict[str, int] = {}
        self._hourly: Dict[str, int] = {}
        self._load()

    # -------- public API --------

    def daily_calls(self) -> int:
        return self._daily.get(_day_key(self.clock()), 0)

    def hourly_calls(self) -> int:
        return self._hourly.get(_hour_key(self.clock()), 0)

    def can_call(self) -> bool:
        return self.daily_calls() < self.max_daily and self.hourly_calls() < self.max_hourly

    def acquire(self) -> None:
        """Count one call, or raise QuotaExceeded without counting it."""
        with self._lock:
            now = self.clock()
            day, hour = _day_key(now), _hour_key(now)
            d = self._daily.get(day, 0)
            h = self._hourly.get(hour, 0)
            if d >= self.max_daily:
                raise QuotaExceeded(f"Daily limit reached ({self.max_daily} calls)", window="daily")
            if h >= self.max_hourly:
                raise QuotaExceeded(f"Hourly limit reached ({self.max_hourly} calls)", window="hourly")
            self._daily = {day: d + 1}
            self._hourly = {k: v for k, v in self._hourly.items() if k.startswith(day)}
            self._hourly[hour] = h + 1
            self._save()

        if d + 1 > self.max_daily * self.warn_fraction:
            log.warning(
                "Approaching daily provider limit",
                extra={"extra": {"daily_calls": d + 1, "max_daily": self.max_daily}},
            )

    def usage(self) -> Dict[str, int]:
        return {
            "daily_calls": self.daily_calls(),
            "max_daily": self.max_daily,
            "hourly_calls": self.hourly_calls(),
            "max_hourly": self.max_hourly,
        }

    # -------- internals --------

    def _load(self) -> None:
        if self.store_path is None or not self.store_path.exists():
            return
        try:
            doc = json.loads(self.store_path.read_text())
            self._daily = {str(k): int(v) for k, v in doc.get("daily", {}).items()}
            self._hourly = {str(k): int(v) for k, v in doc.get("hourly", {}).items()}
        except (OSError, ValueError, AttributeError) as e:
            # corrupt store: start counting afresh
            log.warning("Usage store unreadable, resetting", extra={"extra": {"path": str(self.store_path), "err": str(e)}})
            self._daily, self._hourly = {}, {}

    def _save(self) -> None:
        if self.store_path is None:
            return
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.store_path.with_suffix(self.store_path.suffix + ".tmp")
        tmp.write_text(json.dumps({"daily": self._daily, "hourly": self._hourly}))
        tmp.replace(self.store_path)
