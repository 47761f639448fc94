from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, List, Optional

from common.errors import CandidateSourceUnavailable, InvalidInput
from common.geo import haversine_m
from common.logging_setup import get_logger
from common.types import CandidateCategory, CandidateObject, GeoCoordinate
from system_b.source import CATEGORY_GROUPS, CandidateSource


log = get_logger("system_b")


class LocalCandidateDB(CandidateSource):
    """
    Offline candidate database backed by a JSON file:

        { "version": 1, "candidates": [ {id, name, category, lat, lon, ...}, ... ] }

    Rows that fail validation are skipped (and counted), the way the tile index
    skips malformed metadata. Loaded once; queries are in-memory scans.
    """
    name = "local_db"

    def __init__(self, path: Optional[str] = "data/candidates.json", candidates: Optional[Iterable[CandidateObject]] = None):
        self.path = Path(path) if path else None
        self.skipped = 0
        self._items: List[CandidateObject] = []
        if candidates is not None:
            self._items = list(candidates)
        else:
            self._load()

    # -------- public API --------

    def __len__(self) -> int:
        return len(self._items)

    def candidates_near(
        self,
        category: CandidateCategory,
        origin: GeoCoordinate,
        radius_m: float,
    ) -> List[CandidateObject]:
        wanted = CATEGORY_GROUPS[CandidateCategory(category)]
        return [
            c for c in self._items
            if c.category in wanted
            and haversine_m(origin.lat, origin.lon, c.coordinate.lat, c.coordinate.lon) <= radius_m
        ]

    async def fetch_candidates(
        self,
        category: CandidateCategory,
        origin: GeoCoordinate,
        radius_m: float,
    ) -> List[CandidateObject]:
        return self.candidates_near(category, origin, radius_m)

    def stats(self) -> dict:
        by_cat: dict = {}
        for c in self._items:
            by_cat[c.category.value] = by_cat.get(c.category.value, 0) + 1
        return {"candidates": len(self._items), "skipped": self.skipped, "by_category": by_cat}

    # -------- internals --------

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            raise CandidateSourceUnavailable(f"Candidate database not found: {self.path}")
        try:
            doc = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise CandidateSourceUnavailable(f"Cannot read candidate database {self.path}: {e}") from e

        rows = doc.get("candidates", []) if isinstance(doc, dict) else doc
        for row in rows:
            try:
                self._items.append(CandidateObject.from_dict(row))
            except (InvalidInput, TypeError, AttributeError):
                self.skipped += 1
                continue
        # stable ordering for deterministic downstream ties
        self._items.sort(key=lambda c: c.id)
        log.info("Loaded candidate database", extra={"extra": {"path": str(self.path), **self.stats()}})
