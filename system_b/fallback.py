from __future__ import annotations

from typing import List, Sequence

from common.errors import CandidateSourceUnavailable
from common.logging_setup import get_logger
from common.types import CandidateCategory, CandidateObject, GeoCoordinate
from common.utils import name_similarity
from system_b.source import CandidateSource


log = get_logger("system_b")


def dedupe_by_name(candidates: Sequence[CandidateObject], threshold: float = 0.8) -> List[CandidateObject]:
    """
    Drop candidates whose name is more than `threshold` similar to an earlier
    one (first occurrence wins, so order sources by priority). Identical ids are
    always duplicates.
    """
    kept: List[CandidateObject] = []
    for c in candidates:
        dup = any(
            k.id == c.id or name_similarity(k.name, c.name) > threshold
            for k in kept
        )
        if not dup:
            kept.append(c)
    return kept


def dedupe_by_id(candidates: Sequence[CandidateObject]) -> List[CandidateObject]:
    """Drop repeated ids, first occurrence wins. Callsigns like UAL123 / UAL124 stay distinct."""
    seen = set()
    kept: List[CandidateObject] = []
    for c in candidates:
        if c.id not in seen:
            seen.add(c.id)
            kept.append(c)
    return kept


class FallbackCandidateSource(CandidateSource):
    """
    Queries several sources in priority order (e.g. live service, then the
    offline database) and merges what they return. Ground objects are
    de-duplicated by name similarity, aircraft by id only.

    A failing source is logged and skipped. Only when every source fails does
    the chain itself raise CandidateSourceUnavailable.
    """
    name = "fallback"

    def __init__(self, sources: Sequence[CandidateSource], *, similarity_threshold: float = 0.8):
        if not sources:
            raise ValueError("at least one source is required")
        self.sources = list(sources)
        self.similarity_threshold = float(similarity_threshold)

    async def fetch_candidates(
        self,
        category: CandidateCategory,
        origin: GeoCoordinate,
        radius_m: float,
    ) -> List[CandidateObject]:
        merged: List[CandidateObject] = []
        failures = 0
        for src in self.sources:
            try:
                got = await src.fetch_candidates(category, origin, radius_m)
            except CandidateSourceUnavailable as e:
                failures += 1
                log.warning("Candidate source unavailable", extra={"extra": {"source": src.name, "err": str(e)}})
                continue
            merged.extend(got)

        if failures == len(self.sources):
            raise CandidateSourceUnavailable("All candidate sources unavailable")
        if CandidateCategory(category) is CandidateCategory.AIRCRAFT:
            return dedupe_by_id(merged)
        return dedupe_by_name(merged, self.similarity_threshold)
