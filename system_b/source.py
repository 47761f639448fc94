from __future__ import annotations

from typing import Dict, FrozenSet, List

from common.types import CandidateCategory, CandidateObject, GeoCoordinate


# Which stored categories answer a query for a given category.
CATEGORY_GROUPS: Dict[CandidateCategory, FrozenSet[CandidateCategory]] = {
    CandidateCategory.LANDMARK: frozenset({CandidateCategory.LANDMARK, CandidateCategory.BUILDING}),
    CandidateCategory.BUILDING: frozenset({CandidateCategory.LANDMARK, CandidateCategory.BUILDING}),
    CandidateCategory.POI: frozenset({CandidateCategory.POI, CandidateCategory.LANDMARK, CandidateCategory.BUILDING}),
    CandidateCategory.AIRCRAFT: frozenset({CandidateCategory.AIRCRAFT}),
}


class CandidateSource:
    """
    Interface consumed by the orchestrator.

    Implementations return every object of a compatible category within
    radius_m of origin. Partial or empty answers are fine; a source that cannot
    answer at all raises CandidateSourceUnavailable.
    """
    name: str = "source"

    async def fetch_candidates(
        self,
        category: CandidateCategory,
        origin: GeoCoordinate,
        radius_m: float,
    ) -> List[CandidateObject]:
        raise NotImplementedError
