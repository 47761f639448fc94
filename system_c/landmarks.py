from __future__ import annotations

from enum import Enum
from dataclasses import replace
from typing import List, Optional, Sequence

from common.types import CandidateCategory, CandidateObject, IdentificationCandidate


class LandmarkCategory(str, Enum):
    HISTORICAL_SITE = "historical_site"
    RELIGIOUS_BUILDING = "religious_building"
    GOVERNMENT = "government"
    MONUMENT = "monument"
    CULTURAL_SITE = "cultural_site"
    TOURIST_ATTRACTION = "tourist_attraction"
    ARCHITECTURE = "architecture"
    BRIDGE = "bridge"
    TOWER = "tower"
    MUSEUM = "museum"


_RELIGIOUS = ("church", "cathedral", "chapel", "mosque", "synagogue", "temple", "basilica", "abbey", "monastery")
_GOVERNMENT = ("capitol", "city hall", "courthouse", "white house", "parliament", "congress", "federal")
_MONUMENT = ("monument", "memorial", "statue", "obelisk", "arch")
_OBSERVATION = ("observation", "space", "cn", "eiffel", "liberty")
_FAMOUS_BRIDGES = ("golden gate", "brooklyn", "london", "tower bridge")
_MUSEUM = ("museum", "gallery", "art", "history", "science")
_FAMOUS = (
    "empire state", "chrysler building", "one world trade", "freedom tower",
    "transamerica pyramid", "salesforce tower", "space needle", "willis tower",
    "sears tower", "burj", "taipei 101", "petronas", "cn tower", "big ben",
    "eiffel tower", "statue of liberty", "hollywood sign", "golden gate bridge",
)
_CULTURAL = ("opera", "theater", "concert", "cultural", "arts")


def _any(name: str, words: Sequence[str]) -> bool:
    return any(w in name for w in words)


def categorize_landmark(candidate: CandidateObject) -> Optional[LandmarkCategory]:
    """
    Classify a ground candidate by name keywords and database attributes
    (`building_type`, `construction_year`, `wikipedia_url`). First rule that
    fires wins, in this order:

        religious, government, monument, observation tower, bridge, museum,
        famous architecture, built before 1900, tourist attraction, cultural,
        any other landmark-typed building

    Returns None for aircraft and for ordinary buildings.
    """
    if candidate.category is CandidateCategory.AIRCRAFT:
        return None

    name = candidate.name.lower()
    attrs = candidate.attributes
    btype = str(attrs.get("building_type") or "").lower()
    is_landmark_type = btype == "landmark" or (not btype and candidate.category is CandidateCategory.LANDMARK)

    if _any(name, _RELIGIOUS):
        return LandmarkCategory.RELIGIOUS_BUILDING
    if _any(name, _GOVERNMENT) or btype == "government":
        return LandmarkCategory.GOVERNMENT
    if _any(name, _MONUMENT):
        return LandmarkCategory.MONUMENT
    if "tower" in name and _any(name, _OBSERVATION):
        return LandmarkCategory.TOWER
    if "bridge" in name:
        low = candidate.height_m is not None and candidate.height_m < 50.0
        if _any(name, _FAMOUS_BRIDGES) or low:
            return LandmarkCategory.BRIDGE
    if _any(name, _MUSEUM):
        return LandmarkCategory.MUSEUM
    if _any(name, _FAMOUS):
        return LandmarkCategory.ARCHITECTURE

    year = attrs.get("construction_year")
    if isinstance(year, (int, float)) and not isinstance(year, bool) and year < 1900:
        return LandmarkCategory.HISTORICAL_SITE
    if attrs.get("wikipedia_url") and is_landmark_type:
        return LandmarkCategory.TOURIST_ATTRACTION
    if _any(name, _CULTURAL):
        return LandmarkCategory.CULTURAL_SITE
    if is_landmark_type:
        return LandmarkCategory.TOURIST_ATTRACTION
    return None


def tag_landmarks(candidates: Sequence[IdentificationCandidate]) -> List[IdentificationCandidate]:
    """Attach categorize_landmark() to each candidate, order unchanged."""
    out: List[IdentificationCandidate] = []
    for c in candidates:
        cat = categorize_landmark(c.candidate)
        out.append(replace(c, landmark_category=None if cat is None else cat.value))
    return out
