from __future__ import annotations

import math
from dataclasses import replace
from typing import List, Sequence

from common.config import RankingWeights
from common.types import BearingRay, IdentificationCandidate
from common.utils import clamp


def alignment_score(bearing_delta_deg: float, tolerance_deg: float) -> float:
    """1 on the ray, 0 at the tolerance edge."""
    if tolerance_deg <= 0:
        return 0.0
    return clamp(1.0 - bearing_delta_deg / tolerance_deg, 0.0, 1.0)


def distance_plausibility(distance_m: float, expected_m: float, sigma: float = 1.0) -> float:
    """
    Log-normal bump centred on the expected range: 1 at d == expected, falling
    off symmetrically for "much nearer" and "much farther" (ratio-wise).
    """
    d = max(distance_m, 1.0)
    e = max(expected_m, 1.0)
    s = max(sigma, 1e-6)
    r = math.log(d / e)
    return math.exp(-(r * r) / (2.0 * s * s))


def composite_confidence(
    cand: IdentificationCandidate,
    tolerance_deg: float,
    expected_distance_m: float,
    weights: RankingWeights,
) -> float:
    base = (
        weights.alignment * alignment_score(cand.bearing_delta_deg, tolerance_deg)
        + weights.distance * distance_plausibility(cand.distance_m, expected_distance_m, weights.distance_sigma)
    )
    v = cand.candidate.visual_confidence
    if v is not None:
        base *= 1.0 + weights.visual_boost * v
    return clamp(base, 0.0, 1.0)


def rank_candidates(
    candidates: Sequence[IdentificationCandidate],
    ray: BearingRay,
    *,
    expected_distance_m: float,
    weights: RankingWeights = RankingWeights(),
) -> List[IdentificationCandidate]:
    """
    Score and order candidates, highest confidence first; ties go to the nearer
    candidate, then to the smaller id so equal inputs always order the same.
    """
    scored = [
        replace(c, confidence=composite_confidence(c, ray.tolerance_deg, expected_distance_m, weights))
        for c in candidates
    ]
    scored.sort(key=lambda c: (-c.confidence, c.distance_m, c.candidate.id))
    return scored
