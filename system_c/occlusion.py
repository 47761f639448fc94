from __future__ import annotations

import math
from dataclasses import replace
from typing import List, Sequence

from common.geo import bearing_delta
from common.types import GeoCoordinate, IdentificationCandidate


def _top_angle_deg(height_m: float, distance_m: float) -> float:
    """Elevation angle of an object's top seen from ground level."""
    if distance_m <= 0.0:
        return 90.0
    return math.degrees(math.atan2(height_m, distance_m))


def blocks(nearer: IdentificationCandidate, farther: IdentificationCandidate) -> bool:
    """
    Does `nearer` hide `farther` on a shared sightline?

    Visible only when both heights are known and the farther top rises above the
    nearer silhouette; with missing height data the nearer object wins.
    """
    h_near = nearer.candidate.height_m
    h_far = farther.candidate.height_m
    if h_near is None or h_far is None:
        return True
    return _top_angle_deg(h_near, nearer.distance_m) >= _top_angle_deg(h_far, farther.distance_m)


def filter_occluded(
    origin: GeoCoordinate,
    candidates: Sequence[IdentificationCandidate],
    *,
    bin_width_deg: float,
) -> List[IdentificationCandidate]:
    """
    Flag candidates hidden behind nearer ones (ground objects only; aircraft
    have open sky and must not be passed here).

    Two candidates share a sightline when their bearings from `origin` differ by
    at most bin_width_deg. Walking outward by distance, a candidate is occluded
    if any strictly nearer candidate on its sightline blocks it. Every candidate
    is returned (flagged, never dropped), ordered by ascending distance.
    Bearings and distances on the candidates are already relative to `origin`.
    """
    ordered = sorted(candidates, key=lambda c: (c.distance_m, c.candidate.id))
    out: List[IdentificationCandidate] = []
    for i, cand in enumerate(ordered):
        hidden = False
        for nearer in ordered[:i]:
            if nearer.distance_m >= cand.distance_m:
                continue
            if bearing_delta(nearer.bearing_deg, cand.bearing_deg) > bin_width_deg:
                continue
            if blocks(nearer, cand):
                hidden = True
                break
        out.append(replace(cand, occluded=hidden) if hidden != cand.occluded else cand)
    return out
