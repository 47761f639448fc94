from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from common.config import ElevationGateParams
from common.geo import bearings_and_distances, elevation_angle_deg
from common.logging_setup import get_logger
from common.types import BearingRay, CandidateObject, IdentificationCandidate


log = get_logger("system_c")


@dataclass(frozen=True, slots=True)
class ElevationGate:
    """
    Rejects aircraft whose elevation angle from the observer disagrees with the
    camera pitch. Only active when the camera is tilted more than
    min_pitch_deg; candidates without an altitude always pass.
    """
    observer_alt_m: float
    pitch_deg: float
    min_pitch_deg: float = 5.0
    tolerance_deg: float = 15.0

    @classmethod
    def from_params(cls, observer_alt_m: float, pitch_deg: float, params: ElevationGateParams) -> "ElevationGate":
        return cls(observer_alt_m=observer_alt_m, pitch_deg=pitch_deg,
                   min_pitch_deg=params.min_pitch_deg, tolerance_deg=params.tolerance_deg)

    @property
    def active(self) -> bool:
        return abs(self.pitch_deg) > self.min_pitch_deg

    def admits(self, candidate: CandidateObject, horizontal_m: float) -> bool:
        if not self.active or candidate.altitude_m is None:
            return True
        elev = elevation_angle_deg(horizontal_m, self.observer_alt_m, candidate.altitude_m)
        return abs(self.pitch_deg - elev) <= self.tolerance_deg


def match_candidates(
    ray: BearingRay,
    candidates: Sequence[CandidateObject],
    *,
    elevation_gate: Optional[ElevationGate] = None,
) -> List[IdentificationCandidate]:
    """
    Keep candidates inside the ray's window:

        circular_delta(ray.bearing, bearing(origin, c)) <= ray.tolerance
        distance(origin, c) <= ray.max_radius

    Input order is preserved. An empty result is a normal outcome.
    """
    if not candidates:
        return []

    brg, dist = bearings_and_distances(ray.origin, [c.coordinate for c in candidates])
    diff = np.abs(brg - ray.bearing_deg)
    delta = np.where(diff > 180.0, 360.0 - diff, diff)
    keep = (delta <= ray.tolerance_deg) & (dist <= ray.max_radius_m)

    out: List[IdentificationCandidate] = []
    gated = 0
    for i in np.flatnonzero(keep):
        c = candidates[int(i)]
        if elevation_gate is not None and not elevation_gate.admits(c, float(dist[i])):
            gated += 1
            continue
        out.append(
            IdentificationCandidate(
                candidate=c,
                bearing_deg=float(brg[i]),
                bearing_delta_deg=float(delta[i]),
                distance_m=float(dist[i]),
            )
        )

    log.debug(
        "Candidate match",
        extra={"extra": {"bearing": ray.bearing_deg, "tolerance": ray.tolerance_deg,
                         "radius_m": ray.max_radius_m, "offered": len(candidates),
                         "matched": len(out), "elevation_gated": gated}},
    )
    return out
