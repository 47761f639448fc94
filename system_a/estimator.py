from __future__ import annotations

import math

from common.config import EstimatorParams
from common.types import TapPoint


def estimate_distance(
    tap: TapPoint,
    image_width: float,
    image_height: float,
    zoom_factor: float,
    altitude_m: float,
    params: EstimatorParams = EstimatorParams(),
) -> float:
    """
    Heuristic slant distance (m) to the tapped object, used only when no
    database candidate matched.

        base = base_m + |tap - centre|_px * m_per_px
        d    = base / zoom + altitude * altitude_gain
        d    = clamp(d, min_m, max_m)

    The result is advisory: out-of-range values are clipped, never rejected.
    """
    dx = abs(tap.x - image_width / 2.0)
    dy = abs(tap.y - image_height / 2.0)
    offset_px = math.hypot(dx, dy)

    base = params.base_m + offset_px * params.m_per_px
    zoom = zoom_factor if zoom_factor > 0 else 1.0
    d = base / zoom + altitude_m * params.altitude_gain

    if math.isnan(d):
        return float(params.min_m)
    return float(max(params.min_m, min(d, params.max_m)))
