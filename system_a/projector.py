from __future__ import annotations

from common.config import ModeProfile
from common.geo import normalize_bearing
from common.types import BearingRay, GeoCoordinate, TapPoint


def project_bearing(
    tap: TapPoint,
    image_width: float,
    image_height: float,
    heading_deg: float,
    fov_deg: float,
) -> float:
    """
    Compass bearing (deg, [0,360)) of the tapped pixel column.

    The horizontal offset from the image centre is normalised to [-0.5, 0.5] of
    the image width and scaled by the effective horizontal FOV. Linear in pixels
    (no lens model); good enough at the tolerances the matcher uses.

    Caller guarantees: tap inside the image, 0 < fov < 180.
    """
    center_offset = (tap.x / float(image_width)) - 0.5
    return normalize_bearing(heading_deg + center_offset * fov_deg)


def make_ray(origin: GeoCoordinate, bearing_deg: float, profile: ModeProfile) -> BearingRay:
    return BearingRay(
        origin=origin,
        bearing_deg=bearing_deg,
        tolerance_deg=profile.tolerance_deg,
        max_radius_m=profile.max_radius_m,
    )
