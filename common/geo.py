from __future__ import annotations

from typing import Sequence, Tuple
import math
import numpy as np

from common.types import GeoCoordinate


# Mean Earth radius (m); spherical approximation of WGS84
_R_EARTH_M = 6371008.8


def _clamp_unit(x: float) -> float:
    """Clamp to [-1, 1] so asin/acos never see rounding overshoot."""
    return -1.0 if x < -1.0 else (1.0 if x > 1.0 else x)


def normalize_bearing(deg: float) -> float:
    """Wrap any angle into [0, 360). Never returns a negative value nor 360.0."""
    b = math.fmod(float(deg), 360.0)
    if b < 0.0:
        b += 360.0
    # fmod of tiny negatives can round up to exactly 360.0
    return 0.0 if b >= 360.0 else b


def bearing_delta(a_deg: float, b_deg: float) -> float:
    """Minimal circular difference between two bearings, in [0, 180]."""
    d = abs(normalize_bearing(a_deg) - normalize_bearing(b_deg))
    return 360.0 - d if d > 180.0 else d


def _wrap_lon(lon: float) -> float:
    lon = math.fmod(lon + 180.0, 360.0)
    if lon < 0.0:
        lon += 360.0
    return lon - 180.0


# -------------------------
# Great-circle & bearings
# -------------------------
def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance on WGS84 sphere approximation."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dphi = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2.0) ** 2
    return 2 * _R_EARTH_M * math.asin(math.sqrt(_clamp_unit(a)))


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2 (degrees, 0..360)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dl = math.radians(lon2 - lon1)
    y = math.sin(dl) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dl)
    if x == 0.0 and y == 0.0:
        # coincident points (or exact pole-to-pole): atan2 would still give 0, keep it explicit
        return 0.0
    return normalize_bearing(math.degrees(math.atan2(y, x)))


def destination_point(lat: float, lon: float, bearing_deg: float, distance_m: float) -> Tuple[float, float]:
    """
    Forward great-circle projection: start at (lat, lon), travel distance_m along
    the initial bearing. Returns (lat, lon) in degrees, lon wrapped to [-180, 180].
    """
    delta = float(distance_m) / _R_EARTH_M
    theta = math.radians(bearing_deg)
    phi1 = math.radians(lat)
    lam1 = math.radians(lon)

    sin_phi2 = math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    phi2 = math.asin(_clamp_unit(sin_phi2))
    y = math.sin(theta) * math.sin(delta) * math.cos(phi1)
    x = math.cos(delta) - math.sin(phi1) * math.sin(phi2)
    lam2 = lam1 + math.atan2(y, x)

    lat2 = max(-90.0, min(90.0, math.degrees(phi2)))
    return lat2, _wrap_lon(math.degrees(lam2))


# -------------------------
# GeoCoordinate-level API
# -------------------------
def bearing_between(a: GeoCoordinate, b: GeoCoordinate) -> float:
    return initial_bearing_deg(a.lat, a.lon, b.lat, b.lon)


def distance_between(a: GeoCoordinate, b: GeoCoordinate) -> float:
    return haversine_m(a.lat, a.lon, b.lat, b.lon)


def destination(origin: GeoCoordinate, bearing_deg: float, distance_m: float) -> GeoCoordinate:
    lat, lon = destination_point(origin.lat, origin.lon, bearing_deg, distance_m)
    return GeoCoordinate(lat=lat, lon=lon)


def bearings_and_distances(
    origin: GeoCoordinate,
    targets: Sequence[GeoCoordinate],
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorised bearing (deg, [0,360)) and haversine distance (m) from origin to
    every target. Same formulas as the scalar helpers above.
    """
    if len(targets) == 0:
        return np.zeros(0, dtype=float), np.zeros(0, dtype=float)
    lat2 = np.radians(np.array([t.lat for t in targets], dtype=float))
    lon2 = np.radians(np.array([t.lon for t in targets], dtype=float))
    phi1 = math.radians(origin.lat)
    lam1 = math.radians(origin.lon)

    dphi = lat2 - phi1
    dl = lon2 - lam1
    a = np.sin(dphi / 2.0) ** 2 + math.cos(phi1) * np.cos(lat2) * np.sin(dl / 2.0) ** 2
    dist = 2 * _R_EARTH_M * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))

    y = np.sin(dl) * np.cos(lat2)
    x = math.cos(phi1) * np.sin(lat2) - math.sin(phi1) * np.cos(lat2) * np.cos(dl)
    brg = np.mod(np.degrees(np.arctan2(y, x)), 360.0)
    brg = np.where(brg >= 360.0, 0.0, brg)
    return brg, dist


def elevation_angle_deg(horizontal_m: float, observer_alt_m: float, target_alt_m: float) -> float:
    """Angle above the local horizontal from observer to target (degrees)."""
    return math.degrees(math.atan2(float(target_alt_m) - float(observer_alt_m), max(0.0, float(horizontal_m))))
