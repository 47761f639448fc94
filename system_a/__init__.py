"""
System A — Sighting

Turns a capture (metadata + optional tap) into geometry the matcher can use:
- projector.py: tap pixel -> compass bearing, bearing -> search ray
- estimator.py: heuristic slant distance when nothing in the database matches

Usage examples:
    from system_a.projector import project_bearing, make_ray
    from system_a.estimator import estimate_distance
"""
from .projector import project_bearing, make_ray
from .estimator import estimate_distance

__all__ = ["project_bearing", "make_ray", "estimate_distance"]
