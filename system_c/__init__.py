"""
System C — Candidate Matching & Ranking

This package provides:
- Bearing-window matching of a supplied candidate set against a search ray
  (optionally gated by camera pitch for aircraft)
- Line-of-sight (occlusion) flagging for ground objects on a shared sightline
- Landmark classification of ground candidates (religious, monument, museum, ...)
- Composite confidence scoring (bearing alignment, range plausibility,
  external visual confidence) and deterministic ordering

All functions are pure; candidate retrieval lives in System B.
"""
from .matcher import match_candidates, ElevationGate
from .occlusion import filter_occluded
from .ranking import rank_candidates
from .landmarks import categorize_landmark, tag_landmarks, LandmarkCategory

__all__ = [
    "match_candidates", "ElevationGate", "filter_occluded", "rank_candidates",
    "categorize_landmark", "tag_landmarks", "LandmarkCategory",
]
