"""
Engine configuration.

Values come from config/params.yaml (PyYAML) layered over the defaults below.
A missing file is not an error: the defaults reproduce the tolerances, radii,
timeouts and heuristic constants the app shipped with.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from common.types import CaptureMode, CandidateCategory


@dataclass(frozen=True)
class ModeProfile:
    """Per-mode search window, budget and result policy."""
    tolerance_deg: float
    max_radius_m: float
    timeout_s: float
    max_results: int
    category: CandidateCategory
    # automatic mode only: stricter bearing acceptance for the top-1 pick
    accept_deg: Optional[float] = None
    # range the ranker treats as most plausible; None -> heuristic estimate
    expected_distance_m: Optional[float] = None


@dataclass(frozen=True)
class EstimatorParams:
    """Heuristic slant-distance constants (empirical, no physical model)."""
    base_m: float = 100.0
    m_per_px: float = 2.0
    altitude_gain: float = 0.5
    min_m: float = 50.0
    max_m: float = 5000.0


@dataclass(frozen=True)
class RankingWeights:
    alignment: float = 0.65
    distance: float = 0.35
    distance_sigma: float = 1.0   # in natural-log units of d/expected
    visual_boost: float = 0.5


@dataclass(frozen=True)
class ElevationGateParams:
    min_pitch_deg: float = 5.0
    tolerance_deg: float = 15.0


@dataclass(frozen=True)
class SourcesConfig:
    local_db_path: str = "data/candidates.json"
    http_url: Optional[str] = None
    http_timeout_s: float = 10.0
    http_api_key_env: str = "UNVEAL_CANDIDATES_API_KEY"
    usage_store: str = "runtime/usage.json"
    max_daily_calls: int = 100
    max_hourly_calls: int = 10


def _default_profiles() -> Dict[CaptureMode, ModeProfile]:
    return {
        CaptureMode.LANDMARK: ModeProfile(
            tolerance_deg=8.0, max_radius_m=2_000.0, timeout_s=10.0, max_results=5,
            category=CandidateCategory.LANDMARK,
        ),
        CaptureMode.POI: ModeProfile(
            tolerance_deg=15.0, max_radius_m=2_000.0, timeout_s=10.0, max_results=5,
            category=CandidateCategory.POI,
        ),
        CaptureMode.AIRCRAFT: ModeProfile(
            tolerance_deg=15.0, max_radius_m=100_000.0, timeout_s=15.0, max_results=8,
            category=CandidateCategory.AIRCRAFT, accept_deg=10.0, expected_distance_m=20_000.0,
        ),
    }


@dataclass(frozen=True)
class EngineConfig:
    profiles: Dict[CaptureMode, ModeProfile] = field(default_factory=_default_profiles)
    base_fov_deg: float = 68.0
    min_zoom: float = 0.5
    max_zoom: float = 10.0
    estimator: EstimatorParams = field(default_factory=EstimatorParams)
    ranking: RankingWeights = field(default_factory=RankingWeights)
    elevation_gate: ElevationGateParams = field(default_factory=ElevationGateParams)
    occlusion_bin_fraction: float = 0.5
    include_occluded: bool = False
    heuristic_confidence: float = 0.25
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    log_level: str = "INFO"

    def profile(self, mode: CaptureMode) -> ModeProfile:
        return self.profiles[CaptureMode(mode)]

    def with_profile(self, mode: CaptureMode, **changes: Any) -> "EngineConfig":
        """Copy with one mode profile tweaked (tests, CLI overrides)."""
        profiles = dict(self.profiles)
        profiles[CaptureMode(mode)] = replace(profiles[CaptureMode(mode)], **changes)
        return replace(self, profiles=profiles)


def _pick(section: Mapping[str, Any], cls, base):
    """Overlay known keys of a YAML section onto a dataclass instance."""
    known = {k: section[k] for k in getattr(cls, "__dataclass_fields__") if k in section}
    return replace(base, **known)


def config_from_dict(P: Mapping[str, Any]) -> EngineConfig:
    cfg = EngineConfig()
    cam = P.get("camera", {}) or {}
    profiles = dict(cfg.profiles)
    for name, section in (P.get("modes", {}) or {}).items():
        mode = CaptureMode(name)
        section = dict(section or {})
        if "category" in section:
            section["category"] = CandidateCategory(section["category"])
        profiles[mode] = _pick(section, ModeProfile, profiles[mode])

    occ = P.get("occlusion", {}) or {}
    return replace(
        cfg,
        profiles=profiles,
        base_fov_deg=float(cam.get("base_fov_deg", cfg.base_fov_deg)),
        min_zoom=float(cam.get("min_zoom", cfg.min_zoom)),
        max_zoom=float(cam.get("max_zoom", cfg.max_zoom)),
        estimator=_pick(P.get("estimator", {}) or {}, EstimatorParams, cfg.estimator),
        ranking=_pick(P.get("ranking", {}) or {}, RankingWeights, cfg.ranking),
        elevation_gate=_pick(P.get("elevation_gate", {}) or {}, ElevationGateParams, cfg.elevation_gate),
        occlusion_bin_fraction=float(occ.get("bin_fraction", cfg.occlusion_bin_fraction)),
        include_occluded=bool(occ.get("include_occluded", cfg.include_occluded)),
        heuristic_confidence=float(P.get("heuristic_confidence", cfg.heuristic_confidence)),
        sources=_pick(P.get("sources", {}) or {}, SourcesConfig, cfg.sources),
        log_level=str((P.get("logging", {}) or {}).get("level", cfg.log_level)),
    )


def load_config(path: str = "config/params.yaml") -> EngineConfig:
    if not Path(path).exists():
        return EngineConfig()
    with open(path, "r") as f:
        return config_from_dict(yaml.safe_load(f) or {})
