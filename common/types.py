from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Tuple, Any, Dict, Mapping
from datetime import datetime, timezone
import math

from common.errors import InvalidInput


IsoTime = str


def now_iso() -> IsoTime:
    """UTC timestamp in RFC3339/ISO-8601 with 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _finite(name: str, v: Any) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be a number, got {v!r}") from None
    if not math.isfinite(f):
        raise InvalidInput(f"{name} must be finite")
    return f


class CaptureMode(str, Enum):
    """Which resolution flow a capture goes through."""
    LANDMARK = "landmark"   # interactive, tap required
    POI = "poi"             # interactive, tap required
    AIRCRAFT = "aircraft"   # automatic, no tap

    @property
    def interactive(self) -> bool:
        return self is not CaptureMode.AIRCRAFT


class CandidateCategory(str, Enum):
    LANDMARK = "landmark"
    BUILDING = "building"
    AIRCRAFT = "aircraft"
    POI = "poi"


class CalculationMethod(str, Enum):
    MATCHED = "matched_database"
    HEURISTIC = "heuristic"


@dataclass(frozen=True, slots=True)
class GeoCoordinate:
    """WGS84 latitude/longitude in degrees."""
    lat: float
    lon: float

    def __post_init__(self) -> None:
        lat = _finite("lat", self.lat)
        lon = _finite("lon", self.lon)
        if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
            raise InvalidInput("lat/lon out of range")
        object.__setattr__(self, "lat", lat)
        object.__setattr__(self, "lon", lon)


@dataclass(frozen=True, slots=True)
class TapPoint:
    """Pixel position inside the captured image (origin top-left)."""
    x: float
    y: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", _finite("tap.x", self.x))
        object.__setattr__(self, "y", _finite("tap.y", self.y))

    def within(self, width: float, height: float) -> bool:
        return 0.0 <= self.x <= width and 0.0 <= self.y <= height

    @classmethod
    def center_of(cls, width: float, height: float) -> "TapPoint":
        return cls(x=width / 2.0, y=height / 2.0)


@dataclass(frozen=True, slots=True)
class CaptureMetadata:
    """
    Sensor snapshot taken with one photo. Produced by the capture layer and
    consumed read-only by the engine.

    Attributes:
        ts: ISO-8601 (UTC) capture time.
        coordinate: observer position.
        altitude_m: meters above sea level.
        heading_deg: compass heading, clockwise from true north, [0, 360).
        pitch_deg, roll_deg: device attitude (degrees).
        focal_length_mm: lens focal length.
        image_width, image_height: image resolution (pixels).
        zoom_factor: optical/digital zoom at capture time.
        effective_fov_deg: horizontal FOV after zoom (base FOV / zoom).
        gps_accuracy_m: horizontal accuracy reported by the location provider.
    """
    ts: IsoTime
    coordinate: GeoCoordinate
    altitude_m: float
    heading_deg: float
    pitch_deg: float
    roll_deg: float
    focal_length_mm: float
    image_width: int
    image_height: int
    zoom_factor: float
    effective_fov_deg: float
    gps_accuracy_m: float

    def __post_init__(self) -> None:
        if not isinstance(self.coordinate, GeoCoordinate):
            raise InvalidInput("coordinate must be a GeoCoordinate")
        heading = _finite("heading_deg", self.heading_deg)
        if not (0.0 <= heading <= 360.0):
            raise InvalidInput("heading_deg must be within [0, 360]")
        object.__setattr__(self, "heading_deg", 0.0 if heading == 360.0 else heading)
        for name in ("altitude_m", "pitch_deg", "roll_deg", "focal_length_mm", "zoom_factor",
                     "effective_fov_deg", "gps_accuracy_m"):
            object.__setattr__(self, name, _finite(name, getattr(self, name)))
        if int(self.image_width) <= 0 or int(self.image_height) <= 0:
            raise InvalidInput("image resolution must be positive")
        object.__setattr__(self, "image_width", int(self.image_width))
        object.__setattr__(self, "image_height", int(self.image_height))
        if self.zoom_factor <= 0:
            raise InvalidInput("zoom_factor must be > 0")
        if not (0.0 < self.effective_fov_deg < 180.0):
            raise InvalidInput("effective_fov_deg must be within (0, 180)")
        if self.gps_accuracy_m < 0:
            raise InvalidInput("gps_accuracy_m must be >= 0")

    @staticmethod
    def effective_fov(base_fov_deg: float, zoom_factor: float) -> float:
        return float(base_fov_deg) / float(zoom_factor)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "CaptureMetadata":
        """Build from the flat capture record (lat/lon/width/height keys)."""
        try:
            return cls(
                ts=str(d.get("ts") or now_iso()),
                coordinate=GeoCoordinate(lat=d["lat"], lon=d["lon"]),
                altitude_m=d.get("altitude_m", 0.0),
                heading_deg=d["heading_deg"],
                pitch_deg=d.get("pitch_deg", 0.0),
                roll_deg=d.get("roll_deg", 0.0),
                focal_length_mm=d.get("focal_length_mm", 0.0),
                image_width=d["width"],
                image_height=d["height"],
                zoom_factor=d.get("zoom_factor", 1.0),
                effective_fov_deg=d["effective_fov_deg"],
                gps_accuracy_m=d.get("gps_accuracy_m", 0.0),
            )
        except KeyError as e:
            raise InvalidInput(f"capture metadata missing key: {e.args[0]}") from None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ts": self.ts,
            "lat": self.coordinate.lat,
            "lon": self.coordinate.lon,
            "altitude_m": self.altitude_m,
            "heading_deg": self.heading_deg,
            "pitch_deg": self.pitch_deg,
            "roll_deg": self.roll_deg,
            "focal_length_mm": self.focal_length_mm,
            "width": self.image_width,
            "height": self.image_height,
            "zoom_factor": self.zoom_factor,
            "effective_fov_deg": self.effective_fov_deg,
            "gps_accuracy_m": self.gps_accuracy_m,
        }


@dataclass(frozen=True, slots=True)
class BearingRay:
    """Search ray from the observer: bearing +/- tolerance, out to max_radius_m."""
    origin: GeoCoordinate
    bearing_deg: float
    tolerance_deg: float
    max_radius_m: float

    def __post_init__(self) -> None:
        b = _finite("bearing_deg", self.bearing_deg) % 360.0
        object.__setattr__(self, "bearing_deg", 0.0 if b >= 360.0 else b)
        if _finite("tolerance_deg", self.tolerance_deg) <= 0:
            raise InvalidInput("tolerance_deg must be > 0")
        if _finite("max_radius_m", self.max_radius_m) <= 0:
            raise InvalidInput("max_radius_m must be > 0")


@dataclass(frozen=True, slots=True)
class CandidateObject:
    """
    A geo-referenced object eligible for matching, supplied per query.

    height_m is the structure height above ground (buildings, landmarks);
    altitude_m is the altitude above sea level (aircraft). visual_confidence is
    an optional external recognition score in [0, 1].
    """
    id: str
    name: str
    category: CandidateCategory
    coordinate: GeoCoordinate
    height_m: Optional[float] = None
    altitude_m: Optional[float] = None
    visual_confidence: Optional[float] = None
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidInput("candidate id is required")
        object.__setattr__(self, "category", CandidateCategory(self.category))
        if self.height_m is not None:
            object.__setattr__(self, "height_m", _finite("height_m", self.height_m))
        if self.altitude_m is not None:
            object.__setattr__(self, "altitude_m", _finite("altitude_m", self.altitude_m))
        if self.visual_confidence is not None:
            v = _finite("visual_confidence", self.visual_confidence)
            object.__setattr__(self, "visual_confidence", min(1.0, max(0.0, v)))

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "CandidateObject":
        """Offline-database / HTTP schema: flat lat/lon plus optional extras."""
        known = {"id", "name", "category", "lat", "lon", "height_m", "altitude_m", "visual_confidence"}
        try:
            return cls(
                id=str(d["id"]),
                name=str(d.get("name") or d["id"]),
                category=CandidateCategory(d["category"]),
                coordinate=GeoCoordinate(lat=d["lat"], lon=d["lon"]),
                height_m=d.get("height_m"),
                altitude_m=d.get("altitude_m"),
                visual_confidence=d.get("visual_confidence"),
                attributes={k: v for k, v in d.items() if k not in known},
            )
        except KeyError as e:
            raise InvalidInput(f"candidate missing key: {e.args[0]}") from None
        except ValueError as e:
            # unknown category string
            raise InvalidInput(str(e)) from None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "lat": self.coordinate.lat,
            "lon": self.coordinate.lon,
        }
        for k in ("height_m", "altitude_m", "visual_confidence"):
            v = getattr(self, k)
            if v is not None:
                d[k] = v
        d.update(self.attributes)
        return d


@dataclass(frozen=True, slots=True)
class IdentificationCandidate:
    """A candidate evaluated against one bearing ray."""
    candidate: CandidateObject
    bearing_deg: float
    bearing_delta_deg: float
    distance_m: float
    occluded: bool = False
    confidence: float = 0.0
    # ground modes only; see system_c.landmarks
    landmark_category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate.to_dict(),
            "bearing_deg": self.bearing_deg,
            "bearing_delta_deg": self.bearing_delta_deg,
            "distance_m": self.distance_m,
            "occluded": self.occluded,
            "confidence": self.confidence,
            "landmark_category": self.landmark_category,
        }


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    """
    Outcome of one query.

    candidates: primary ranked list (best first, never occluded entries).
    occluded: occlusion-flagged "might also be" tier.
    selected: automatic mode only; the single accepted candidate, or None.
    estimated_target / estimated_distance_m: set on the heuristic path only.
    """
    mode: CaptureMode
    method: CalculationMethod
    bearing_deg: float
    candidates: Tuple[IdentificationCandidate, ...]
    occluded: Tuple[IdentificationCandidate, ...] = ()
    selected: Optional[IdentificationCandidate] = None
    no_confident_match: bool = False
    estimated_target: Optional[GeoCoordinate] = None
    estimated_distance_m: Optional[float] = None
    confidence: float = 0.0
    states: Tuple[str, ...] = ()
    ts: IsoTime = field(default_factory=now_iso)
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def best(self) -> Optional[IdentificationCandidate]:
        if self.selected is not None:
            return self.selected
        return self.candidates[0] if self.candidates else None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "ts": self.ts,
            "mode": self.mode.value,
            "method": self.method.value,
            "bearing_deg": self.bearing_deg,
            "confidence": self.confidence,
            "no_confident_match": self.no_confident_match,
            "candidates": [c.to_dict() for c in self.candidates],
            "occluded": [c.to_dict() for c in self.occluded],
            "selected": None if self.selected is None else self.selected.to_dict(),
            "estimated_target": None if self.estimated_target is None else asdict(self.estimated_target),
            "estimated_distance_m": self.estimated_distance_m,
            "states": list(self.states),
            "metadata": dict(self.metadata),
        }
        return d
