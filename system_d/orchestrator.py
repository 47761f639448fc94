"""
Resolution orchestrator: sequences System A -> B -> C for one capture.

    IDLE -> BEARING_COMPUTED -> CANDIDATES_QUERIED -> [OCCLUSION_FILTERED] -> RANKED -> COMPLETED
    FAILED (bad input) / CANCELLED (caller backed out) from any non-terminal state

The only suspension point is the candidate fetch. It is bounded by the mode's
timeout and raced against the query's CancellationToken; a timeout or an
unavailable source sends the query down the heuristic path, never to FAILED.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from common.config import EngineConfig, ModeProfile
from common.errors import CandidateSourceUnavailable, InvalidInput, ResolutionCancelled
from common.geo import destination
from common.logging_setup import ContextLogger, bind, get_logger
from common.types import (
    BearingRay,
    CalculationMethod,
    CandidateObject,
    CaptureMetadata,
    CaptureMode,
    IdentificationCandidate,
    ResolutionResult,
    TapPoint,
)
from common.utils import CancellationToken
from system_a.estimator import estimate_distance
from system_a.projector import make_ray, project_bearing
from system_b.source import CandidateSource
from system_c.landmarks import tag_landmarks
from system_c.matcher import ElevationGate, match_candidates
from system_c.occlusion import filter_occluded
from system_c.ranking import rank_candidates


log = get_logger("system_d")

ALGORITHM_VERSION = "1.0"


class ResolutionState(str, Enum):
    IDLE = "idle"
    BEARING_COMPUTED = "bearing_computed"
    CANDIDATES_QUERIED = "candidates_queried"
    OCCLUSION_FILTERED = "occlusion_filtered"
    RANKED = "ranked"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_NEXT: Dict[ResolutionState, FrozenSet[ResolutionState]] = {
    ResolutionState.IDLE: frozenset({ResolutionState.BEARING_COMPUTED}),
    ResolutionState.BEARING_COMPUTED: frozenset({ResolutionState.CANDIDATES_QUERIED}),
    ResolutionState.CANDIDATES_QUERIED: frozenset({ResolutionState.OCCLUSION_FILTERED, ResolutionState.RANKED}),
    ResolutionState.OCCLUSION_FILTERED: frozenset({ResolutionState.RANKED}),
    ResolutionState.RANKED: frozenset({ResolutionState.COMPLETED}),
}
TERMINAL = frozenset({ResolutionState.COMPLETED, ResolutionState.FAILED, ResolutionState.CANCELLED})


@dataclass
class QueryContext:
    """Per-query pipeline state; owned by exactly one resolve() call."""
    mode: CaptureMode
    query_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: ResolutionState = ResolutionState.IDLE
    history: List[ResolutionState] = field(default_factory=lambda: [ResolutionState.IDLE])
    log: ContextLogger = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.log = bind(log, query=self.query_id, mode=self.mode.value)

    def advance(self, new: ResolutionState) -> None:
        if self.state in TERMINAL:
            raise RuntimeError(f"query {self.query_id} already {self.state.value}")
        if new not in (ResolutionState.FAILED, ResolutionState.CANCELLED) and new not in _NEXT[self.state]:
            raise RuntimeError(f"illegal transition {self.state.value} -> {new.value}")
        self.state = new
        self.history.append(new)
        self.log.debug("Resolution state", extra={"extra": {"state": new.value}})

    def abort(self, terminal: ResolutionState) -> None:
        """FAILED / CANCELLED from wherever the query stopped; no-op once terminal."""
        if self.state not in TERMINAL:
            self.advance(terminal)

    @property
    def trace(self) -> Tuple[str, ...]:
        return tuple(s.value for s in self.history)


class ResolutionOrchestrator:
    """
    Resolve captures against an injected candidate source.

    Holds only read-only configuration and the source; each resolve() call owns
    its own QueryContext, so concurrent queries never share mutable state.

    Usage:
        orch = ResolutionOrchestrator(load_config(), LocalCandidateDB())
        result = await orch.resolve(meta, CaptureMode.LANDMARK, TapPoint(812, 400))
    """

    def __init__(self, config: Optional[EngineConfig] = None, source: Optional[CandidateSource] = None):
        self.config = config or EngineConfig()
        self.source = source

    async def resolve(
        self,
        metadata: CaptureMetadata,
        mode: CaptureMode,
        tap: Optional[TapPoint] = None,
        *,
        token: Optional[CancellationToken] = None,
    ) -> ResolutionResult:
        try:
            mode = CaptureMode(mode)
        except ValueError:
            raise InvalidInput(f"unknown capture mode: {mode!r}") from None
        ctx = QueryContext(mode=mode)
        try:
            self._check(token)
            profile = self.config.profile(mode)
            tap = self._validate(metadata, mode, tap)

            # Idle -> BearingComputed
            bearing = project_bearing(
                tap, metadata.image_width, metadata.image_height,
                metadata.heading_deg, metadata.effective_fov_deg,
            )
            ray = make_ray(metadata.coordinate, bearing, profile)
            ctx.advance(ResolutionState.BEARING_COMPUTED)

            # BearingComputed -> CandidatesQueried
            self._check(token)
            offered, source_status = await self._query(ctx, profile, ray, token)
            gate = None
            if mode is CaptureMode.AIRCRAFT:
                gate = ElevationGate.from_params(metadata.altitude_m, metadata.pitch_deg, self.config.elevation_gate)
            matched = match_candidates(ray, offered, elevation_gate=gate)
            ctx.advance(ResolutionState.CANDIDATES_QUERIED)

            # ground objects only: aircraft have open sky
            self._check(token)
            if mode is not CaptureMode.AIRCRAFT:
                matched = filter_occluded(
                    ray.origin, matched,
                    bin_width_deg=profile.tolerance_deg * self.config.occlusion_bin_fraction,
                )
                matched = tag_landmarks(matched)
                ctx.advance(ResolutionState.OCCLUSION_FILTERED)

            estimated_m = estimate_distance(
                tap, metadata.image_width, metadata.image_height,
                metadata.zoom_factor, metadata.altitude_m, self.config.estimator,
            )
            ranked = rank_candidates(
                matched, ray,
                expected_distance_m=profile.expected_distance_m or estimated_m,
                weights=self.config.ranking,
            )
            ctx.advance(ResolutionState.RANKED)

            self._check(token)
            result = self._package(
                ctx, metadata, profile, ray, ranked, estimated_m,
                {"source": source_status, "offered": len(offered), "matched": len(matched)},
            )
        except InvalidInput as e:
            ctx.abort(ResolutionState.FAILED)
            ctx.log.warning("Resolution failed", extra={"extra": {"err": str(e)}})
            raise
        except (ResolutionCancelled, asyncio.CancelledError):
            ctx.abort(ResolutionState.CANCELLED)
            ctx.log.info("Resolution cancelled")
            raise
        except Exception:
            ctx.abort(ResolutionState.FAILED)
            ctx.log.exception("Resolution failed unexpectedly")
            raise

        ctx.log.info(
            "Resolution completed",
            extra={"extra": {
                "method": result.method.value,
                "bearing": round(result.bearing_deg, 2), "candidates": len(result.candidates),
                "occluded": len(result.occluded), "confidence": round(result.confidence, 3),
            }},
        )
        return result

    # ---------------------------
    # Stages
    # ---------------------------

    @staticmethod
    def _check(token: Optional[CancellationToken]) -> None:
        if token is not None:
            token.raise_if_cancelled()

    def _validate(self, metadata: CaptureMetadata, mode: CaptureMode, tap: Optional[TapPoint]) -> TapPoint:
        if not isinstance(metadata, CaptureMetadata):
            raise InvalidInput("metadata must be a CaptureMetadata")
        if not (self.config.min_zoom <= metadata.zoom_factor <= self.config.max_zoom):
            raise InvalidInput(
                f"zoom_factor {metadata.zoom_factor} outside [{self.config.min_zoom}, {self.config.max_zoom}]"
            )
        if not mode.interactive:
            # automatic mode aims with the heading alone
            return TapPoint.center_of(metadata.image_width, metadata.image_height)
        if tap is None:
            raise InvalidInput(f"{mode.value} mode requires a tap point")
        if not tap.within(metadata.image_width, metadata.image_height):
            raise InvalidInput(
                f"tap ({tap.x}, {tap.y}) outside image {metadata.image_width}x{metadata.image_height}"
            )
        return tap

    async def _query(
        self,
        ctx: QueryContext,
        profile: ModeProfile,
        ray: BearingRay,
        token: Optional[CancellationToken],
    ) -> Tuple[List[CandidateObject], str]:
        """
        One outstanding fetch per query. Returns (candidates, status) where
        status is ok | timeout | unavailable | no_source.
        """
        if self.source is None:
            return [], "no_source"

        fetch = asyncio.ensure_future(
            self.source.fetch_candidates(profile.category, ray.origin, ray.max_radius_m)
        )
        waiters = {fetch}
        stop = None
        if token is not None:
            stop = asyncio.ensure_future(token.wait())
            waiters.add(stop)

        try:
            done, _ = await asyncio.wait(waiters, timeout=profile.timeout_s, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in waiters:
                if not t.done():
                    t.cancel()
            # reap what we cancelled so no request outlives the query
            await asyncio.gather(*waiters, return_exceptions=True)

        if stop is not None and (stop in done or token.cancelled):
            raise ResolutionCancelled(token.reason or "cancelled")

        if fetch not in done:
            ctx.log.warning(
                "Candidate fetch timed out; using heuristic path",
                extra={"extra": {"timeout_s": profile.timeout_s}},
            )
            return [], "timeout"

        exc = fetch.exception()
        if isinstance(exc, Exception):
            # any provider failure (driver, socket, parse) counts as unavailable
            ctx.log.warning(
                "Candidate source unavailable; using heuristic path",
                extra={"extra": {"source": getattr(self.source, "name", "?"), "err": str(exc)}},
                exc_info=None if isinstance(exc, CandidateSourceUnavailable) else exc,
            )
            return [], "unavailable"
        if exc is not None:
            raise exc
        return list(fetch.result()), "ok"

    def _package(
        self,
        ctx: QueryContext,
        metadata: CaptureMetadata,
        profile: ModeProfile,
        ray: BearingRay,
        ranked: List[IdentificationCandidate],
        estimated_m: float,
        source_info: Dict[str, object],
    ) -> ResolutionResult:
        occluded = tuple(c for c in ranked if c.occluded)
        if self.config.include_occluded:
            primary = list(ranked)
        else:
            primary = [c for c in ranked if not c.occluded]
        primary = primary[: profile.max_results]

        meta = {
            "algorithm_version": ALGORITHM_VERSION,
            "query_id": ctx.query_id,
            "zoom_factor": metadata.zoom_factor,
            "effective_fov_deg": metadata.effective_fov_deg,
            "tolerance_deg": ray.tolerance_deg,
            "max_radius_m": ray.max_radius_m,
            **source_info,
        }

        selected: Optional[IdentificationCandidate] = None
        if ctx.mode is CaptureMode.AIRCRAFT and primary:
            accept = min(profile.accept_deg or profile.tolerance_deg, metadata.effective_fov_deg / 2.0)
            meta["accept_deg"] = accept
            if primary[0].bearing_delta_deg <= accept:
                selected = primary[0]
            else:
                # top-1 or nothing: a weak guess is reported as no match
                primary = []

        ctx.advance(ResolutionState.COMPLETED)

        if primary:
            return ResolutionResult(
                mode=ctx.mode,
                method=CalculationMethod.MATCHED,
                bearing_deg=ray.bearing_deg,
                candidates=tuple(primary),
                occluded=occluded,
                selected=selected,
                confidence=(selected or primary[0]).confidence,
                states=ctx.trace,
                metadata=meta,
            )

        return ResolutionResult(
            mode=ctx.mode,
            method=CalculationMethod.HEURISTIC,
            bearing_deg=ray.bearing_deg,
            candidates=(),
            occluded=occluded,
            no_confident_match=True,
            estimated_target=destination(ray.origin, ray.bearing_deg, estimated_m),
            estimated_distance_m=estimated_m,
            confidence=self.config.heuristic_confidence,
            states=ctx.trace,
            metadata=meta,
        )
