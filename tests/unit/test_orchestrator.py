"""
Unit tests for the resolution orchestrator (System D)
"""

import asyncio
import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import EngineConfig
from common.errors import CandidateSourceUnavailable, InvalidInput, ResolutionCancelled
from common.geo import bearing_between, destination, distance_between
from common.types import (
    CalculationMethod,
    CandidateCategory,
    CandidateObject,
    CaptureMetadata,
    CaptureMode,
    GeoCoordinate,
    TapPoint,
)
from common.utils import CancellationToken
from system_a.estimator import estimate_distance
from system_b.fallback import FallbackCandidateSource
from system_b.source import CandidateSource
from system_d.orchestrator import ResolutionOrchestrator, ResolutionState


ORIGIN = GeoCoordinate(lat=40.0, lon=-74.0)
W, H = 1000, 800


def _meta(heading=90.0, zoom=1.0, pitch=0.0, altitude=0.0, origin=ORIGIN):
    return CaptureMetadata(
        ts="2025-06-01T12:00:00.000Z",
        coordinate=origin,
        altitude_m=altitude,
        heading_deg=heading,
        pitch_deg=pitch,
        roll_deg=0.0,
        focal_length_mm=4.2,
        image_width=W,
        image_height=H,
        zoom_factor=zoom,
        effective_fov_deg=CaptureMetadata.effective_fov(68.0, zoom),
        gps_accuracy_m=5.0,
    )


def _obj(cid, category, bearing, dist, **kw):
    return CandidateObject(id=cid, name=cid, category=category,
                           coordinate=destination(ORIGIN, bearing, dist), **kw)


class ListSource(CandidateSource):
    """Returns a fixed list regardless of category."""
    name = "list"

    def __init__(self, items=()):
        self.items = list(items)
        self.calls = 0

    async def fetch_candidates(self, category, origin, radius_m):
        self.calls += 1
        return list(self.items)


class FailingSource(CandidateSource):
    name = "failing"

    async def fetch_candidates(self, category, origin, radius_m):
        raise CandidateSourceUnavailable("backend down")


class BrokenSource(CandidateSource):
    """Fails with a raw socket error instead of CandidateSourceUnavailable."""
    name = "broken"

    async def fetch_candidates(self, category, origin, radius_m):
        raise ConnectionError("db socket reset")


class SlowSource(CandidateSource):
    """Never answers within the test timeout; records whether it was cancelled."""
    name = "slow"

    def __init__(self, delay=30.0):
        self.delay = delay
        self.started = None
        self.was_cancelled = False

    async def fetch_candidates(self, category, origin, radius_m):
        self.started.set()
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.was_cancelled = True
            raise
        return []


def _run(orch, meta, mode, tap=None, token=None):
    return asyncio.run(orch.resolve(meta, mode, tap, token=token))


class TestAircraftResolution:
    """Automatic mode: heading only, top-1 or nothing"""

    def test_aircraft_just_off_heading_selected(self):
        """Aircraft 20 km out at 92 deg is picked with heading 90"""
        plane = _obj("UAL123", CandidateCategory.AIRCRAFT, 92.0, 20_000.0, altitude_m=10_000.0)
        orch = ResolutionOrchestrator(EngineConfig(), ListSource([plane]))
        res = _run(orch, _meta(heading=90.0), CaptureMode.AIRCRAFT)
        assert res.method is CalculationMethod.MATCHED
        assert res.selected is not None
        assert res.selected.candidate.id == "UAL123"
        assert res.confidence > 0.0
        assert res.best is res.selected
        assert res.occluded == ()
        assert ResolutionState.OCCLUSION_FILTERED.value not in res.states
        assert res.states[-1] == ResolutionState.COMPLETED.value

    def test_similar_callsign_not_merged_away(self):
        """UAL124 listed first must not hide UAL123 through name similarity"""
        other = _obj("UAL124", CandidateCategory.AIRCRAFT, 120.0, 20_000.0)
        plane = _obj("UAL123", CandidateCategory.AIRCRAFT, 91.0, 20_000.0)
        chain = FallbackCandidateSource([ListSource([other, plane])])
        res = _run(ResolutionOrchestrator(EngineConfig(), chain), _meta(heading=90.0), CaptureMode.AIRCRAFT)
        assert res.method is CalculationMethod.MATCHED
        assert res.selected.candidate.id == "UAL123"

    def test_tap_ignored_in_automatic_mode(self):
        plane = _obj("UAL123", CandidateCategory.AIRCRAFT, 92.0, 20_000.0)
        orch = ResolutionOrchestrator(EngineConfig(), ListSource([plane]))
        res = _run(orch, _meta(heading=90.0), CaptureMode.AIRCRAFT, TapPoint(0, 0))
        assert res.bearing_deg == pytest.approx(90.0)

    def test_weak_aircraft_reported_as_no_match(self):
        """Inside the 15 deg search window but outside the stricter acceptance"""
        plane = _obj("DAL9", CandidateCategory.AIRCRAFT, 103.0, 20_000.0)
        orch = ResolutionOrchestrator(EngineConfig(), ListSource([plane]))
        res = _run(orch, _meta(heading=90.0), CaptureMode.AIRCRAFT)
        assert res.selected is None
        assert res.candidates == ()
        assert res.no_confident_match
        assert res.method is CalculationMethod.HEURISTIC

    def test_acceptance_narrows_with_zoom(self):
        """At 5x zoom the FOV is 13.6 deg, so 8 deg off axis is out of frame"""
        plane = _obj("SWA1", CandidateCategory.AIRCRAFT, 98.0, 20_000.0)
        orch = ResolutionOrchestrator(EngineConfig(), ListSource([plane]))
        assert _run(orch, _meta(heading=90.0, zoom=1.0), CaptureMode.AIRCRAFT).selected is not None
        assert _run(orch, _meta(heading=90.0, zoom=5.0), CaptureMode.AIRCRAFT).selected is None

    def test_pitch_gate_rejects_low_aircraft(self):
        """Camera tilted 45 deg up cannot be looking at a plane on the horizon"""
        low = _obj("LOW1", CandidateCategory.AIRCRAFT, 90.0, 20_000.0, altitude_m=300.0)
        orch = ResolutionOrchestrator(EngineConfig(), ListSource([low]))
        assert _run(orch, _meta(heading=90.0, pitch=45.0), CaptureMode.AIRCRAFT).selected is None
        assert _run(orch, _meta(heading=90.0, pitch=0.0), CaptureMode.AIRCRAFT).selected is not None


class TestLandmarkResolution:
    """Interactive mode: tap, occlusion, ranked list"""

    def test_empty_source_uses_heuristic(self):
        """No candidates -> estimated point along the bearing"""
        orch = ResolutionOrchestrator(EngineConfig(), ListSource([]))
        tap = TapPoint(700, 400)
        meta = _meta(heading=90.0)
        res = _run(orch, meta, CaptureMode.LANDMARK, tap)

        expected_bearing = 90.0 + (700 / W - 0.5) * 68.0
        est = estimate_distance(tap, W, H, 1.0, 0.0)
        target = destination(ORIGIN, expected_bearing, est)
        assert res.method is CalculationMethod.HEURISTIC
        assert res.no_confident_match
        assert res.candidates == ()
        assert res.bearing_deg == pytest.approx(expected_bearing)
        assert res.estimated_distance_m == pytest.approx(est)
        assert res.estimated_target.lat == pytest.approx(target.lat)
        assert res.estimated_target.lon == pytest.approx(target.lon)
        assert res.confidence == pytest.approx(0.25)
        assert res.metadata["source"] == "ok"

    def test_occluded_candidate_in_secondary_tier(self):
        """A 10 m building behind a 50 m tower is only a 'might also be'"""
        near = _obj("tower", CandidateCategory.BUILDING, 90.0, 100.0, height_m=50.0)
        far = _obj("shed", CandidateCategory.BUILDING, 90.0, 500.0, height_m=10.0)
        orch = ResolutionOrchestrator(EngineConfig(), ListSource([far, near]))
        res = _run(orch, _meta(heading=90.0), CaptureMode.LANDMARK, TapPoint(500, 400))
        assert res.method is CalculationMethod.MATCHED
        assert [c.candidate.id for c in res.candidates] == ["tower"]
        assert [c.candidate.id for c in res.occluded] == ["shed"]
        assert res.occluded[0].occluded
        assert ResolutionState.OCCLUSION_FILTERED.value in res.states

    def test_ground_results_carry_landmark_category(self):
        church = _obj("St Patricks Cathedral", CandidateCategory.LANDMARK, 90.0, 300.0, height_m=100.0)
        res = _run(ResolutionOrchestrator(EngineConfig(), ListSource([church])), _meta(), CaptureMode.LANDMARK, TapPoint(500, 400))
        assert res.candidates[0].landmark_category == "religious_building"
        assert res.to_dict()["candidates"][0]["landmark_category"] == "religious_building"

    def test_include_occluded_keeps_flagged_in_primary(self):
        near = _obj("tower", CandidateCategory.BUILDING, 90.0, 100.0, height_m=50.0)
        far = _obj("shed", CandidateCategory.BUILDING, 90.0, 500.0, height_m=10.0)
        cfg = EngineConfig(include_occluded=True)
        res = _run(ResolutionOrchestrator(cfg, ListSource([far, near])), _meta(), CaptureMode.LANDMARK, TapPoint(500, 400))
        assert {c.candidate.id for c in res.candidates} == {"tower", "shed"}

    def test_results_truncated_and_ordered(self):
        # each farther building clears the roofline of the nearer ones
        items = [_obj(f"b{i}", CandidateCategory.BUILDING, 90.0 + (i % 5) - 2, 200.0 + 150 * i,
                      height_m=(200.0 + 150 * i) * (1.0 + 0.1 * i))
                 for i in range(9)]
        res = _run(ResolutionOrchestrator(EngineConfig(), ListSource(items)), _meta(), CaptureMode.LANDMARK, TapPoint(500, 400))
        assert len(res.candidates) == 5
        confs = [c.confidence for c in res.candidates]
        assert confs == sorted(confs, reverse=True)
        for c in res.candidates:
            assert c.bearing_delta_deg <= 8.0
            assert c.distance_m <= 2_000.0

    def test_state_trace(self):
        tower = _obj("tower", CandidateCategory.LANDMARK, 90.0, 300.0, height_m=80.0)
        res = _run(ResolutionOrchestrator(EngineConfig(), ListSource([tower])), _meta(), CaptureMode.POI, TapPoint(500, 400))
        assert res.states == (
            "idle", "bearing_computed", "candidates_queried", "occlusion_filtered", "ranked", "completed",
        )

    def test_result_serialises(self):
        res = _run(ResolutionOrchestrator(EngineConfig(), ListSource([])), _meta(), CaptureMode.LANDMARK, TapPoint(10, 10))
        d = res.to_dict()
        assert d["method"] == "heuristic"
        assert d["metadata"]["algorithm_version"]
        assert set(d["estimated_target"]) == {"lat", "lon"}


class TestInvalidInput:
    """Malformed queries fail fast"""

    def test_interactive_requires_tap(self):
        with pytest.raises(InvalidInput):
            _run(ResolutionOrchestrator(EngineConfig(), ListSource()), _meta(), CaptureMode.LANDMARK)

    def test_tap_outside_image(self):
        with pytest.raises(InvalidInput):
            _run(ResolutionOrchestrator(EngineConfig(), ListSource()), _meta(), CaptureMode.POI, TapPoint(W + 1, 10))

    def test_zoom_out_of_range(self):
        with pytest.raises(InvalidInput):
            _run(ResolutionOrchestrator(EngineConfig(), ListSource()), _meta(zoom=12.0), CaptureMode.LANDMARK, TapPoint(1, 1))

    def test_unknown_mode(self):
        with pytest.raises(InvalidInput):
            _run(ResolutionOrchestrator(EngineConfig(), ListSource()), _meta(), "satellite", TapPoint(1, 1))

    def test_source_not_queried_on_invalid_input(self):
        src = ListSource()
        with pytest.raises(InvalidInput):
            _run(ResolutionOrchestrator(EngineConfig(), src), _meta(), CaptureMode.LANDMARK, TapPoint(-5, 10))
        assert src.calls == 0


class TestSourceFailures:
    """Timeouts and outages degrade to the heuristic path"""

    def test_unavailable_source_falls_back(self):
        res = _run(ResolutionOrchestrator(EngineConfig(), FailingSource()), _meta(), CaptureMode.LANDMARK, TapPoint(500, 400))
        assert res.method is CalculationMethod.HEURISTIC
        assert res.metadata["source"] == "unavailable"
        assert res.states[-1] == "completed"

    def test_raw_connection_error_falls_back(self):
        """Errors outside the source error hierarchy are still treated as an outage"""
        res = _run(ResolutionOrchestrator(EngineConfig(), BrokenSource()), _meta(), CaptureMode.LANDMARK, TapPoint(500, 400))
        assert res.method is CalculationMethod.HEURISTIC
        assert res.metadata["source"] == "unavailable"
        assert res.states[-1] == "completed"
        assert res.confidence == pytest.approx(0.25)

    def test_no_source_falls_back(self):
        res = _run(ResolutionOrchestrator(EngineConfig(), None), _meta(), CaptureMode.AIRCRAFT)
        assert res.method is CalculationMethod.HEURISTIC
        assert res.metadata["source"] == "no_source"

    def test_timeout_falls_back_and_cancels_fetch(self):
        cfg = EngineConfig().with_profile(CaptureMode.LANDMARK, timeout_s=0.05)
        src = SlowSource()

        async def go():
            src.started = asyncio.Event()
            return await ResolutionOrchestrator(cfg, src).resolve(_meta(), CaptureMode.LANDMARK, TapPoint(500, 400))

        res = asyncio.run(go())
        assert res.method is CalculationMethod.HEURISTIC
        assert res.metadata["source"] == "timeout"
        assert src.was_cancelled


class TestCancellation:
    """Caller-held cancellation token"""

    def test_cancel_during_fetch(self):
        src = SlowSource()

        async def go():
            src.started = asyncio.Event()
            token = CancellationToken()
            task = asyncio.create_task(
                ResolutionOrchestrator(EngineConfig(), src).resolve(_meta(), CaptureMode.LANDMARK, TapPoint(500, 400), token=token)
            )
            await src.started.wait()
            token.cancel("user backed out")
            with pytest.raises(ResolutionCancelled):
                await task

        asyncio.run(go())
        assert src.was_cancelled

    def test_cancelled_before_start(self):
        src = ListSource()

        async def go():
            token = CancellationToken()
            token.cancel()
            with pytest.raises(ResolutionCancelled):
                await ResolutionOrchestrator(EngineConfig(), src).resolve(_meta(), CaptureMode.AIRCRAFT, token=token)

        asyncio.run(go())
        assert src.calls == 0


class TestConcurrency:
    """Independent queries share nothing"""

    def test_concurrent_queries_independent(self):
        plane = _obj("UAL123", CandidateCategory.AIRCRAFT, 92.0, 20_000.0)
        tower = _obj("tower", CandidateCategory.LANDMARK, 270.0, 400.0, height_m=120.0)
        orch = ResolutionOrchestrator(EngineConfig(), ListSource([plane, tower]))

        async def go():
            return await asyncio.gather(
                orch.resolve(_meta(heading=90.0), CaptureMode.AIRCRAFT),
                orch.resolve(_meta(heading=270.0), CaptureMode.LANDMARK, TapPoint(500, 400)),
                orch.resolve(_meta(heading=0.0), CaptureMode.POI, TapPoint(500, 400)),
            )

        air, land, poi = asyncio.run(go())
        assert air.selected.candidate.id == "UAL123"
        assert [c.candidate.id for c in land.candidates] == ["tower"]
        assert poi.method is CalculationMethod.HEURISTIC
        assert len({air.metadata["query_id"], land.metadata["query_id"], poi.metadata["query_id"]}) == 3

    def test_same_input_same_output(self):
        items = [_obj(f"b{i}", CandidateCategory.BUILDING, 88.0 + i, 300.0 + 100 * i, height_m=500.0) for i in range(4)]
        orch = ResolutionOrchestrator(EngineConfig(), ListSource(items))
        a = _run(orch, _meta(), CaptureMode.LANDMARK, TapPoint(500, 400))
        b = _run(orch, _meta(), CaptureMode.LANDMARK, TapPoint(500, 400))
        assert [(c.candidate.id, c.confidence) for c in a.candidates] == [(c.candidate.id, c.confidence) for c in b.candidates]
        assert bearing_between(ORIGIN, a.candidates[0].candidate.coordinate) == pytest.approx(a.candidates[0].bearing_deg)
        assert distance_between(ORIGIN, a.candidates[0].candidate.coordinate) == pytest.approx(a.candidates[0].distance_m)
