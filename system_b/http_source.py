"""
HTTP candidate source.

Talks to a candidate service that already speaks the engine's schema:

    GET {base_url}?category=landmark&lat=..&lon=..&radius_m=..
    -> 200 {"candidates": [ {id, name, category, lat, lon, ...}, ... ]}

Vendor adapters (places, flight tracking) sit behind such a service; this
client only transports and validates. Every failure surfaces as
CandidateSourceUnavailable so the orchestrator can fall back.

Usage:
    src = HttpCandidateSource("http://127.0.0.1:8000/candidates",
                              limiter=UsageLimiter("runtime/usage.json"))
    cands = await src.fetch_candidates(CandidateCategory.AIRCRAFT, origin, 100_000)
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from common.errors import CandidateSourceUnavailable, InvalidInput
from common.logging_setup import get_logger
from common.types import CandidateCategory, CandidateObject, GeoCoordinate
from system_b.rate_limit import UsageLimiter
from system_b.source import CandidateSource


log = get_logger("system_b")


class HttpCandidateSource(CandidateSource):
    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        api_key_env: str = "UNVEAL_CANDIDATES_API_KEY",
        timeout: float = 10.0,
        limiter: Optional[UsageLimiter] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            base_url: candidate endpoint
            api_key: sent as x-apikey (falls back to env `api_key_env`; optional)
            timeout: per-request timeout (s); bounds the worker thread too
            limiter: optional usage budget checked before every request
            session: optional requests.Session for connection reuse
        """
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url
        self.api_key = api_key or os.getenv(api_key_env)
        self.timeout = float(timeout)
        self.limiter = limiter
        self.session = session or requests.Session()

    # ----------------------------
    # Public API
    # ----------------------------
    def build_url(self, *, category: CandidateCategory, origin: GeoCoordinate, radius_m: float) -> str:
        params = {
            "category": CandidateCategory(category).value,
            "lat": f"{origin.lat:.6f}",
            "lon": f"{origin.lon:.6f}",
            "radius_m": int(round(radius_m)),
        }
        return f"{self.base_url}?{urlencode(params)}"

    def fetch_candidates_sync(
        self,
        category: CandidateCategory,
        origin: GeoCoordinate,
        radius_m: float,
    ) -> List[CandidateObject]:
        if self.limiter is not None:
            self.limiter.acquire()  # QuotaExceeded is a CandidateSourceUnavailable

        url = self.build_url(category=category, origin=origin, radius_m=radius_m)
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-apikey"] = self.api_key

        try:
            r = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise CandidateSourceUnavailable(f"Candidate request failed: {e}") from e

        if r.status_code != 200:
            log.warning("Candidate service error", extra={"extra": {"status": r.status_code, "body": r.text[:200]}})
            raise CandidateSourceUnavailable(f"Candidate service error {r.status_code}")

        try:
            doc = r.json()
        except ValueError as e:
            raise CandidateSourceUnavailable("Candidate service returned invalid JSON") from e

        return self._parse(doc)

    async def fetch_candidates(
        self,
        category: CandidateCategory,
        origin: GeoCoordinate,
        radius_m: float,
    ) -> List[CandidateObject]:
        # requests is blocking; the thread is bounded by self.timeout
        return await asyncio.to_thread(self.fetch_candidates_sync, category, origin, radius_m)

    # ----------------------------
    # Parsing
    # ----------------------------
    @staticmethod
    def _parse(doc: Any) -> List[CandidateObject]:
        if not isinstance(doc, dict) or not isinstance(doc.get("candidates"), list):
            raise CandidateSourceUnavailable("Candidate response missing 'candidates' list")
        out: List[CandidateObject] = []
        skipped = 0
        for row in doc["candidates"]:
            try:
                out.append(CandidateObject.from_dict(row))
            except (InvalidInput, TypeError, AttributeError):
                skipped += 1
        if skipped:
            log.warning("Skipped malformed candidates", extra={"extra": {"skipped": skipped, "kept": len(out)}})
        return out
