"""
Resolve one capture from the command line.

    python -m system_d.cli --metadata capture.json --mode landmark --tap 812,400
    python -m system_d.cli --metadata capture.json --mode aircraft --http-url http://127.0.0.1:8000/candidates

The metadata file is the flat capture record accepted by
CaptureMetadata.from_dict; effective_fov_deg may be omitted and is then derived
from the configured base FOV and zoom_factor. The result is printed as JSON on
stdout, logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from common.config import EngineConfig, load_config
from common.errors import CandidateSourceUnavailable, InvalidInput
from common.logging_setup import get_logger, setup_logging
from common.types import CaptureMetadata, CaptureMode, TapPoint
from system_b.fallback import FallbackCandidateSource
from system_b.http_source import HttpCandidateSource
from system_b.local_db import LocalCandidateDB
from system_b.rate_limit import UsageLimiter
from system_b.source import CandidateSource
from system_d.orchestrator import ResolutionOrchestrator


log = get_logger("system_d")


def parse_tap(text: Optional[str]) -> Optional[TapPoint]:
    if not text:
        return None
    try:
        x, y = [float(v) for v in text.split(",")]
    except ValueError:
        raise InvalidInput(f"--tap expects x,y pixels, got {text!r}") from None
    return TapPoint(x=x, y=y)


def load_metadata(path: str, cfg: EngineConfig) -> CaptureMetadata:
    try:
        doc: Dict[str, Any] = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidInput(f"Cannot read capture metadata {path}: {e}") from e
    if not isinstance(doc, dict):
        raise InvalidInput("capture metadata must be a JSON object")
    if "effective_fov_deg" not in doc:
        zoom = float(doc.get("zoom_factor", 1.0))
        if zoom <= 0:
            raise InvalidInput("zoom_factor must be > 0")
        doc["effective_fov_deg"] = CaptureMetadata.effective_fov(cfg.base_fov_deg, zoom)
    return CaptureMetadata.from_dict(doc)


def build_source(
    cfg: EngineConfig, *, db_path: Optional[str] = None, http_url: Optional[str] = None
) -> Optional[CandidateSource]:
    """
    Offline database, optionally behind a rate-limited HTTP source.

    An unreadable database is left out of the chain; with nothing left the
    result is None and the orchestrator goes straight to the heuristic path.
    """
    sc = cfg.sources
    sources: List[CandidateSource] = []
    url = http_url or sc.http_url
    if url:
        limiter = UsageLimiter(sc.usage_store, max_daily=sc.max_daily_calls, max_hourly=sc.max_hourly_calls)
        sources.append(
            HttpCandidateSource(url, api_key_env=sc.http_api_key_env, timeout=sc.http_timeout_s, limiter=limiter)
        )
    try:
        sources.append(LocalCandidateDB(db_path or sc.local_db_path))
    except CandidateSourceUnavailable as e:
        log.warning("Offline candidate database unavailable", extra={"extra": {"err": str(e)}})

    if not sources:
        return None
    if len(sources) == 1:
        return sources[0]
    return FallbackCandidateSource(sources)


def run(args: argparse.Namespace) -> Tuple[int, Optional[Dict[str, Any]]]:
    cfg = load_config(args.config)
    setup_logging(args.log_level or cfg.log_level, force=True)
    try:
        meta = load_metadata(args.metadata, cfg)
        tap = parse_tap(args.tap)
        source = build_source(cfg, db_path=args.db, http_url=args.http_url)
        orch = ResolutionOrchestrator(cfg, source)
        result = asyncio.run(orch.resolve(meta, CaptureMode(args.mode), tap))
    except InvalidInput as e:
        log.error("Invalid input", extra={"extra": {"err": str(e)}})
        return 2, None
    return 0, result.to_dict()


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Unveal: resolve what a capture is pointing at")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--metadata", required=True, help="Capture metadata JSON file")
    ap.add_argument("--mode", choices=[m.value for m in CaptureMode], default=CaptureMode.LANDMARK.value)
    ap.add_argument("--tap", type=str, default=None, help="Tap point x,y in pixels (landmark/poi)")
    ap.add_argument("--db", type=str, default=None, help="Override offline candidate database path")
    ap.add_argument("--http-url", type=str, default=None, help="Live candidate endpoint, queried before the offline DB")
    ap.add_argument("--log-level", type=str, default=None)
    args = ap.parse_args(argv)

    code, out = run(args)
    if out is not None:
        json.dump(out, sys.stdout, indent=2, ensure_ascii=False, default=str)
        sys.stdout.write("\n")
    return code


if __name__ == "__main__":
    sys.exit(main())
