"""
System B — Candidate Sources

- LocalCandidateDB: offline JSON database (data/candidates.json)
- HttpCandidateSource: JSON candidate service over HTTP (requests), with an
  optional UsageLimiter for paid providers
- FallbackCandidateSource: priority chain with name de-duplication

All sources expose `await fetch_candidates(category, origin, radius_m)`.
"""
