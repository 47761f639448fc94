"""
Error taxonomy shared by every subsystem.

Only InvalidInput is fatal to a query. CandidateSourceUnavailable is raised by
candidate sources and absorbed by the orchestrator (heuristic fallback).
"""

from __future__ import annotations


class ResolutionError(Exception):
    """Base class for engine errors."""


class InvalidInput(ResolutionError, ValueError):
    """Malformed capture metadata, out-of-bounds tap, or out-of-domain values."""


class CandidateSourceUnavailable(ResolutionError, RuntimeError):
    """A candidate source could not answer (network, database, quota)."""


class QuotaExceeded(CandidateSourceUnavailable):
    """Daily/hourly usage budget for a paid provider is spent."""

    def __init__(self, message: str, *, window: str):
        super().__init__(message)
        self.window = window


class ResolutionCancelled(ResolutionError):
    """The caller backed out of the query before it completed."""
