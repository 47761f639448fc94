"""
System D — Resolution Orchestrator

Drives one query through sighting (A), candidate lookup (B) and
identification (C) as an explicit state machine, under a per-mode timeout and
a caller-held cancellation token. Also hosts the developer CLI.
"""

from .orchestrator import ResolutionOrchestrator, ResolutionState

__all__ = ["ResolutionOrchestrator", "ResolutionState"]
