"""Phases module — challenge phase timeline and lifecycle engine.

Builds a challenge's dated phases from a timeline template, reconciles them
when the challenge changes, closes them on cancellation, and guards direct
open/close/reopen patches on a single phase.
"""

from challenge_api.phases.catalog import (
    PhaseDefinitionCatalog,
    ReferenceDataCache,
    TimelineTemplateResolver,
)
from challenge_api.phases.engine import PhaseTimelineEngine, build_engine, open_engine
from challenge_api.phases.exceptions import PhaseServiceError, raise_http_exception
from challenge_api.phases.schemas import (
    Constraint,
    PhaseDefinition,
    PhaseInstance,
    PhaseOverride,
    PhasePatch,
)

__all__ = [
    "Constraint",
    "PhaseDefinition",
    "PhaseDefinitionCatalog",
    "PhaseInstance",
    "PhaseOverride",
    "PhasePatch",
    "PhaseServiceError",
    "PhaseTimelineEngine",
    "ReferenceDataCache",
    "TimelineTemplateResolver",
    "build_engine",
    "open_engine",
    "raise_http_exception",
]
