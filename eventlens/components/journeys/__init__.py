"""
Journeys component - ranked session paths and per-position flow.
"""

from .component import (
    build_journeys,
    event_label,
    flow_graph,
    label_matches,
    passes_step_filters,
    rank_paths,
    run_journeys,
    session_path,
    validate_journey_query,
)
from .models import JourneyInput, JourneyLink, JourneyNode, JourneyOutput, JourneyPath
from .ports import RawEventStorePort, ScanSpec, TimePort

__all__ = [
    # Component functions
    "build_journeys",
    "run_journeys",
    # Pure functions
    "event_label",
    "flow_graph",
    "label_matches",
    "passes_step_filters",
    "rank_paths",
    "session_path",
    "validate_journey_query",
    # Models
    "JourneyInput",
    "JourneyLink",
    "JourneyNode",
    "JourneyOutput",
    "JourneyPath",
    # Ports
    "RawEventStorePort",
    "ScanSpec",
    "TimePort",
]
