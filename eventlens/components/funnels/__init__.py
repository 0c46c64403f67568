"""
Funnels component - ordered step conversion and drop-off.
"""

from .component import (
    compile_steps,
    evaluate_funnel,
    funnel_depth,
    in_mode,
    list_step_sessions,
    parse_step,
    parse_steps,
    run_funnel,
    run_step_sessions,
    step_results,
    validate_step_query,
)
from .models import (
    STEP_MODES,
    FunnelInput,
    FunnelOutput,
    StepMode,
    StepResult,
    StepSessionsInput,
    StepSessionsOutput,
)
from .ports import RawEventStorePort, ScanSpec, TimePort

__all__ = [
    # Component functions
    "evaluate_funnel",
    "list_step_sessions",
    "run_funnel",
    "run_step_sessions",
    # Pure functions
    "compile_steps",
    "funnel_depth",
    "in_mode",
    "parse_step",
    "parse_steps",
    "step_results",
    "validate_step_query",
    # Models
    "FunnelInput",
    "FunnelOutput",
    "STEP_MODES",
    "StepMode",
    "StepResult",
    "StepSessionsInput",
    "StepSessionsOutput",
    # Ports
    "RawEventStorePort",
    "ScanSpec",
    "TimePort",
]
