"""
Goals component - conversion counts for persisted goals.
"""

from .component import (
    GoalMatcher,
    conversion_rate,
    evaluate_goal,
    evaluate_goals,
    evaluate_site_goals,
    get_site_goal,
    goal_steps,
    list_goal_sessions,
    run_goal,
    run_goal_sessions,
    sort_goals,
)
from .models import (
    GOAL_SORT_FIELDS,
    GoalInput,
    GoalResult,
    GoalSessionsInput,
    GoalSessionsOutput,
    GoalSort,
    SiteGoalsInput,
    SiteGoalsOutput,
    SortOrder,
)
from .ports import GoalRegistryPort, RawEventStorePort, ScanSpec, TimePort

__all__ = [
    # Component functions
    "evaluate_goal",
    "evaluate_goals",
    "evaluate_site_goals",
    "list_goal_sessions",
    "run_goal",
    "run_goal_sessions",
    # Pure functions
    "GoalMatcher",
    "conversion_rate",
    "get_site_goal",
    "goal_steps",
    "sort_goals",
    # Models
    "GOAL_SORT_FIELDS",
    "GoalInput",
    "GoalResult",
    "GoalSessionsInput",
    "GoalSessionsOutput",
    "GoalSort",
    "SiteGoalsInput",
    "SiteGoalsOutput",
    "SortOrder",
    # Ports
    "GoalRegistryPort",
    "RawEventStorePort",
    "ScanSpec",
    "TimePort",
]
