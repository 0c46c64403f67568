"""Goal and site registry interfaces (owned by the CRUD layer, read-only here)."""

from __future__ import annotations

from typing import Protocol

from eventlens.core.entities import Goal, SiteConfig


class GoalRegistryPort(Protocol):
    """Goal lookups."""

    def get_goal(self, goal_id: int) -> Goal | None:
        """Get a goal by ID."""
        ...

    def list_goals(self, site_id: int) -> list[Goal]:
        """List all goals owned by a site."""
        ...


class SiteRegistryPort(Protocol):
    """Site lookups."""

    def get_site(self, site_id: int) -> SiteConfig | None:
        """Get site configuration."""
        ...
