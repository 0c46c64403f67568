"""eventlens: analytics aggregation engine (metrics, funnels, journeys, goals)."""

__version__ = "0.1.0"
