"""
Goal engine ports.
"""

from eventlens.core.ports.events import RawEventStorePort, ScanSpec
from eventlens.core.ports.registry import GoalRegistryPort
from eventlens.core.ports.time import TimePort

__all__ = ["GoalRegistryPort", "RawEventStorePort", "ScanSpec", "TimePort"]
