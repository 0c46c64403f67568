"""
Metric aggregator ports.
"""

from eventlens.core.ports.events import RawEventStorePort, ScanSpec
from eventlens.core.ports.time import TimePort

__all__ = ["RawEventStorePort", "ScanSpec", "TimePort"]
