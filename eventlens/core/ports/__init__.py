# eventlens - Ports (Protocol Interfaces)
# Abstract interfaces for adapters; no implementations here

from eventlens.core.ports.events import EventPredicate, QueryFragment, RawEventStorePort, ScanSpec
from eventlens.core.ports.registry import GoalRegistryPort, SiteRegistryPort
from eventlens.core.ports.time import TimePort

__all__ = [
    "EventPredicate",
    "GoalRegistryPort",
    "QueryFragment",
    "RawEventStorePort",
    "ScanSpec",
    "SiteRegistryPort",
    "TimePort",
]
