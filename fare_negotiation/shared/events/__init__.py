# fare_negotiation/shared/events/__init__.py
"""
Доменные события.
"""

from fare_negotiation.shared.events.base import DomainEvent, EventMetadata

__all__ = ["DomainEvent", "EventMetadata"]
