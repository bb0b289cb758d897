"""
Core components of the presence map kernel.

This package contains:
- bus: Event Bus implementation
- location: Location dataclass and visual state
- keys: location key derivation
- registry: LocationRegistry for aggregated locations
- user_index: UserIndex for user → location lookups
- events / messages: typed events and their wire schemas
- reconciler: EventReconciler state machine
"""

from presence_map.core.location import Coordinate, Location, VisualState
from presence_map.core.keys import derive_location_key
from presence_map.core.bus import Event, EventBus, EventFilter
from presence_map.core.events import (
    ConnectEvent,
    DisconnectEvent,
    HistoricalEvent,
    PresenceEvent,
)
from presence_map.core.messages import MalformedMessageError, decode_message, encode_event
from presence_map.core.registry import LocationRegistry
from presence_map.core.user_index import UserIndex
from presence_map.core.reconciler import EventReconciler

__all__ = [
    "Coordinate",
    "Location",
    "VisualState",
    "derive_location_key",
    "Event",
    "EventBus",
    "EventFilter",
    "ConnectEvent",
    "DisconnectEvent",
    "HistoricalEvent",
    "PresenceEvent",
    "MalformedMessageError",
    "decode_message",
    "encode_event",
    "LocationRegistry",
    "UserIndex",
    "EventReconciler",
]
