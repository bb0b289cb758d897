"""
presence-map: live aggregation of user presence on a map.

This library provides the state behind a "who is online where" map:
- Location aggregation by city or rounded coordinates
- Reconciliation of connect / disconnect / past-visit events
- Location-aware Event Bus and module plug-ins
- Render adapter for any point-and-popup map widget
"""

from presence_map.core.location import Coordinate, Location, VisualState
from presence_map.core.keys import derive_location_key
from presence_map.core.bus import Event, EventBus, EventFilter
from presence_map.core.reconciler import EventReconciler

__version__ = "0.1.0"

__all__ = [
    "Coordinate",
    "Location",
    "VisualState",
    "derive_location_key",
    "Event",
    "EventBus",
    "EventFilter",
    "EventReconciler",
]
