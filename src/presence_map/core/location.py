"""
Location dataclass and helpers.

A Location is one aggregated marker on the map: every user whose location key
matches is counted on the same point.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Set


class Coordinate(NamedTuple):
    """A (lat, lng) pair in decimal degrees."""

    lat: float
    lng: float


class VisualState(Enum):
    """How a location is drawn on the map."""

    ACTIVE = "active"  # At least one connected user
    PAST = "past"  # Visited before, nobody connected right now


@dataclass
class Location:
    """
    An aggregated location on the presence map.

    Attributes:
        key: Aggregation key (e.g. "Bern, CH" or "46.95,7.45"), immutable
        label: Display name shown in the popup
        coordinate: Last known coordinate reported for this key
        active_users: IDs of users currently connected at this location
    """

    key: str
    label: str
    coordinate: Coordinate
    active_users: Set[str] = field(default_factory=set)

    @property
    def visual_state(self) -> VisualState:
        """Derived from the active user set, never stored."""
        return VisualState.ACTIVE if self.active_users else VisualState.PAST

    @property
    def is_active(self) -> bool:
        return bool(self.active_users)

    @property
    def active_count(self) -> int:
        return len(self.active_users)
