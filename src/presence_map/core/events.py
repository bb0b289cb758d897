"""Typed presence events.

These are the validated form of the wire messages in
:mod:`presence_map.core.messages`. The reconciler only ever mutates state
from one of these, never from a raw payload.

All events are frozen (immutable).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from presence_map.core.location import Coordinate


class PresenceEventType(Enum):
    """Discriminator values used on the wire."""

    PAST = "past"  # Location visited before (history snapshot)
    CONNECT = "connect"  # User connected or moved
    DISCONNECT = "disconnect"  # User went away


def _coerce_coordinate(event: object) -> None:
    """Accept plain (lat, lng) pairs for the coordinate field."""
    value = getattr(event, "coordinate")
    if isinstance(value, (tuple, list)) and not isinstance(value, Coordinate) and len(value) == 2:
        object.__setattr__(event, "coordinate", Coordinate(*value))


@dataclass(frozen=True)
class HistoricalEvent:
    """A previously visited location.

    Attributes:
        key: Location key.
        coordinate: Coordinate of the location.
        label: Optional display name (city).
    """

    key: str
    coordinate: Coordinate
    label: Optional[str] = None

    def __post_init__(self) -> None:
        _coerce_coordinate(self)

    @property
    def event_type(self) -> PresenceEventType:
        return PresenceEventType.PAST


@dataclass(frozen=True)
class ConnectEvent:
    """A user connected at (or moved to) a location.

    Attributes:
        user_id: Connected user.
        key: Location key the user is counted at.
        coordinate: Coordinate of the user.
        label: Optional display name (city).
        connected_at: Optional connection time as a unix timestamp.
    """

    user_id: str
    key: str
    coordinate: Coordinate
    label: Optional[str] = None
    connected_at: Optional[int] = None

    def __post_init__(self) -> None:
        _coerce_coordinate(self)

    @property
    def event_type(self) -> PresenceEventType:
        return PresenceEventType.CONNECT


@dataclass(frozen=True)
class DisconnectEvent:
    """A user disconnected.

    Attributes:
        user_id: Disconnected user.
        key: Location key, if the sender knows it (else looked up).
    """

    user_id: str
    key: Optional[str] = None

    @property
    def event_type(self) -> PresenceEventType:
        return PresenceEventType.DISCONNECT


PresenceEvent = Union[HistoricalEvent, ConnectEvent, DisconnectEvent]
