"""Wire message schemas for the presence stream.

Defines every message the transport can deliver to the map, and the boundary
that turns a raw payload into a typed event (or a discard decision).

Message kinds, discriminated by ``type``:

* ``past``: a location visited before, drawn gray.
* ``connect``: a user connected, drawn blue.
* ``disconnect``: a user went away.
* no ``type`` at all: the legacy user payload, treated as ``connect``.

Kinds this version does not know are ignored so that newer servers can add
message types without breaking older clients.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Annotated, Any, Literal, Optional, Union

import pydantic

from presence_map.core.events import (
    ConnectEvent,
    DisconnectEvent,
    HistoricalEvent,
    PresenceEvent,
    PresenceEventType,
)
from presence_map.core.keys import DEFAULT_PRECISION, derive_location_key
from presence_map.core.location import Coordinate

logger = logging.getLogger(__name__)


class MalformedMessageError(ValueError):
    """Raised when a message is missing fields or carries mistyped values."""


def _user_id_to_str(value: Union[str, int]) -> str:
    return str(value)


NonEmptyStr = Annotated[str, pydantic.StringConstraints(strict=True, min_length=1)]

# Numeric IDs are accepted and normalized to strings; bools are rejected.
UserId = Annotated[
    Union[NonEmptyStr, pydantic.StrictInt],
    pydantic.AfterValidator(_user_id_to_str),
]

MAX_LATITUDE = 90
MAX_LONGITUDE = 180

Latitude = Annotated[
    float,
    pydantic.Field(strict=True, ge=-MAX_LATITUDE, le=MAX_LATITUDE, allow_inf_nan=False),
]
Longitude = Annotated[
    float,
    pydantic.Field(strict=True, ge=-MAX_LONGITUDE, le=MAX_LONGITUDE, allow_inf_nan=False),
]


def _label_from_city(city: Optional[str]) -> Optional[str]:
    city = (city or "").strip()
    return city or None


class PastMessage(pydantic.BaseModel):
    """Sent for every stored location when a viewer connects."""

    type: Literal["past"] = "past"
    key: NonEmptyStr
    lat: Latitude
    lng: Longitude
    city: Optional[str] = None
    country: Optional[str] = None
    past: bool = True

    def to_event(self, precision: int = DEFAULT_PRECISION) -> HistoricalEvent:
        return HistoricalEvent(
            key=self.key,
            coordinate=Coordinate(self.lat, self.lng),
            label=_label_from_city(self.city),
        )


class ConnectMessage(pydantic.BaseModel):
    """Broadcast when a user connects (and replayed for users already online)."""

    type: Literal["connect"] = "connect"
    id: UserId
    key: NonEmptyStr
    lat: Latitude
    lng: Longitude
    city: Optional[str] = None
    country: Optional[str] = None
    connected_at: Optional[int] = None

    def to_event(self, precision: int = DEFAULT_PRECISION) -> ConnectEvent:
        return ConnectEvent(
            user_id=self.id,
            key=self.key,
            coordinate=Coordinate(self.lat, self.lng),
            label=_label_from_city(self.city),
            connected_at=self.connected_at,
        )


class DisconnectMessage(pydantic.BaseModel):
    """Broadcast when a user's socket closes."""

    type: Literal["disconnect"] = "disconnect"
    id: UserId
    key: Optional[NonEmptyStr] = None

    def to_event(self, precision: int = DEFAULT_PRECISION) -> DisconnectEvent:
        return DisconnectEvent(user_id=self.id, key=self.key)


class LegacyUserMessage(pydantic.BaseModel):
    """Untyped user payload from older servers, treated as a connect.

    ``key`` is derived from city/country (or rounded coordinates) when absent.
    """

    id: UserId
    lat: Latitude
    lng: Longitude
    key: Optional[NonEmptyStr] = None
    city: Optional[str] = None
    country: Optional[str] = None
    connected_at: Optional[int] = None

    def to_event(self, precision: int = DEFAULT_PRECISION) -> ConnectEvent:
        if self.key:
            key, label = self.key, _label_from_city(self.city)
        else:
            key, label = derive_location_key(
                self.lat, self.lng, city=self.city, country=self.country, precision=precision
            )

        return ConnectEvent(
            user_id=self.id,
            key=key,
            coordinate=Coordinate(self.lat, self.lng),
            label=label,
            connected_at=self.connected_at,
        )


# Discriminated union of all typed message kinds.
PresenceMessage = Annotated[
    Union[PastMessage, ConnectMessage, DisconnectMessage],
    pydantic.Field(discriminator="type"),
]

_message_adapter: pydantic.TypeAdapter[PresenceMessage] = pydantic.TypeAdapter(PresenceMessage)

KNOWN_MESSAGE_TYPES = frozenset(t.value for t in PresenceEventType)


def _load(raw: Any) -> Mapping:
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise MalformedMessageError(f"Message is not valid JSON: {e}") from e
        except RecursionError as e:
            raise MalformedMessageError("Message is nested too deeply") from e

    if not isinstance(raw, Mapping):
        raise MalformedMessageError(f"Message must be a JSON object, got {type(raw).__name__}")

    return raw


def decode_message(raw: Any, precision: int = DEFAULT_PRECISION) -> Optional[PresenceEvent]:
    """
    Validate a wire message and convert it to a typed event.

    Args:
        raw: JSON text/bytes or an already decoded mapping
        precision: Decimal places for keys derived from legacy messages

    Returns:
        The typed event, or None if the message kind is unknown

    Raises:
        MalformedMessageError: If the message fails validation for its kind
    """
    data = _load(raw)
    message_type = data.get("type")

    try:
        if message_type is None:
            message: Any = LegacyUserMessage.model_validate(dict(data))
        elif not isinstance(message_type, str):
            raise MalformedMessageError(f"Message type must be a string, got {message_type!r}")
        elif message_type not in KNOWN_MESSAGE_TYPES:
            logger.debug(f"Ignoring message of unknown type: {message_type}")
            return None
        else:
            message = _message_adapter.validate_python(dict(data))
    except pydantic.ValidationError as e:
        raise MalformedMessageError(
            f"Invalid {message_type or 'legacy'} message: {e.error_count()} error(s)\n{e}"
        ) from e

    return message.to_event(precision)


def encode_event(event: PresenceEvent) -> dict:
    """
    Serialize a typed event to its wire mapping.

    Args:
        event: The event to serialize

    Returns:
        JSON-compatible dict (``json.dumps`` ready)
    """
    message: pydantic.BaseModel
    if isinstance(event, HistoricalEvent):
        message = PastMessage(
            key=event.key,
            lat=event.coordinate.lat,
            lng=event.coordinate.lng,
            city=event.label,
        )
    elif isinstance(event, ConnectEvent):
        message = ConnectMessage(
            id=event.user_id,
            key=event.key,
            lat=event.coordinate.lat,
            lng=event.coordinate.lng,
            city=event.label,
            connected_at=event.connected_at,
        )
    elif isinstance(event, DisconnectEvent):
        message = DisconnectMessage(id=event.user_id, key=event.key)
    else:
        raise TypeError(f"Cannot encode {type(event).__name__}")

    return message.model_dump(exclude_none=True)
