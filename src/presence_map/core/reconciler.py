"""The reconciliation state machine for the presence map.

This module contains the pure business logic. It accepts presence events one
at a time and returns the set of location keys whose visible state changed,
so the host knows exactly which markers to redraw.

State invariants (hold after every call to ``apply``):
- A user ID is active at no more than one location.
- Every user in the UserIndex is active at the indexed location, unless a
  past event for that location has since cleared it (see dangling_users).
"""

import logging
import math
from typing import Any, Dict, List, Optional, Set

from presence_map.core.events import (
    ConnectEvent,
    DisconnectEvent,
    HistoricalEvent,
    PresenceEvent,
)
from presence_map.core.keys import DEFAULT_PRECISION
from presence_map.core.location import Location, VisualState
from presence_map.core.messages import (
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MalformedMessageError,
    decode_message,
)
from presence_map.core.registry import LocationRegistry
from presence_map.core.user_index import UserIndex

_LOGGER = logging.getLogger(__name__)

_TYPED_EVENTS = (HistoricalEvent, ConnectEvent, DisconnectEvent)


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def _is_coordinate(value: Any) -> bool:
    if not isinstance(value, tuple) or len(value) != 2:
        return False
    if not all(
        isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)
        for v in value
    ):
        return False
    # Bounds match the wire Latitude and Longitude
    lat, lng = value
    return abs(lat) <= MAX_LATITUDE and abs(lng) <= MAX_LONGITUDE


def _is_well_formed(event: PresenceEvent) -> bool:
    """Check a directly constructed event (decoded ones are already valid)."""
    if isinstance(event, DisconnectEvent):
        return _is_text(event.user_id) and (event.key is None or _is_text(event.key))
    if isinstance(event, ConnectEvent) and not _is_text(event.user_id):
        return False
    return _is_text(event.key) and _is_coordinate(event.coordinate)


class EventReconciler:
    """Applies presence events to the location registry and user index.

    The reconciler exclusively owns its registry and index; other components
    only read through the query methods below. One instance is created per
    map and handed to whoever drives the event loop.
    """

    def __init__(self, key_precision: int = DEFAULT_PRECISION) -> None:
        """Initialize an empty reconciler.

        Args:
            key_precision: Decimal places for coordinate keys derived from
                legacy messages.
        """
        self.key_precision = key_precision
        self._registry = LocationRegistry()
        self._index = UserIndex()

    def apply(self, event: Any) -> Set[str]:
        """Apply a single presence event.

        Args:
            event: A typed event, a decoded message mapping, or raw JSON
                text/bytes.

        Returns:
            Keys of the locations that changed and must be redrawn. Empty for
            no-ops, unknown message kinds and discarded malformed messages.
        """
        if not isinstance(event, _TYPED_EVENTS):
            try:
                event = decode_message(event, precision=self.key_precision)
            except MalformedMessageError as e:
                _LOGGER.warning(f"Discarding malformed presence message: {e}")
                return set()

            if event is None:
                return set()
        elif not _is_well_formed(event):
            _LOGGER.warning(f"Discarding malformed presence event: {event!r}")
            return set()

        if isinstance(event, HistoricalEvent):
            changed = self._apply_historical(event)
        elif isinstance(event, ConnectEvent):
            changed = self._apply_connect(event)
        else:
            changed = self._apply_disconnect(event)

        if changed:
            _LOGGER.debug(
                f"Applied {event.event_type.value}: changed {sorted(changed)}"
            )
        return changed

    def _apply_historical(self, event: HistoricalEvent) -> Set[str]:
        # History is never shown as live, even if stale active IDs linger
        # from before a transport reconnect.
        self._registry.ensure(event.key, event.coordinate, event.label)
        self._registry.mark_all_past(event.key)
        return {event.key}

    def _apply_connect(self, event: ConnectEvent) -> Set[str]:
        changed: Set[str] = set()

        # 1. Leave the previous location on a move
        prev_key = self._index.get(event.user_id)
        if prev_key is not None and prev_key != event.key:
            self._registry.remove_active(prev_key, event.user_id)
            changed.add(prev_key)
            _LOGGER.info(f"User {event.user_id} moved: {prev_key} → {event.key}")
        elif prev_key is None:
            _LOGGER.info(f"User {event.user_id} connected at {event.key}")

        # 2. Join the new one (set semantics make re-delivery a no-op)
        self._registry.ensure(event.key, event.coordinate, event.label)
        self._registry.add_active(event.key, event.user_id)
        self._index.set(event.user_id, event.key)

        changed.add(event.key)
        return changed

    def _apply_disconnect(self, event: DisconnectEvent) -> Set[str]:
        indexed_key = self._index.get(event.user_id)
        effective_key = event.key or indexed_key

        if effective_key is None:
            _LOGGER.debug(f"Disconnect for untracked user {event.user_id}: nothing to do")
            return set()

        changed = {effective_key}
        self._registry.remove_active(effective_key, event.user_id)

        # The sender's key may be stale; never leave the user active elsewhere
        if indexed_key is not None and indexed_key != effective_key:
            if self._registry.remove_active(indexed_key, event.user_id):
                changed.add(indexed_key)

        self._index.remove(event.user_id)
        _LOGGER.info(f"User {event.user_id} disconnected from {effective_key}")

        return changed

    # Queries

    def get_location(self, key: str) -> Optional[Location]:
        return self._registry.get_location(key)

    def all_locations(self) -> List[Location]:
        return self._registry.all_locations()

    def visual_state_of(self, key: str) -> Optional[VisualState]:
        return self._registry.visual_state_of(key)

    def location_of(self, user_id: str) -> Optional[str]:
        """Get the key of the location a user is currently active at."""
        return self._index.get(user_id)

    def consistency_errors(self) -> List[str]:
        """Check the state invariants.

        Returns:
            One message per violation; empty if the state is consistent.
        """
        errors: List[str] = []

        seen: Dict[str, str] = {}
        for location in self._registry.all_locations():
            for user_id in sorted(location.active_users):
                if user_id in seen:
                    errors.append(
                        f"User {user_id} active at both {seen[user_id]} and {location.key}"
                    )
                else:
                    seen[user_id] = location.key

        for user_id, key in self._index.items():
            location = self._registry.get_location(key)
            if location is None:
                errors.append(f"User {user_id} indexed at unknown location {key}")
            elif user_id in seen and seen[user_id] != key:
                errors.append(f"User {user_id} indexed at {key} but active at {seen[user_id]}")

        return errors

    def dangling_users(self) -> List[str]:
        """Get users indexed at a location that no longer counts them.

        A past event clears a location's active set without touching the
        index; the entries stay until that user's own disconnect or move.
        """
        dangling = []
        for user_id, key in self._index.items():
            location = self._registry.get_location(key)
            if location is not None and user_id not in location.active_users:
                dangling.append(user_id)
        return dangling

    def snapshot_events(self) -> List[PresenceEvent]:
        """Build the event sequence that reproduces the current state.

        This is what a newly connected viewer is sent: every location as a
        past visit first, then one connect per user currently online.

        Returns:
            Historical events followed by connect events.
        """
        events: List[PresenceEvent] = []

        for location in self._registry.all_locations():
            events.append(
                HistoricalEvent(
                    key=location.key,
                    coordinate=location.coordinate,
                    label=location.label if location.label != location.key else None,
                )
            )

        for user_id, key in self._index.items():
            location = self._registry.get_location(key)
            if location is None or user_id not in location.active_users:
                continue
            events.append(
                ConnectEvent(
                    user_id=user_id,
                    key=key,
                    coordinate=location.coordinate,
                    label=location.label if location.label != location.key else None,
                )
            )

        return events

    def dump_state(self) -> Dict:
        """
        Dump current state for diagnostics.

        Returns:
            State dictionary
        """
        return {
            "version": 1,
            "locations": {
                location.key: {
                    "label": location.label,
                    "lat": location.coordinate.lat,
                    "lng": location.coordinate.lng,
                    "active_users": sorted(location.active_users),
                    "visual_state": location.visual_state.value,
                }
                for location in self._registry.all_locations()
            },
            "users": dict(self._index.items()),
        }
