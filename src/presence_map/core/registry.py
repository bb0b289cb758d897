"""
LocationRegistry for aggregated map locations.

The registry owns the Location records, not the reconciliation rules.
"""

from typing import Dict, List, Optional
import logging

from presence_map.core.location import Coordinate, Location, VisualState

logger = logging.getLogger(__name__)


class LocationRegistry:
    """
    Stores every location ever seen on the map.

    Responsibilities:
    - Create locations on first reference
    - Track the active user set per location
    - Answer read-only queries for rendering

    Locations are never deleted: a location without active users stays on the
    map as a past location. None of the operations raise.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._locations: Dict[str, Location] = {}

    def ensure(
        self,
        key: str,
        coordinate: Coordinate,
        label: Optional[str] = None,
    ) -> Location:
        """
        Get or create the location for a key.

        An existing location gets its coordinate refreshed and, when a
        non-empty label is given, its label replaced.

        Args:
            key: Location key
            coordinate: Coordinate reported with this reference
            label: Optional display name (falls back to the key on creation)

        Returns:
            The existing or newly created Location
        """
        location = self._locations.get(key)

        if location is None:
            location = Location(key=key, label=label or key, coordinate=coordinate)
            self._locations[key] = location
            logger.info(f"Created location: {key} ({location.label})")
            return location

        location.coordinate = coordinate
        if label:
            location.label = label
        logger.debug(f"Refreshed location {key}: {coordinate}, label={location.label}")

        return location

    def add_active(self, key: str, user_id: str) -> None:
        """
        Mark a user as active at a location.

        Adding a user that is already present is a no-op.

        Args:
            key: Location key
            user_id: The user ID
        """
        location = self._locations.get(key)
        if not location:
            logger.debug(f"Ignoring add of {user_id} to unknown location {key}")
            return

        location.active_users.add(user_id)
        logger.debug(f"Location {key}: +{user_id} ({location.active_count} active)")

    def remove_active(self, key: str, user_id: str) -> bool:
        """
        Remove a user from a location's active set.

        Args:
            key: Location key
            user_id: The user ID

        Returns:
            True if the user was active there and has been removed
        """
        location = self._locations.get(key)
        if not location or user_id not in location.active_users:
            return False

        location.active_users.discard(user_id)
        logger.debug(f"Location {key}: -{user_id} ({location.active_count} active)")
        return True

    def mark_all_past(self, key: str) -> None:
        """
        Clear every active user from a location.

        Args:
            key: Location key
        """
        location = self._locations.get(key)
        if not location:
            return

        if location.active_users:
            logger.debug(
                f"Location {key}: clearing {location.active_count} stale active users"
            )
        location.active_users.clear()

    def visual_state_of(self, key: str) -> Optional[VisualState]:
        """
        Get the visual state of a location.

        Args:
            key: Location key

        Returns:
            ACTIVE or PAST, or None if the key is unknown
        """
        location = self._locations.get(key)
        return location.visual_state if location else None

    def get_location(self, key: str) -> Optional[Location]:
        """
        Get a location by key.

        Args:
            key: Location key

        Returns:
            The Location or None if not found
        """
        return self._locations.get(key)

    def all_locations(self) -> List[Location]:
        """Get all locations in creation order."""
        return list(self._locations.values())

    def active_locations(self) -> List[Location]:
        return [loc for loc in self._locations.values() if loc.is_active]

    def past_locations(self) -> List[Location]:
        return [loc for loc in self._locations.values() if not loc.is_active]

    def __contains__(self, key: object) -> bool:
        return key in self._locations

    def __len__(self) -> int:
        return len(self._locations)
