"""PresenceModule - track WHO is connected WHERE on the map."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from presence_map.core.bus import (
    LOCATION_CHANGED,
    TRANSPORT_MESSAGE,
    Event,
    EventBus,
    EventFilter,
)
from presence_map.core.messages import encode_event
from presence_map.core.reconciler import EventReconciler
from presence_map.modules.base import MapModule

from .models import MAX_KEY_PRECISION, MIN_KEY_PRECISION, PresenceConfig

logger = logging.getLogger(__name__)


class PresenceModule(MapModule):
    """
    Presence tracking module.

    Owns the EventReconciler and feeds it the messages delivered by the
    transport.

    Events Emitted:
    - location.changed: One per location whose marker must be redrawn

    Events Consumed:
    - transport.message: A raw presence message (payload["message"])

    Note: The transport (WebSocket, SSE, test harness) is not part of this
    module. It only publishes what it receives; reconnecting is its own job.
    """

    def __init__(self, config: Optional[PresenceConfig] = None) -> None:
        self._bus: Optional[EventBus] = None
        self._config = config or PresenceConfig()
        self._reconciler = EventReconciler(key_precision=self._config.key_precision)

    @property
    def id(self) -> str:
        return "presence"

    @property
    def CURRENT_CONFIG_VERSION(self) -> int:
        return 1

    @property
    def reconciler(self) -> EventReconciler:
        return self._reconciler

    def attach(self, bus: EventBus) -> None:
        """Attach to the kernel bus."""
        self._bus = bus

        bus.subscribe(
            handler=self._on_transport_message,
            event_filter=EventFilter(event_type=TRANSPORT_MESSAGE),
        )

        logger.info("PresenceModule attached to kernel")

    def default_config(self) -> Dict:
        """Return default configuration."""
        return PresenceConfig().to_dict()

    def config_schema(self) -> Dict:
        """Return JSON schema for configuration."""
        return {
            "type": "object",
            "properties": {
                "version": {"type": "integer", "default": 1},
                "key_precision": {
                    "type": "integer",
                    "title": "Coordinate key precision",
                    "description": "Decimal places kept when grouping users without a city",
                    "minimum": MIN_KEY_PRECISION,
                    "maximum": MAX_KEY_PRECISION,
                    "default": 2,
                },
            },
        }

    def configure(self, config: Dict) -> None:
        """Apply configuration."""
        self._config = PresenceConfig.from_dict(self.migrate_config(config))
        self._reconciler.key_precision = self._config.key_precision
        logger.debug(f"Presence config: {self._config.to_dict()}")

    # Message Handling

    def handle_message(self, message: Any) -> Set[str]:
        """
        Apply one presence message and announce the changed locations.

        Args:
            message: Raw JSON text/bytes, a decoded mapping or a typed event

        Returns:
            Keys of the locations that changed
        """
        changed = self._reconciler.apply(message)

        if self._bus:
            for key in sorted(changed):
                self._emit_location_changed(key)

        return changed

    def replay(self, messages: Iterable[Any]) -> Set[str]:
        """
        Apply a batch of messages in order.

        Args:
            messages: Messages in delivery order

        Returns:
            Union of the keys changed by any of them
        """
        changed: Set[str] = set()
        for message in messages:
            changed |= self.handle_message(message)
        return changed

    def snapshot_messages(self) -> List[Dict]:
        """
        Build the greeting sequence for a newly connected viewer.

        Returns:
            Wire messages: every location as "past", then a "connect" per online user
        """
        return [encode_event(event) for event in self._reconciler.snapshot_events()]

    def _on_transport_message(self, event: Event) -> None:
        """Handle a message delivered by the transport."""
        self.handle_message(event.payload.get("message"))

    def _emit_location_changed(self, key: str) -> None:
        assert self._bus is not None
        location = self._reconciler.get_location(key)

        self._bus.publish(
            Event(
                type=LOCATION_CHANGED,
                source=self.id,
                location_key=key,
                payload={
                    "key": key,
                    "label": location.label if location else None,
                    "visual_state": location.visual_state.value if location else None,
                    "active_count": location.active_count if location else 0,
                },
            )
        )

    # State

    def dump_state(self) -> Dict:
        """
        Dump current state for diagnostics.

        Returns:
            State dictionary
        """
        return self._reconciler.dump_state()
