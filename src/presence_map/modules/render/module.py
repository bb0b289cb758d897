"""RenderModule - keep the map widget in sync with location changes."""

import logging
from typing import Dict, Optional

from presence_map.core.bus import LOCATION_CHANGED, Event, EventBus, EventFilter
from presence_map.core.reconciler import EventReconciler
from presence_map.modules.base import MapModule

from .adapter import MarkerWidget, RenderAdapter
from .models import RenderConfig

logger = logging.getLogger(__name__)


class RenderModule(MapModule):
    """
    Render module.

    Consumes location.changed events and redraws exactly those markers.

    Events Consumed:
    - location.changed: Emitted by PresenceModule per changed location
    """

    def __init__(
        self,
        reconciler: EventReconciler,
        widget: MarkerWidget,
        config: Optional[RenderConfig] = None,
    ) -> None:
        """
        Initialize the render module.

        Args:
            reconciler: Reconciler to read location state from (read only)
            widget: Map widget to draw on
            config: Optional render configuration
        """
        self._bus: Optional[EventBus] = None
        self._adapter = RenderAdapter(reconciler, widget, config)

    @property
    def id(self) -> str:
        return "render"

    @property
    def CURRENT_CONFIG_VERSION(self) -> int:
        return 1

    @property
    def adapter(self) -> RenderAdapter:
        return self._adapter

    def attach(self, bus: EventBus) -> None:
        """Attach to the kernel bus."""
        self._bus = bus

        bus.subscribe(
            handler=self._on_location_changed,
            event_filter=EventFilter(event_type=LOCATION_CHANGED),
        )

        logger.info("RenderModule attached to kernel")

    def default_config(self) -> Dict:
        """Return default configuration."""
        return RenderConfig().to_dict()

    def config_schema(self) -> Dict:
        """Return JSON schema for configuration."""
        style_schema = {
            "type": "object",
            "properties": {
                "radius": {"type": "integer", "minimum": 1},
                "fillColor": {"type": "string"},
                "color": {"type": "string"},
                "weight": {"type": "integer", "minimum": 0},
                "opacity": {"type": "number", "minimum": 0, "maximum": 1},
                "fillOpacity": {"type": "number", "minimum": 0, "maximum": 1},
            },
        }
        return {
            "type": "object",
            "properties": {
                "version": {"type": "integer", "default": 1},
                "active_style": {**style_schema, "title": "Active marker style"},
                "past_style": {**style_schema, "title": "Past marker style"},
                "active_text": {
                    "type": "string",
                    "title": "Active popup text",
                    "description": "Shown before the live user count",
                    "default": "Active users",
                },
                "past_text": {
                    "type": "string",
                    "title": "Past popup text",
                    "description": "Shown instead of a count for past locations",
                    "default": "Visited before",
                },
            },
        }

    def configure(self, config: Dict) -> None:
        """Apply configuration and redraw everything with it."""
        self._adapter.config = RenderConfig.from_dict(self.migrate_config(config))
        self._adapter.render_all()

    def _on_location_changed(self, event: Event) -> None:
        """Handle a location change from the presence module."""
        if not event.location_key:
            return
        self._adapter.render([event.location_key])
