"""
Render adapter between the reconciler and a map widget.

The adapter only reads location state. Everything it does to the widget goes
through the three calls of MarkerWidget.
"""

import html
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from presence_map.core.location import Coordinate, Location, VisualState
from presence_map.core.reconciler import EventReconciler

from .models import MarkerStyle, RenderConfig

logger = logging.getLogger(__name__)


class MarkerWidget(ABC):
    """
    Capability the adapter needs from a map widget.

    Implementations wrap the real map (Leaflet via a bridge, folium, a test
    recorder). Markers are addressed by location key; place_or_move creates
    the marker on first use.
    """

    @abstractmethod
    def place_or_move(self, key: str, coordinate: Coordinate) -> None:
        """Place the marker for key, or move it if it already exists."""
        pass

    @abstractmethod
    def set_style(self, key: str, style: MarkerStyle) -> None:
        """Apply a style preset to the marker for key."""
        pass

    @abstractmethod
    def set_popup(self, key: str, text: str) -> None:
        """Replace the popup content of the marker for key."""
        pass


def popup_html(
    label: str,
    count: int,
    active: bool,
    config: Optional[RenderConfig] = None,
) -> str:
    """
    Build the popup content for a location marker.

    Args:
        label: Location display name (HTML-escaped here)
        count: Number of active users
        active: Whether the location is active; past popups never show a count
        config: Optional render config for the wording

    Returns:
        Popup HTML
    """
    config = config or RenderConfig()
    title = html.escape(label or "")

    if active:
        return (
            f'<div class="current"><b>{title}</b><br/>'
            f"{html.escape(config.active_text)}: <strong>{count}</strong></div>"
        )

    return f'<div class="past"><b>{title}</b><br/>{html.escape(config.past_text)}</div>'


class RenderAdapter:
    """
    Pushes changed locations to a MarkerWidget.

    Style and popup are always derived from the location's current active
    set, so a marker can never keep a stale style.
    """

    def __init__(
        self,
        reconciler: EventReconciler,
        widget: MarkerWidget,
        config: Optional[RenderConfig] = None,
    ) -> None:
        self._reconciler = reconciler
        self._widget = widget
        self.config = config or RenderConfig()

    def style_for(self, location: Location) -> MarkerStyle:
        if location.visual_state is VisualState.ACTIVE:
            return self.config.active_style
        return self.config.past_style

    def popup_for(self, location: Location) -> str:
        return popup_html(location.label, location.active_count, location.is_active, self.config)

    def render(self, changed_keys: Iterable[str]) -> int:
        """
        Redraw the markers of the given locations.

        Args:
            changed_keys: Keys returned by EventReconciler.apply

        Returns:
            Number of markers redrawn
        """
        rendered = 0

        for key in sorted(set(changed_keys)):
            location = self._reconciler.get_location(key)
            if location is None:
                logger.debug(f"Skipping render of unknown location {key}")
                continue

            self._widget.place_or_move(key, location.coordinate)
            self._widget.set_style(key, self.style_for(location))
            self._widget.set_popup(key, self.popup_for(location))
            rendered += 1

            logger.debug(
                f"Rendered {key}: {location.visual_state.value}, {location.active_count} active"
            )

        return rendered

    def render_all(self) -> int:
        """Redraw every known location (e.g. after the widget was recreated)."""
        return self.render(loc.key for loc in self._reconciler.all_locations())
