"""
Render module for presence-map.

Draws one circle marker per location: blue with a live user count while
someone is connected there, gray with "Visited before" otherwise.
"""

from .adapter import MarkerWidget, RenderAdapter, popup_html
from .models import ACTIVE_STYLE, PAST_STYLE, MarkerStyle, RenderConfig
from .module import RenderModule

__all__ = [
    "MarkerWidget",
    "RenderAdapter",
    "popup_html",
    "ACTIVE_STYLE",
    "PAST_STYLE",
    "MarkerStyle",
    "RenderConfig",
    "RenderModule",
]
