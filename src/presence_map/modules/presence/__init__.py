"""
Presence module for presence-map.

Tracks WHO is connected at each map location.

Features:
- Location aggregation (by city, or by rounded coordinates)
- Move detection via the user → location index
- Historical ("visited before") locations that never show a live count
- Greeting snapshot for newly connected viewers

Events Emitted:
- location.changed: When a location's marker must be redrawn

Events Consumed:
- transport.message: Raw presence messages from the transport
"""

from .module import PresenceModule
from .models import PresenceConfig

__all__ = [
    "PresenceModule",
    "PresenceConfig",
]
