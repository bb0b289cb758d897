#!/usr/bin/env python3
"""
Quick example demonstrating presence-map basic usage.

Run with: PYTHONPATH=src python3 example.py
"""

import json
import logging

from presence_map import EventBus, Event
from presence_map.core.bus import TRANSPORT_MESSAGE
from presence_map.modules.presence import PresenceModule
from presence_map.modules.render import MarkerWidget, RenderModule


class ConsoleWidget(MarkerWidget):
    """Prints widget calls instead of drawing."""

    def place_or_move(self, key, coordinate):
        print(f"   place {key!r} at {coordinate.lat:.4f},{coordinate.lng:.4f}")

    def set_style(self, key, style):
        print(f"   style {key!r}: {style.fill_color}")

    def set_popup(self, key, text):
        print(f"   popup {key!r}: {text}")


logging.basicConfig(level=logging.INFO, format="%(name)s - %(levelname)s - %(message)s")

print("=" * 60)
print("presence-map Example")
print("=" * 60)

# 1. Kernel components
print("\n1. Creating kernel components...")
bus = EventBus()
presence = PresenceModule()
presence.attach(bus)
render = RenderModule(presence.reconciler, ConsoleWidget())
render.attach(bus)
print("   ✓ EventBus, PresenceModule and RenderModule attached")

# 2. Simulated transport stream
messages = [
    {"type": "past", "key": "Geneva, CH", "lat": 46.2, "lng": 6.15, "city": "Geneva"},
    {"type": "connect", "id": "u1", "key": "Bern, CH", "lat": 46.95, "lng": 7.45, "city": "Bern"},
    {"type": "connect", "id": "u2", "key": "Bern, CH", "lat": 46.95, "lng": 7.45, "city": "Bern"},
    {"type": "connect", "id": "u1", "key": "Zurich, CH", "lat": 47.37, "lng": 8.54, "city": "Zurich"},
    {"id": "u3", "lat": 46.5197, "lng": 6.6323},  # legacy, no city
    {"type": "disconnect", "id": "u2"},
    {"type": "weather", "temp": 12.5},  # unknown kind, ignored
    '{"type": "connect", "id": "u4"',  # broken JSON, discarded
]

print("\n2. Delivering messages...")
for message in messages:
    print(f"\n → {message if isinstance(message, str) else json.dumps(message)}")
    bus.publish(
        Event(type=TRANSPORT_MESSAGE, source="example", payload={"message": message})
    )

# 3. Inspect state
print("\n3. Current state...")
for location in presence.reconciler.all_locations():
    print(f"   {location.key:<14} {location.visual_state.value:<6} {sorted(location.active_users)}")

print(f"\n   Consistency errors: {presence.reconciler.consistency_errors()}")

# 4. Greeting for a new viewer
print("\n4. Snapshot sent to a newly connected viewer...")
for message in presence.snapshot_messages():
    print(f"   {json.dumps(message)}")

print("\n" + "=" * 60)
print("Example complete!")
print("=" * 60)
