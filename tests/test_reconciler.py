"""Tests for the EventReconciler state machine."""

import json
import random

import pytest

from presence_map.core.events import ConnectEvent, DisconnectEvent, HistoricalEvent
from presence_map.core.location import Coordinate, VisualState
from presence_map.core.reconciler import EventReconciler
from presence_map.modules.presence import PresenceModule


def connect(user_id, key, lat=46.95, lng=7.45, city=None):
    message = {"type": "connect", "id": user_id, "key": key, "lat": lat, "lng": lng}
    if city:
        message["city"] = city
    return message


def disconnect(user_id, key=None):
    message = {"type": "disconnect", "id": user_id}
    if key:
        message["key"] = key
    return message


def past(key, lat=46.2, lng=6.15, city=None):
    message = {"type": "past", "key": key, "lat": lat, "lng": lng}
    if city:
        message["city"] = city
    return message


@pytest.fixture
def reconciler():
    """Create an empty reconciler."""
    return EventReconciler()


def active(reconciler, key):
    return reconciler.get_location(key).active_users


class TestScenarios:
    """End-to-end presence scenarios."""

    def test_user_moves_between_cities(self, reconciler):
        """Test a connect to a new key moves the user."""
        reconciler.apply(connect("u1", "Bern, CH", 46.95, 7.45))
        changed = reconciler.apply(connect("u1", "Zurich, CH", 47.37, 8.54))

        assert changed == {"Bern, CH", "Zurich, CH"}
        assert active(reconciler, "Bern, CH") == set()
        assert reconciler.visual_state_of("Bern, CH") is VisualState.PAST
        assert active(reconciler, "Zurich, CH") == {"u1"}
        assert reconciler.visual_state_of("Zurich, CH") is VisualState.ACTIVE
        assert reconciler.location_of("u1") == "Zurich, CH"

    def test_duplicate_connect_counts_once(self, reconciler):
        """Test re-delivering a connect does not double count."""
        reconciler.apply(connect("u2", "Bern, CH"))
        changed = reconciler.apply(connect("u2", "Bern, CH"))

        assert active(reconciler, "Bern, CH") == {"u2"}
        assert changed == {"Bern, CH"}

    def test_disconnect_without_connect(self, reconciler):
        """Test a disconnect for an unknown user is a no-op."""
        changed = reconciler.apply(disconnect("u3"))

        assert changed == set()
        assert reconciler.all_locations() == []

    def test_past_clears_active_users(self, reconciler):
        """Test a past event always empties the location."""
        reconciler.apply(connect("u4", "Geneva, CH", 46.2, 6.15))
        changed = reconciler.apply(past("Geneva, CH", 46.2, 6.15))

        assert changed == {"Geneva, CH"}
        assert active(reconciler, "Geneva, CH") == set()
        assert reconciler.visual_state_of("Geneva, CH") is VisualState.PAST


class TestHistorical:
    """Tests for past (historical) events."""

    def test_creates_past_location(self, reconciler):
        """Test a past event creates a gray location."""
        changed = reconciler.apply(past("Geneva, CH", city="Geneva"))

        location = reconciler.get_location("Geneva, CH")
        assert changed == {"Geneva, CH"}
        assert location.label == "Geneva"
        assert location.coordinate == Coordinate(46.2, 6.15)
        assert location.visual_state is VisualState.PAST

    def test_past_leaves_user_index(self, reconciler):
        """Test that past events do not touch the user index."""
        reconciler.apply(connect("u4", "Geneva, CH"))
        reconciler.apply(past("Geneva, CH"))

        assert reconciler.location_of("u4") == "Geneva, CH"
        assert reconciler.dangling_users() == ["u4"]
        assert reconciler.consistency_errors() == []

    def test_dangling_user_disconnect(self, reconciler):
        """Test a dangling user can still disconnect cleanly."""
        reconciler.apply(connect("u4", "Geneva, CH"))
        reconciler.apply(past("Geneva, CH"))

        changed = reconciler.apply(disconnect("u4"))

        assert changed == {"Geneva, CH"}
        assert reconciler.location_of("u4") is None
        assert reconciler.dangling_users() == []

    def test_dangling_user_reconnects(self, reconciler):
        """Test a dangling user becomes active again on reconnect."""
        reconciler.apply(connect("u4", "Geneva, CH"))
        reconciler.apply(past("Geneva, CH"))

        changed = reconciler.apply(connect("u4", "Geneva, CH"))

        assert changed == {"Geneva, CH"}
        assert active(reconciler, "Geneva, CH") == {"u4"}


class TestConnect:
    """Tests for connect events."""

    def test_connect_creates_active_location(self, reconciler):
        """Test first connect creates the location."""
        changed = reconciler.apply(connect("u1", "Bern, CH", city="Bern"))

        location = reconciler.get_location("Bern, CH")
        assert changed == {"Bern, CH"}
        assert location.label == "Bern"
        assert location.active_users == {"u1"}

    def test_connect_aggregates_users(self, reconciler):
        """Test several users at one key share a marker."""
        reconciler.apply(connect("u1", "Bern, CH"))
        reconciler.apply(connect("u2", "Bern, CH"))
        reconciler.apply(connect("u3", "Bern, CH"))

        assert active(reconciler, "Bern, CH") == {"u1", "u2", "u3"}
        assert len(reconciler.all_locations()) == 1

    def test_connect_refreshes_coordinate_and_label(self, reconciler):
        """Test a repeated connect updates coordinate and label."""
        reconciler.apply(connect("u1", "Bern, CH", 46.95, 7.45))
        reconciler.apply(connect("u1", "Bern, CH", 46.94, 7.44, city="Bern"))

        location = reconciler.get_location("Bern, CH")
        assert location.coordinate == Coordinate(46.94, 7.44)
        assert location.label == "Bern"

    def test_connect_twice_same_state(self, reconciler):
        """Test that applying a connect twice equals applying it once."""
        once = EventReconciler()
        once.apply(connect("u1", "Bern, CH"))

        reconciler.apply(connect("u1", "Bern, CH"))
        reconciler.apply(connect("u1", "Bern, CH"))

        assert reconciler.dump_state() == once.dump_state()

    def test_connect_onto_past_location(self, reconciler):
        """Test a past location turns active when someone connects there."""
        reconciler.apply(past("Geneva, CH", city="Geneva"))
        reconciler.apply(connect("u1", "Geneva, CH", 46.2, 6.15))

        assert reconciler.visual_state_of("Geneva, CH") is VisualState.ACTIVE
        assert reconciler.get_location("Geneva, CH").label == "Geneva"

    def test_move_leaves_others_in_place(self, reconciler):
        """Test moving one user does not affect co-located users."""
        reconciler.apply(connect("u1", "Bern, CH"))
        reconciler.apply(connect("u2", "Bern, CH"))

        reconciler.apply(connect("u1", "Zurich, CH", 47.37, 8.54))

        assert active(reconciler, "Bern, CH") == {"u2"}
        assert active(reconciler, "Zurich, CH") == {"u1"}

    def test_legacy_message_derives_key(self, reconciler):
        """Test an untyped message is a connect with a derived key."""
        changed = reconciler.apply(
            {"id": "u1", "lat": 46.95, "lng": 7.45, "city": "Bern", "country": "CH"}
        )

        assert changed == {"Bern, CH"}
        assert reconciler.get_location("Bern, CH").label == "Bern"
        assert reconciler.location_of("u1") == "Bern, CH"

    def test_legacy_message_coordinate_key(self, reconciler):
        """Test an untyped message without city groups by rounded coordinates."""
        reconciler.apply({"id": "u1", "lat": 46.9512, "lng": 7.4471})
        reconciler.apply({"id": "u2", "lat": 46.9488, "lng": 7.4502})

        assert active(reconciler, "46.95,7.45") == {"u1", "u2"}

    def test_legacy_precision_follows_reconciler(self):
        """Test key precision is configurable."""
        reconciler = EventReconciler(key_precision=1)
        changed = reconciler.apply({"id": "u1", "lat": 46.9512, "lng": 7.4471})

        assert changed == {"47,7.4"}


class TestDisconnect:
    """Tests for disconnect events."""

    def test_disconnect_uses_index(self, reconciler):
        """Test disconnect without key looks the user up."""
        reconciler.apply(connect("u1", "Bern, CH"))

        changed = reconciler.apply(disconnect("u1"))

        assert changed == {"Bern, CH"}
        assert active(reconciler, "Bern, CH") == set()
        assert reconciler.location_of("u1") is None

    def test_disconnect_with_key(self, reconciler):
        """Test disconnect with explicit key."""
        reconciler.apply(connect("u1", "Bern, CH"))

        changed = reconciler.apply(disconnect("u1", "Bern, CH"))

        assert changed == {"Bern, CH"}
        assert reconciler.location_of("u1") is None

    def test_disconnect_keeps_location(self, reconciler):
        """Test that locations are never removed."""
        reconciler.apply(connect("u1", "Bern, CH"))
        reconciler.apply(disconnect("u1"))

        location = reconciler.get_location("Bern, CH")
        assert location is not None
        assert location.visual_state is VisualState.PAST

    def test_disconnect_with_stale_key(self, reconciler):
        """Test a disconnect naming an old location still clears the user."""
        reconciler.apply(connect("u1", "Bern, CH"))
        reconciler.apply(connect("u1", "Zurich, CH", 47.37, 8.54))

        changed = reconciler.apply(disconnect("u1", "Bern, CH"))

        assert changed == {"Bern, CH", "Zurich, CH"}
        assert active(reconciler, "Zurich, CH") == set()
        assert reconciler.location_of("u1") is None
        assert reconciler.consistency_errors() == []

    def test_disconnect_unknown_key(self, reconciler):
        """Test a disconnect naming an unknown key creates nothing."""
        changed = reconciler.apply(disconnect("u9", "Nowhere"))

        assert changed == {"Nowhere"}
        assert reconciler.get_location("Nowhere") is None

    def test_disconnect_twice(self, reconciler):
        """Test a repeated disconnect resolves to a no-op."""
        reconciler.apply(connect("u1", "Bern, CH"))
        reconciler.apply(disconnect("u1"))

        assert reconciler.apply(disconnect("u1")) == set()

    def test_disconnect_before_connect(self, reconciler):
        """Test out-of-order delivery is handled gracefully."""
        reconciler.apply(disconnect("u1"))
        reconciler.apply(connect("u1", "Bern, CH"))

        assert active(reconciler, "Bern, CH") == {"u1"}


class TestBadInput:
    """Malformed and unknown messages never mutate state."""

    @pytest.fixture
    def seeded(self, reconciler):
        reconciler.apply(connect("u1", "Bern, CH"))
        return reconciler

    @pytest.mark.parametrize(
        "message",
        [
            {"type": "connect", "id": "u2", "key": "Bern, CH", "lat": 46.95},
            {"type": "connect", "id": "u2", "key": "Bern, CH", "lat": "46.95", "lng": 7.45},
            {"type": "connect", "id": "u2", "lat": 46.95, "lng": 7.45},
            {"type": "connect", "id": True, "key": "Bern, CH", "lat": 46.95, "lng": 7.45},
            {"type": "connect", "id": "", "key": "Bern, CH", "lat": 46.95, "lng": 7.45},
            {"type": "connect", "id": "u2", "key": "Bern, CH", "lat": float("nan"), "lng": 7.45},
            {"type": "past", "key": "Bern, CH", "lat": None, "lng": 7.45},
            {"type": "past", "lat": 46.95, "lng": 7.45},
            {"type": "disconnect", "key": "Bern, CH"},
            {"type": "disconnect", "id": "u1", "key": ""},
            {"type": 5, "id": "u1"},
            {"lat": 46.95, "lng": 7.45},
            '{"type": "disconnect", "id": "u1"',
            "[1, 2, 3]",
            b"\xff\xfe",
            None,
            42,
        ],
    )
    def test_malformed_is_discarded(self, seeded, message):
        """Test malformed input returns no changes and leaves state alone."""
        before = seeded.dump_state()

        assert seeded.apply(message) == set()
        assert seeded.dump_state() == before

    @pytest.mark.parametrize(
        "message",
        [
            "[" * 200000,
            '{"type": "connect", "id": "u2", "key": "Bern, CH", "lat": 46.95, "lng": 7.45, "city": '
            + "[" * 200000
            + "]" * 200000
            + "}",
        ],
        ids=["bare-array", "nested-city"],
    )
    def test_deeply_nested_json_is_discarded(self, seeded, message):
        """Test JSON nested past the recursion limit is treated as malformed."""
        before = seeded.dump_state()

        assert seeded.apply(message) == set()
        assert seeded.dump_state() == before

    def test_unknown_type_is_ignored(self, seeded):
        """Test unknown message kinds are ignored."""
        before = seeded.dump_state()

        assert seeded.apply({"type": "weather", "temp": 12.5}) == set()
        assert seeded.dump_state() == before

    def test_malformed_typed_event_is_discarded(self, seeded):
        """Test directly constructed events are checked too."""
        before = seeded.dump_state()

        assert seeded.apply(ConnectEvent("u2", "Bern, CH", ("a", "b"))) == set()
        assert seeded.apply(HistoricalEvent("", Coordinate(1.0, 2.0))) == set()
        assert seeded.apply(DisconnectEvent("")) == set()
        assert seeded.apply(HistoricalEvent("Far", (200.0, 0.0))) == set()
        assert seeded.apply(ConnectEvent("u2", "Far", Coordinate(46.95, -180.5))) == set()
        assert seeded.dump_state() == before

    def test_processing_continues_after_bad_input(self, seeded):
        """Test later events are served after a discarded one."""
        seeded.apply("not json at all")

        assert seeded.apply(disconnect("u1")) == {"Bern, CH"}


class TestInputForms:
    """apply accepts typed events, mappings and raw JSON."""

    def test_typed_event(self, reconciler):
        """Test applying a typed event."""
        changed = reconciler.apply(ConnectEvent("u1", "Bern, CH", Coordinate(46.95, 7.45)))

        assert changed == {"Bern, CH"}

    def test_typed_event_plain_tuple(self, reconciler):
        """Test a plain tuple coordinate is accepted."""
        reconciler.apply(HistoricalEvent("Geneva, CH", (46.2, 6.15)))

        assert reconciler.get_location("Geneva, CH").coordinate.lat == 46.2

    def test_json_text_and_bytes(self, reconciler):
        """Test raw JSON text and bytes."""
        reconciler.apply(json.dumps(connect("u1", "Bern, CH")))
        reconciler.apply(json.dumps(connect("u2", "Bern, CH")).encode())

        assert active(reconciler, "Bern, CH") == {"u1", "u2"}

    def test_numeric_user_id(self, reconciler):
        """Test numeric IDs are normalized to strings."""
        reconciler.apply(connect(42, "Bern, CH"))

        assert active(reconciler, "Bern, CH") == {"42"}
        assert reconciler.apply(disconnect("42")) == {"Bern, CH"}


class TestSnapshot:
    """Tests for the viewer greeting snapshot."""

    def test_snapshot_order(self, reconciler):
        """Test past events come before connect events."""
        reconciler.apply(past("Geneva, CH", city="Geneva"))
        reconciler.apply(connect("u1", "Bern, CH", city="Bern"))

        events = reconciler.snapshot_events()

        assert [type(e) for e in events] == [HistoricalEvent, HistoricalEvent, ConnectEvent]
        assert events[2].user_id == "u1"

    def test_snapshot_replay_reproduces_state(self, reconciler):
        """Test a fresh reconciler fed the snapshot ends in the same state."""
        reconciler.apply(past("Geneva, CH", city="Geneva"))
        reconciler.apply(connect("u1", "Bern, CH", city="Bern"))
        reconciler.apply(connect("u2", "Bern, CH", city="Bern"))
        reconciler.apply(connect("u3", "Zurich, CH", 47.37, 8.54))
        reconciler.apply({"id": "u4", "lat": 46.5197, "lng": 6.6323})
        reconciler.apply(disconnect("u3"))

        viewer = EventReconciler()
        for event in reconciler.snapshot_events():
            viewer.apply(event)

        assert viewer.dump_state() == reconciler.dump_state()

    def test_snapshot_skips_dangling_users(self, reconciler):
        """Test users cleared by a past event are not replayed as active."""
        reconciler.apply(connect("u1", "Geneva, CH"))
        reconciler.apply(past("Geneva, CH"))

        events = reconciler.snapshot_events()

        assert all(isinstance(e, HistoricalEvent) for e in events)


class TestInvariants:
    """Invariants over pseudo-random event streams."""

    USERS = ["u0", "u1", "u2", "u3", "u4"]
    KEYS = ["Bern, CH", "Zurich, CH", "Geneva, CH", "46.95,7.45"]

    def _random_message(self, rng, with_past):
        kinds = ["connect", "connect", "disconnect", "disconnect_key", "garbage"]
        if with_past:
            kinds.append("past")
        kind = rng.choice(kinds)

        if kind == "connect":
            return connect(rng.choice(self.USERS), rng.choice(self.KEYS), rng.uniform(45, 48), 7.0)
        if kind == "disconnect":
            return disconnect(rng.choice(self.USERS))
        if kind == "disconnect_key":
            return disconnect(rng.choice(self.USERS), rng.choice(self.KEYS))
        if kind == "past":
            return past(rng.choice(self.KEYS))
        return {"type": "connect", "id": rng.choice(self.USERS), "key": rng.choice(self.KEYS)}

    def _check_exclusive(self, reconciler):
        seen = set()
        for location in reconciler.all_locations():
            assert not (location.active_users & seen)
            seen |= location.active_users

    @pytest.mark.parametrize("seed", range(20))
    def test_invariants_without_past(self, seed):
        """Test exclusivity and bidirectional consistency."""
        rng = random.Random(seed)
        reconciler = EventReconciler()

        for _ in range(200):
            reconciler.apply(self._random_message(rng, with_past=False))

            self._check_exclusive(reconciler)
            assert reconciler.consistency_errors() == []
            assert reconciler.dangling_users() == []
            for location in reconciler.all_locations():
                expected = VisualState.ACTIVE if location.active_users else VisualState.PAST
                assert location.visual_state is expected

    @pytest.mark.parametrize("seed", range(20))
    def test_invariants_with_past(self, seed):
        """Test exclusivity holds when past events clear locations."""
        rng = random.Random(seed)
        reconciler = EventReconciler()

        for _ in range(200):
            message = self._random_message(rng, with_past=True)
            reconciler.apply(message)

            self._check_exclusive(reconciler)
            assert reconciler.consistency_errors() == []
            if message.get("type") == "past":
                assert reconciler.get_location(message["key"]).active_users == set()

    @pytest.mark.parametrize("seed", range(10))
    def test_connect_is_idempotent(self, seed):
        """Test re-applying the last connect leaves state unchanged."""
        rng = random.Random(seed)
        reconciler = EventReconciler()

        for _ in range(100):
            message = self._random_message(rng, with_past=True)
            reconciler.apply(message)
            if message.get("type") == "connect" and "lat" in message:
                before = reconciler.dump_state()
                assert reconciler.apply(message) == {message["key"]}
                assert reconciler.dump_state() == before


class TestReadOnlyQueries:
    """The reconciler only exposes read access to its state."""

    def test_visual_state_of(self, reconciler):
        reconciler.apply(connect("u1", "Bern, CH"))

        assert reconciler.visual_state_of("Bern, CH") is VisualState.ACTIVE
        assert reconciler.visual_state_of("Nowhere") is None

    def test_registry_not_public(self, reconciler):
        """Test the mutable registry is not handed out."""
        assert not hasattr(reconciler, "registry")

    def test_out_of_range_event_keeps_snapshot_encodable(self):
        """Test rejected typed events never reach the greeting snapshot."""
        module = PresenceModule()
        module.handle_message(connect("u1", "Bern, CH"))

        assert module.handle_message(HistoricalEvent("Far", (200.0, 0.0))) == set()
        assert [m["key"] for m in module.snapshot_messages()] == ["Bern, CH", "Bern, CH"]
