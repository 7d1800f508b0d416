import pytest

from conftest import make_item
from listen_together.services.registry import RoomRegistry


@pytest.fixture()
def registry(clock) -> RoomRegistry:
    return RoomRegistry(clock=clock)


def test_first_join_creates_room(registry):
    room, participant = registry.join("lobby", "c1")
    assert "lobby" in registry
    assert registry.get("lobby") is room
    assert participant.is_owner


def test_join_existing_room_reuses_it(registry):
    room_a, _ = registry.join("lobby", "c1")
    room_b, participant = registry.join("lobby", "c2")
    assert room_a is room_b
    assert not participant.is_owner
    assert len(registry) == 1


def test_last_leave_destroys_room(registry):
    registry.join("lobby", "c1")
    registry.join("lobby", "c2")

    removed, room = registry.leave("lobby", "c1")
    assert removed and room is not None
    assert room.owner.connection_id == "c2"

    removed, room = registry.leave("lobby", "c2")
    assert removed and room is None
    assert "lobby" not in registry
    assert registry.get("lobby") is None


def test_leave_unknown(registry):
    assert registry.leave("nowhere", "c1") == (False, None)
    registry.join("lobby", "c1")
    removed, room = registry.leave("lobby", "c9")
    assert removed is False
    assert room is registry.get("lobby")


def test_recreated_room_starts_fresh(registry):
    room, _ = registry.join("lobby", "c1")
    room.enqueue("c1", make_item(1))
    registry.leave("lobby", "c1")

    fresh, participant = registry.join("lobby", "c2")
    assert fresh is not room
    assert fresh.current_item is None
    assert participant.is_owner


def test_rooms_for_periodic_sync(registry, clock):
    # Playing, two participants: eligible
    busy, _ = registry.join("busy", "a1")
    registry.join("busy", "a2")
    busy.enqueue("a1", make_item(1))
    # Playing, alone: not eligible
    solo, _ = registry.join("solo", "b1")
    solo.enqueue("b1", make_item(1))
    # Paused: not eligible
    paused, _ = registry.join("paused", "c1")
    registry.join("paused", "c2")
    paused.enqueue("c1", make_item(1))
    paused.set_playing(False)
    # Nothing queued: not eligible
    registry.join("idle", "d1")
    registry.join("idle", "d2")

    clock.advance(42)
    assert registry.rooms_for_periodic_sync() == [("busy", pytest.approx(42))]


def test_destroyed_room_not_synced(registry):
    room, _ = registry.join("busy", "a1")
    registry.join("busy", "a2")
    room.enqueue("a1", make_item(1))
    registry.leave("busy", "a1")
    registry.leave("busy", "a2")
    assert registry.rooms_for_periodic_sync() == []


def test_stats(registry):
    assert registry.stats()["average_participants_per_room"] == 0

    room, _ = registry.join("one", "a1")
    registry.join("one", "a2")
    room.enqueue("a1", make_item(1))
    registry.join("two", "b1")

    stats = registry.stats()
    assert stats == {
        "total_rooms": 2,
        "active_rooms": 1,
        "total_participants": 3,
        "average_participants_per_room": 1.5,
    }
