"""
Tests for the room directory.
"""

import random
from unittest.mock import MagicMock

import pytest

from strike_engine.constants import ROOM_CODE_ALPHABET
from strike_engine.directory import RoomDirectory
from strike_engine.errors import CAPACITY, INTERNAL_ERROR, GameError
from strike_engine.rules import create_rules


class StuckRandom(random.Random):
    """Always draws the first symbol, so every code collides after the first."""

    def choice(self, seq):
        return seq[0]


def test_generated_codes_use_alphabet():
    directory = RoomDirectory(rng=random.Random(7))

    room = directory.create("host")

    assert len(room.code) == 6
    assert set(room.code) <= set(ROOM_CODE_ALPHABET)
    assert room.code in directory
    assert directory.get(room.code) is room
    assert room.target_survivors == 3


def test_codes_are_unique():
    directory = RoomDirectory(rng=random.Random(1))
    codes = {directory.create(f"host{i}").code for i in range(50)}
    assert len(codes) == 50
    assert len(directory) == 50


def test_room_limit():
    directory = RoomDirectory(rules=create_rules(max_rooms=2))
    directory.create("a")
    directory.create("b")

    with pytest.raises(GameError) as excinfo:
        directory.create("c")

    assert excinfo.value.code == CAPACITY


def test_code_space_exhausted():
    directory = RoomDirectory(rules=create_rules(room_code_attempts=5), rng=StuckRandom())
    assert directory.create("a").code == "AAAAAA"

    with pytest.raises(GameError) as excinfo:
        directory.create("b")

    assert excinfo.value.code == INTERNAL_ERROR


def test_delete_cancels_pending_timer():
    directory = RoomDirectory()
    room = directory.create("host")
    timer = MagicMock()
    room.pending_timer = timer

    assert directory.delete(room.code)

    timer.cancel.assert_called_once()
    assert room.pending_timer is None
    assert room.code not in directory
    assert not directory.delete(room.code)


def test_idle_rooms():
    directory = RoomDirectory(rules=create_rules(room_idle_timeout=60))
    room = directory.create("host")
    room.last_activity = 1000.0

    # Nobody in the room at all
    assert directory.is_idle(room, now=1060.0)
    assert not directory.is_idle(room, now=1059.0)

    room.players["host"] = MagicMock(connected=True)
    assert not directory.is_idle(room, now=5000.0)
