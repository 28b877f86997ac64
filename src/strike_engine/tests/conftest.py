"""
Shared fixtures for the strike engine tests.
"""

import pytest
from strike_engine.engine import StrikeEngine
from strike_engine.missions import MissionStore
from strike_engine.rules import create_rules

from factories import FixedCharacters

NAMES = ("Alice", "Bob", "Carol", "Dave")


@pytest.fixture
def missions():
    store = MissionStore()
    yield store
    store.close()


@pytest.fixture
def characters():
    return FixedCharacters()


@pytest.fixture
def engine(missions, characters):
    return StrikeEngine(
        rules=create_rules(tally_delay=0),
        character_factory=characters,
        missions=missions
    )


@pytest.fixture
def lobby(engine):
    """Factory for a lobby with a mission selected; returns (code, player ids)."""
    def _lobby(names=NAMES):
        created = engine.create_room(names[0])
        code = created.data['room_code']
        ids = [created.data['player_id']]
        for name in names[1:]:
            ids.append(engine.join_room(code, name).data['player_id'])
        assert engine.select_mission(code, ids[0], 'shibuya_incident')
        return code, ids
    return _lobby


@pytest.fixture
def game(engine, lobby, characters):
    """Factory for a started game sitting in the reveal phase of round 1."""
    def _game(names=NAMES, cards=None, target_survivors=None):
        characters.cards = list(cards or [])
        code, ids = lobby(names)
        if target_survivors is not None:
            assert engine.set_target_survivors(code, ids[0], target_survivors)
        assert engine.start_game(code, ids[0])
        assert engine.advance_phase(code, ids[0])
        return code, ids
    return _game


@pytest.fixture
def reveal_all(engine):
    """Every active player reveals their first hidden category."""
    def _reveal_all(code):
        room = engine.get_room(code)
        for player_id in room.active_player_ids():
            index = room.characters[player_id].first_hidden_index()
            assert engine.reveal_characteristic(code, player_id, index)
    return _reveal_all


@pytest.fixture
def to_voting(engine, reveal_all):
    """Reveal for everyone, then have the host open voting."""
    def _to_voting(code):
        reveal_all(code)
        room = engine.get_room(code)
        assert room.phase == 'discussion'
        assert engine.advance_phase(code, room.host_id)
        assert room.phase == 'voting'
    return _to_voting


@pytest.fixture
def cast(engine):
    """Submit a ballot map of voter -> target id (None to skip)."""
    def _cast(code, ballots):
        for voter, target in ballots.items():
            result = engine.submit_vote(code, voter, target)
            assert result, result.error_message
    return _cast
