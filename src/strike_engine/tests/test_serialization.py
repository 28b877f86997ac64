"""
Tests for the per-viewer room projection.
"""

import orjson
from factories import make_card

from strike_engine.constants import CATEGORY_KEYS
from strike_engine.serialization import sanitize_state, serialize_character


def secret_cards():
    return [
        make_card(special_traits=[f"Hidden Trait {i}"], weaknesses=[f"Hidden Weakness {i}"])
        for i in range(4)
    ]


def test_projection_hides_other_players_cards(engine, game):
    code, ids = game(cards=secret_cards())

    state = engine.get_projection(code, ids[0]).data['state']
    payload = orjson.dumps(state).decode()

    assert "Hidden Trait 0" in payload
    for i in range(1, 4):
        assert f"Hidden Trait {i}" not in payload
        assert f"Hidden Weakness {i}" not in payload


def test_projection_without_viewer_has_no_private_view(engine, game):
    code, _ = game(cards=secret_cards())

    state = engine.get_projection(code).data['state']

    assert 'you' not in state
    assert "Hidden Trait" not in orjson.dumps(state).decode()


def test_viewer_sees_full_own_card_and_abilities(engine, game):
    code, ids = game(cards=[make_card(general_techniques=['Domain Expansion'])])

    you = engine.get_projection(code, ids[0]).data['state']['you']

    assert you['player_id'] == ids[0]
    assert [c['key'] for c in you['character']] == CATEGORY_KEYS
    assert you['character'][3]['value'] == ['Domain Expansion']
    assert not any(c['revealed'] for c in you['character'])
    assert [a['effect'] for a in you['abilities']] == ['protect_self']


def test_revealed_values_are_public(engine, game):
    code, ids = game(cards=secret_cards())
    assert engine.reveal_characteristic(code, ids[1], 7)

    state = engine.get_projection(code, ids[0]).data['state']

    revealed = state['revealed_characteristics']
    assert len(revealed) == 1
    assert revealed[0]['player_id'] == ids[1]
    assert revealed[0]['category_name'] == 'Special Traits'
    assert revealed[0]['value'] == "Hidden Trait 1"
    # Other hidden categories of the same card stay hidden
    assert "Hidden Weakness 1" not in orjson.dumps(state).decode()


def test_projection_player_rows(engine, game, to_voting, cast):
    code, ids = game()
    to_voting(code)
    cast(code, {ids[0]: ids[3]})

    state = engine.get_projection(code, ids[1]).data['state']

    assert state['phase'] == 'voting'
    assert state['round'] == 1
    assert state['strike_team_size'] == 3
    rows = {p['id']: p for p in state['players']}
    assert rows[ids[0]]['role'] == 'host'
    assert rows[ids[0]]['has_voted']
    assert not rows[ids[1]]['has_voted']
    # Ballot targets are not broadcast before the tally
    assert 'votes' not in state


def test_serialize_character_flattens_lists():
    card = make_card(tools=['Playful Cloud'])
    card.tools.revealed = True

    entries = serialize_character(card)

    assert entries[4] == {
        'index': 4, 'key': 'tools', 'name': 'Cursed Tools', 'revealed': True, 'value': ['Playful Cloud']
    }


def test_sanitize_lobby_room(engine):
    code = engine.create_room("Alice").data['room_code']
    room = engine.get_room(code)

    state = sanitize_state(room, room.host_id)

    assert state['phase'] == 'lobby'
    assert state['selected_mission'] is None
    assert state['you']['character'] is None
    assert state['last_vote_result'] is None
