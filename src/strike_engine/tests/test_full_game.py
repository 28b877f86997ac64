"""
End-to-end game scenarios driven through the engine's public operations.
"""

from factories import FixedCharacters

from strike_engine.constants import PHASE_BRIEFING, PHASE_COMPLETE, PHASE_DISCUSSION, PHASE_REVEAL
from strike_engine.engine import StrikeEngine
from strike_engine.rules import create_rules


def test_four_player_game_to_completion(missions):
    """Four players, three survivors wanted: one elimination ends the game."""
    engine = StrikeEngine(
        rules=create_rules(tally_delay=0),
        character_factory=FixedCharacters(),
        missions=missions
    )
    changes = []
    engine.add_listener(changes.append)

    created = engine.create_room("Alice")
    code = created.data['room_code']
    alice = created.data['player_id']
    bob = engine.join_room(code, "Bob").data['player_id']
    carol = engine.join_room(code, "Carol").data['player_id']
    dave = engine.join_room(code, "Dave").data['player_id']
    players = [alice, bob, carol, dave]

    assert engine.select_mission(code, alice, 'detention_center')
    assert engine.set_target_survivors(code, alice, 3)
    assert engine.start_game(code, alice)
    room = engine.get_room(code)
    assert room.phase == PHASE_BRIEFING
    assert room.round == 1

    assert engine.advance_phase(code, alice)
    assert room.phase == PHASE_REVEAL

    # Round 1: everyone reveals one category
    for index, player_id in enumerate(players):
        assert engine.reveal_characteristic(code, player_id, index)
    assert room.phase == PHASE_DISCUSSION

    for player_id in players:
        assert engine.toggle_ready(code, player_id)
    assert room.phase == 'voting'

    # Three votes against Dave, one skip
    assert engine.submit_vote(code, alice, dave)
    assert engine.submit_vote(code, bob, dave)
    assert engine.submit_vote(code, carol, dave)
    assert engine.submit_vote(code, dave, None)
    assert room.phase == 'round_end'
    assert room.last_vote_result.eliminated_id == dave
    assert not room.last_vote_result.tie

    result = engine.next_round(code, alice)

    assert result.data['eliminated_id'] == dave
    assert result.data['game_ended']
    assert room.eliminated_players == [dave]
    assert room.remaining_players() == 3 == room.target_survivors
    assert room.phase == PHASE_COMPLETE
    for player_id in players:
        assert all(c.revealed for c in room.characters[player_id].categories())

    stats = engine.get_game_stats(code).data
    assert stats['strike_team'] == [alice, bob, carol]
    assert stats['mission'] == 'Eishu Juvenile Detention Center'

    phases = [c.data['to'] for c in changes if c.kind == 'phase_changed']
    assert phases == ['briefing', 'reveal', 'discussion', 'voting', 'round_end', 'complete']


def test_multi_round_game_with_skips(missions):
    """Five players down to two survivors over several rounds."""
    engine = StrikeEngine(
        rules=create_rules(tally_delay=0),
        character_factory=FixedCharacters(),
        missions=missions
    )
    created = engine.create_room("Host")
    code = created.data['room_code']
    players = [created.data['player_id']]
    for name in ("Bob", "Carol", "Dave", "Erin"):
        players.append(engine.join_room(code, name).data['player_id'])
    host = players[0]
    engine.select_mission(code, host, 'kyoto_goodwill')
    engine.set_target_survivors(code, host, 2)
    engine.start_game(code, host)
    engine.advance_phase(code, host)
    room = engine.get_room(code)

    def play_round(ballots):
        for player_id in room.active_player_ids():
            engine.reveal_characteristic(code, player_id, room.characters[player_id].first_hidden_index())
        engine.advance_phase(code, host)
        for voter, target in ballots.items():
            assert engine.submit_vote(code, voter, target)
        return engine.next_round(code, host)

    # Round 1: everyone skips
    result = play_round({p: None for p in players})
    assert result.data['eliminated_id'] is None
    assert room.consecutive_skips == 1

    # Round 2: Erin goes
    result = play_round({
        players[0]: players[4], players[1]: players[4], players[2]: players[4],
        players[3]: players[4], players[4]: players[0],
    })
    assert result.data['eliminated_id'] == players[4]
    assert room.consecutive_skips == 0

    # Round 3: Dave goes
    result = play_round({
        players[0]: players[3], players[1]: players[3], players[2]: players[3], players[3]: players[0],
    })
    assert result.data['eliminated_id'] == players[3]
    assert not result.data['game_ended']

    # Round 4: Carol goes and two remain
    result = play_round({players[0]: players[2], players[1]: players[2], players[2]: players[0]})
    assert result.data['game_ended']
    assert room.eliminated_players == [players[4], players[3], players[2]]
    assert room.round == 4
    assert [h.eliminated_player_id for h in room.round_history] == [None, players[4], players[3], players[2]]
    assert room.round_history[0].skipped
