"""
State serialization and sanitization utilities.
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from .constants import CATEGORY_KEYS, CATEGORY_NAMES
from .models import (
    AbilityActivation, ActiveAbility, CharacterCard, Mission, RevealedCharacteristic,
    RoomState, VoteResult
)


def sanitize_state(state: RoomState, viewer_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the public projection of a room.

    Args:
        state: Room state to project
        viewer_id: Player viewing the state; only they get their own card

    Returns:
        Plain dictionary safe for JSON transmission. Hidden card contents of
        other players never appear in it.
    """
    sanitized = {
        "room_code": state.code,
        "version": state.version,
        "phase": state.phase,
        "round": state.round,
        "host_id": state.host_id,
        "game_started": state.game_started,
        "game_ended": state.game_ended,
        "selected_mission": serialize_mission(state.selected_mission) if state.selected_mission else None,
        "eliminated_players": state.eliminated_players.copy(),
        "strike_team_size": state.strike_team_size,
        "target_survivors": state.target_survivors,
        "consecutive_skips": state.consecutive_skips,
        "players": [],
        "revealed_characteristics": [
            serialize_revealed(r) for r in state.revealed_characteristics
        ],
        "last_vote_result": serialize_vote_result(state.last_vote_result),
        "ability_log": [serialize_activation(a) for a in state.used_abilities],
        "epilogue": state.epilogue,
        "is_generating_epilogue": state.is_generating_epilogue,
    }

    for player_id, player in state.players.items():
        sanitized["players"].append({
            "id": player.id,
            "name": player.name,
            "role": player.role,
            "connected": player.connected,
            "eliminated": player_id in state.eliminated_players,
            "has_revealed": player.has_revealed,
            "revealed_category": player.revealed_category,
            "has_voted": player.has_voted,
            "ready_to_vote": player.ready_to_vote,
        })

    # Full card and abilities only for the viewer
    if viewer_id and viewer_id in state.players:
        character = state.characters.get(viewer_id)
        sanitized["you"] = {
            "player_id": viewer_id,
            "character": serialize_character(character) if character else None,
            "abilities": [
                serialize_ability(a) for a in state.active_abilities.get(viewer_id, [])
            ],
        }

    return sanitized


def serialize_character(card: CharacterCard) -> List[Dict[str, Any]]:
    """Every category of a card, in index order."""
    categories = []
    for index, (key, name) in enumerate(zip(CATEGORY_KEYS, CATEGORY_NAMES)):
        characteristic = card.category(index)
        value = characteristic.value
        categories.append({
            "index": index,
            "key": key,
            "name": name,
            "revealed": characteristic.revealed,
            "value": list(value) if isinstance(value, list) else value,
        })
    return categories


def serialize_ability(ability: ActiveAbility) -> Dict[str, Any]:
    return asdict(ability)


def serialize_activation(activation: AbilityActivation) -> Dict[str, Any]:
    return asdict(activation)


def serialize_revealed(revealed: Optional[RevealedCharacteristic]) -> Optional[Dict[str, Any]]:
    if revealed is None:
        return None
    return asdict(revealed)


def serialize_vote_result(result: Optional[VoteResult]) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    return {
        "eliminated_id": result.eliminated_id,
        "vote_counts": [[target, count] for target, count in result.vote_counts],
        "tie": result.tie,
        "skip_votes": result.skip_votes,
        "total_votes": result.total_votes,
    }


def serialize_mission(mission: Mission) -> Dict[str, Any]:
    return asdict(mission)
