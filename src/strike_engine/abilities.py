"""
Ability catalogue, detection, validation and effect application.
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .constants import (
    ABILITY_PHASES, HEALTHY_STATE, SUPPRESSED_TECHNIQUE, CATEGORY_NAMES, format_value
)
from .errors import (
    ABILITY_UNAVAILABLE, INVALID_TARGET, NOT_FOUND, ActionResult
)
from .models import (
    AbilityActivation, ActiveAbility, CharacterCard, RevealedCharacteristic, RoomState
)

logger = logging.getLogger(__name__)


class AbilityEffect(str, Enum):
    """Closed set of ability effect kinds."""
    HEAL_SELF = "heal_self"
    HEAL_OTHER = "heal_other"
    BLOCK_TECHNIQUE = "block_technique"
    BLOCK_VOTE = "block_vote"
    REVEAL_INFO = "reveal_info"
    RESURRECT = "resurrect"
    DOUBLE_VOTE_DAMAGE = "double_vote_damage"
    PROTECT_SELF = "protect_self"
    REFLECT_VOTE = "reflect_vote"


@dataclass(frozen=True)
class AbilityDefinition:
    name: str
    description: str
    effect: AbilityEffect
    required_attribute: str
    attribute_category: str  # general_techniques | tools | special_traits
    requires_target: bool
    max_uses: int = 1


CATALOGUE: List[AbilityDefinition] = [
    AbilityDefinition(
        name='Healing',
        description='Restore any player to the "Healthy" state',
        effect=AbilityEffect.HEAL_OTHER,
        required_attribute='Reverse Cursed Technique Output',
        attribute_category='general_techniques',
        requires_target=True,
    ),
    AbilityDefinition(
        name='Self-Regeneration',
        description='Restore yourself to the "Healthy" state',
        effect=AbilityEffect.HEAL_SELF,
        required_attribute='Reverse Cursed Technique (Self Only)',
        attribute_category='general_techniques',
        requires_target=False,
    ),
    AbilityDefinition(
        name='Technique Suppression',
        description="Nullify any player's cursed technique",
        effect=AbilityEffect.BLOCK_TECHNIQUE,
        required_attribute='Inverted Spear of Heaven',
        attribute_category='tools',
        requires_target=True,
    ),
    AbilityDefinition(
        name='Binding',
        description='Stop one player from voting this round',
        effect=AbilityEffect.BLOCK_VOTE,
        required_attribute='Chain of a Thousand Miles',
        attribute_category='tools',
        requires_target=True,
    ),
    AbilityDefinition(
        name='All-Seeing Gaze',
        description="Privately see one of a player's hidden characteristics",
        effect=AbilityEffect.REVEAL_INFO,
        required_attribute='Six Eyes',
        attribute_category='special_traits',
        requires_target=True,
    ),
    AbilityDefinition(
        name='Reincarnation',
        description='Come back at full health the first time you are voted out',
        effect=AbilityEffect.RESURRECT,
        required_attribute='Reincarnated Sorcerer',
        attribute_category='special_traits',
        requires_target=False,
    ),
    AbilityDefinition(
        name='Critical Strike',
        description='Votes against the chosen player count double this round',
        effect=AbilityEffect.DOUBLE_VOTE_DAMAGE,
        required_attribute='Black Flash',
        attribute_category='general_techniques',
        requires_target=True,
    ),
    AbilityDefinition(
        name='Protective Domain',
        description='You cannot be voted out this round',
        effect=AbilityEffect.PROTECT_SELF,
        required_attribute='Domain Expansion',
        attribute_category='general_techniques',
        requires_target=False,
    ),
    AbilityDefinition(
        name='Reflection',
        description="The chosen player's vote lands on themselves this round",
        effect=AbilityEffect.REFLECT_VOTE,
        required_attribute='Dragon-Bone',
        attribute_category='tools',
        requires_target=True,
    ),
]


def detect_abilities(character: CharacterCard, max_uses: Optional[int] = None) -> List[ActiveAbility]:
    """
    Grant every catalogue ability whose required attribute the card carries.

    Args:
        character: The player's freshly generated card
        max_uses: Override for the catalogue's per-ability use count

    Returns:
        New ActiveAbility instances, each with a unique id and full uses
    """
    abilities = []
    for definition in CATALOGUE:
        value = getattr(character, definition.attribute_category).value
        if isinstance(value, list) and definition.required_attribute in value:
            uses = max_uses if max_uses is not None else definition.max_uses
            abilities.append(ActiveAbility(
                id=f"{definition.effect.value}_{uuid.uuid4().hex[:8]}",
                name=definition.name,
                description=definition.description,
                effect=definition.effect.value,
                required_attribute=definition.required_attribute,
                attribute_category=definition.attribute_category,
                requires_target=definition.requires_target,
                max_uses=uses,
                uses_remaining=uses,
            ))
    return abilities


def find_ability(room: RoomState, player_id: str, ability_id: str) -> Optional[ActiveAbility]:
    for ability in room.active_abilities.get(player_id, []):
        if ability.id == ability_id:
            return ability
    return None


def validate_usage(
    room: RoomState,
    player_id: str,
    ability_id: str,
    target_id: Optional[str] = None
) -> ActionResult:
    """
    Check whether a player may activate one of their abilities right now.

    Fails closed: the first failing check decides the reason.
    """
    if player_id not in room.players:
        return ActionResult.error(NOT_FOUND, "Player not found")
    if player_id in room.eliminated_players:
        return ActionResult.error(ABILITY_UNAVAILABLE, "Eliminated players cannot use abilities")

    ability = find_ability(room, player_id, ability_id)
    if ability is None:
        return ActionResult.error(ABILITY_UNAVAILABLE, "Ability not found")
    if ability.uses_remaining <= 0:
        return ActionResult.error(ABILITY_UNAVAILABLE, "Ability already used")

    if ability.requires_target and not target_id:
        return ActionResult.error(INVALID_TARGET, "This ability requires a target")
    if target_id:
        if target_id not in room.players:
            return ActionResult.error(NOT_FOUND, "Target not found")
        # resurrect acts after an elimination, so an eliminated target is fine
        if ability.effect != AbilityEffect.RESURRECT and target_id in room.eliminated_players:
            return ActionResult.error(INVALID_TARGET, "Target has been eliminated")

    if room.phase not in ABILITY_PHASES:
        return ActionResult.error(
            ABILITY_UNAVAILABLE,
            "Abilities can only be used during reveal, discussion or voting"
        )

    if ability.effect == AbilityEffect.RESURRECT:
        return ActionResult.error(
            ABILITY_UNAVAILABLE,
            "Reincarnation triggers on its own when you are voted out"
        )

    return ActionResult.ok(ability=ability)


def _heal_self(room: RoomState, player_id: str, target_id: Optional[str]) -> ActionResult:
    room.characters[player_id].current_state.value = HEALTHY_STATE
    return ActionResult.ok(message=f'State restored to "{HEALTHY_STATE}"')


def _heal_other(room: RoomState, player_id: str, target_id: Optional[str]) -> ActionResult:
    room.characters[target_id].current_state.value = HEALTHY_STATE
    return ActionResult.ok(
        message=f'{room.players[target_id].name} restored to "{HEALTHY_STATE}"'
    )


def _block_technique(room: RoomState, player_id: str, target_id: Optional[str]) -> ActionResult:
    room.characters[target_id].cursed_technique.value = SUPPRESSED_TECHNIQUE
    return ActionResult.ok(
        message=f"{room.players[target_id].name}'s cursed technique is suppressed"
    )


def _block_vote(room: RoomState, player_id: str, target_id: Optional[str]) -> ActionResult:
    room.blocked_votes.add(target_id)
    return ActionResult.ok(
        message=f"{room.players[target_id].name} cannot vote this round"
    )


def _reveal_info(room: RoomState, player_id: str, target_id: Optional[str]) -> ActionResult:
    character = room.characters[target_id]
    index = character.first_hidden_index()
    if index is None:
        return ActionResult.ok(
            message=f"{room.players[target_id].name} has nothing left to hide",
            disclosure=None
        )
    disclosure = RevealedCharacteristic(
        player_id=target_id,
        category_index=index,
        category_name=CATEGORY_NAMES[index],
        value=format_value(character.category(index).value),
        round=room.round,
    )
    return ActionResult.ok(
        message=f"You glimpse {room.players[target_id].name}'s {CATEGORY_NAMES[index]}",
        disclosure=disclosure
    )


def _resurrect(room: RoomState, player_id: str, target_id: Optional[str]) -> ActionResult:
    room.characters[player_id].current_state.value = HEALTHY_STATE
    return ActionResult.ok(
        message=f"{room.players[player_id].name} is reincarnated at full health"
    )


def _double_vote_damage(room: RoomState, player_id: str, target_id: Optional[str]) -> ActionResult:
    room.double_vote_damage[target_id] = player_id
    return ActionResult.ok(
        message=f"Votes against {room.players[target_id].name} count double this round"
    )


def _protect_self(room: RoomState, player_id: str, target_id: Optional[str]) -> ActionResult:
    room.protected_players.add(player_id)
    return ActionResult.ok(
        message=f"{room.players[player_id].name} is protected from elimination this round"
    )


def _reflect_vote(room: RoomState, player_id: str, target_id: Optional[str]) -> ActionResult:
    room.reflected_votes[target_id] = player_id
    return ActionResult.ok(
        message=f"{room.players[target_id].name}'s vote will be reflected"
    )


EFFECT_HANDLERS: Dict[AbilityEffect, Callable[[RoomState, str, Optional[str]], ActionResult]] = {
    AbilityEffect.HEAL_SELF: _heal_self,
    AbilityEffect.HEAL_OTHER: _heal_other,
    AbilityEffect.BLOCK_TECHNIQUE: _block_technique,
    AbilityEffect.BLOCK_VOTE: _block_vote,
    AbilityEffect.REVEAL_INFO: _reveal_info,
    AbilityEffect.RESURRECT: _resurrect,
    AbilityEffect.DOUBLE_VOTE_DAMAGE: _double_vote_damage,
    AbilityEffect.PROTECT_SELF: _protect_self,
    AbilityEffect.REFLECT_VOTE: _reflect_vote,
}


def _record_activation(
    room: RoomState,
    ability: ActiveAbility,
    player_id: str,
    target_id: Optional[str]
) -> AbilityActivation:
    ability.uses_remaining -= 1
    activation = AbilityActivation(
        ability_id=ability.id,
        ability_name=ability.name,
        player_id=player_id,
        player_name=room.players[player_id].name,
        round=room.round,
        target_id=target_id,
        target_name=room.players[target_id].name if target_id in room.players else None,
    )
    room.used_abilities.append(activation)
    return activation


def apply_effect(
    room: RoomState,
    player_id: str,
    ability: ActiveAbility,
    target_id: Optional[str] = None
) -> ActionResult:
    """
    Apply a validated ability against the room.

    Mutates only the overlay or card field the effect owns, spends one use
    and appends one activation record.

    Args:
        room: Room being mutated (caller holds its lock)
        player_id: Caster
        ability: Ability returned by validate_usage
        target_id: Target player, if the ability takes one

    Returns:
        ActionResult carrying a message, the activation and, for
        reveal_info, a private disclosure
    """
    handler = EFFECT_HANDLERS[AbilityEffect(ability.effect)]
    result = handler(room, player_id, target_id)
    if not result.success:
        return result
    result.data['activation'] = _record_activation(room, ability, player_id, target_id)
    logger.info(
        f"[{room.code}] {room.players[player_id].name} used {ability.name}"
        f" (target={target_id}, uses left={ability.uses_remaining})"
    )
    return result


def trigger_resurrect(room: RoomState, player_id: str) -> Optional[AbilityActivation]:
    """
    Spend a pending reincarnation held by a player about to be eliminated.

    Returns the activation if the elimination is cancelled, otherwise None.
    """
    for ability in room.active_abilities.get(player_id, []):
        if ability.effect == AbilityEffect.RESURRECT and ability.uses_remaining > 0:
            _resurrect(room, player_id, None)
            activation = _record_activation(room, ability, player_id, None)
            logger.info(f"[{room.code}] {room.players[player_id].name} reincarnated")
            return activation
    return None
