"""Game models and data structures"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Union

from .constants import CATEGORY_KEYS, PHASE_LOBBY, ROLE_PARTICIPANT

Value = Union[str, List[str]]


@dataclass
class Characteristic:
    value: Value
    revealed: bool = False


@dataclass
class CharacterCard:
    rank: Characteristic
    cursed_technique: Characteristic
    energy_level: Characteristic
    general_techniques: Characteristic
    tools: Characteristic
    strengths: Characteristic
    weaknesses: Characteristic
    special_traits: Characteristic
    current_state: Characteristic

    def category(self, index: int) -> Characteristic:
        return getattr(self, CATEGORY_KEYS[index])

    def categories(self) -> List[Characteristic]:
        return [getattr(self, key) for key in CATEGORY_KEYS]

    def first_hidden_index(self) -> Optional[int]:
        for index, characteristic in enumerate(self.categories()):
            if not characteristic.revealed:
                return index
        return None

    @classmethod
    def from_values(cls, **values) -> 'CharacterCard':
        """Build a card with every category hidden."""
        return cls(**{key: Characteristic(value=values[key]) for key in CATEGORY_KEYS})


@dataclass
class Player:
    id: str
    name: str
    role: str = ROLE_PARTICIPANT  # host | participant
    connected: bool = True
    has_revealed: bool = False
    revealed_category: Optional[int] = None
    has_voted: bool = False
    vote_target: Optional[str] = None
    ready_to_vote: bool = False
    # Left mid-game; kept for counts and history but no longer waited on
    left: bool = False
    rejoin_token: str = ''


@dataclass
class ActiveAbility:
    id: str
    name: str
    description: str
    effect: str
    required_attribute: str
    attribute_category: str
    requires_target: bool
    max_uses: int
    uses_remaining: int


@dataclass
class AbilityActivation:
    ability_id: str
    ability_name: str
    player_id: str
    player_name: str
    round: int
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class RevealedCharacteristic:
    player_id: str
    category_index: int
    category_name: str
    value: str
    round: int


@dataclass
class VoteResult:
    eliminated_id: Optional[str]
    vote_counts: List[tuple]  # [(target_id, weighted count)] in first-vote order
    tie: bool
    skip_votes: int = 0
    total_votes: int = 0


@dataclass
class RoundHistory:
    round: int
    eliminated_player_id: Optional[str]
    revealed_characteristics: List[RevealedCharacteristic] = field(default_factory=list)
    skipped: bool = False


@dataclass
class Mission:
    id: str
    name: str
    description: str
    threat: str
    objectives: List[str] = field(default_factory=list)
    danger_factors: List[str] = field(default_factory=list)
    difficulty: str = 'Medium'  # Easy | Medium | Hard | Extreme
    is_custom: bool = False
    created_at: Optional[str] = None
    created_by: Optional[str] = None


@dataclass
class RoomState:
    code: str
    host_id: str
    version: int = 0
    phase: str = PHASE_LOBBY  # lobby|briefing|reveal|discussion|voting|round_end|complete
    round: int = 0
    players: Dict[str, Player] = field(default_factory=dict)
    game_started: bool = False
    game_ended: bool = False
    selected_mission: Optional[Mission] = None
    eliminated_players: List[str] = field(default_factory=list)
    strike_team_size: int = 0
    target_survivors: int = 3
    characters: Dict[str, CharacterCard] = field(default_factory=dict)
    revealed_characteristics: List[RevealedCharacteristic] = field(default_factory=list)
    votes: Dict[str, str] = field(default_factory=dict)  # voter -> target id | SKIP
    last_vote_result: Optional[VoteResult] = None
    consecutive_skips: int = 0
    round_history: List[RoundHistory] = field(default_factory=list)
    # Abilities
    active_abilities: Dict[str, List[ActiveAbility]] = field(default_factory=dict)
    used_abilities: List[AbilityActivation] = field(default_factory=list)
    # Per-round overlays, cleared when a new round begins
    blocked_votes: Set[str] = field(default_factory=set)
    reflected_votes: Dict[str, str] = field(default_factory=dict)  # target -> reflector
    protected_players: Set[str] = field(default_factory=set)
    double_vote_damage: Dict[str, str] = field(default_factory=dict)  # target -> caster
    # Epilogue
    epilogue: Optional[str] = None
    is_generating_epilogue: bool = False
    # Housekeeping
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    pending_timer: Optional[Any] = None

    def active_player_ids(self) -> List[str]:
        return [pid for pid in self.players if pid not in self.eliminated_players]

    def active_players(self) -> List[Player]:
        return [p for pid, p in self.players.items() if pid not in self.eliminated_players]

    def acting_players(self) -> List[Player]:
        """Active players the phase completion checks wait for."""
        return [p for p in self.active_players() if not p.left]

    def is_active(self, player_id: str) -> bool:
        return player_id in self.players and player_id not in self.eliminated_players

    def remaining_players(self) -> int:
        return len(self.players) - len(self.eliminated_players)

    def clear_overlays(self) -> None:
        self.blocked_votes.clear()
        self.reflected_votes.clear()
        self.protected_players.clear()
        self.double_vote_damage.clear()

    def touch(self) -> None:
        self.version += 1
        self.last_activity = time.time()
