"""Session state machine: rooms, phases, reveals, votes and abilities"""

import logging
import secrets
import threading
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .abilities import apply_effect, detect_abilities, trigger_resurrect, validate_usage
from .characters import CharacterGenerator
from .constants import (
    CATEGORY_KEYS, CATEGORY_NAMES, MANUAL_ADVANCE, PHASE_BRIEFING, PHASE_COMPLETE,
    PHASE_DISCUSSION, PHASE_LOBBY, PHASE_REVEAL, PHASE_ROUND_END, PHASE_VOTING,
    ROLE_HOST, ROLE_PARTICIPANT, SKIP, format_value
)
from .directory import RoomDirectory
from .errors import (
    ALREADY_ACTED, CAPACITY, FORBIDDEN, INTERNAL_ERROR, INVALID_PHASE, INVALID_TARGET,
    NOT_FOUND, ActionResult, GameError
)
from .models import Player, RevealedCharacteristic, RoomState, RoundHistory
from .narrative import EpilogueGenerator, MissionSummary, NarrativeError
from .rules import RuleConfig, default_rules
from .serialization import sanitize_state, serialize_ability, serialize_character
from .voting import tally_votes, validate_ballot

logger = logging.getLogger(__name__)


@dataclass
class StateChange:
    """Notification emitted after a room mutation has been committed."""
    room_code: str
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[StateChange], None]


class StrikeEngine:
    def __init__(
        self,
        rules: RuleConfig = default_rules,
        character_factory=None,
        missions=None,
        rng=None
    ):
        self.rules = rules
        self.directory = RoomDirectory(rules, rng)
        self.character_factory = character_factory or CharacterGenerator()
        self.missions = missions
        self.listeners: List[Listener] = []
        self.epilogue_locks = defaultdict(threading.Lock)
        self._epilogue_registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def _emit(self, changes: List[StateChange]) -> None:
        for change in changes:
            for listener in list(self.listeners):
                try:
                    listener(change)
                except Exception as e:
                    logger.error(f"State change listener failed for {change.room_code}: {e}")

    def _commit(self, room: RoomState, kind: str, phase_before: str, **data) -> List[StateChange]:
        """Bump the room version and describe what changed; caller holds the room lock."""
        room.touch()
        changes = [StateChange(room.code, kind, data)]
        if room.phase != phase_before:
            changes.append(StateChange(room.code, 'phase_changed', {
                'from': phase_before,
                'to': room.phase,
                'round': room.round,
            }))
        return changes

    def _epilogue_lock_for(self, code: str) -> threading.Lock:
        with self._epilogue_registry_lock:
            return self.epilogue_locks[code]

    def _drop_epilogue_lock(self, code: str) -> None:
        with self._epilogue_registry_lock:
            self.epilogue_locks.pop(code, None)

    def get_room(self, code: str) -> Optional[RoomState]:
        return self.directory.get(code)

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------

    def create_room(self, host_name: str) -> ActionResult:
        host_name = (host_name or '').strip()
        if not host_name:
            return ActionResult.error(INVALID_TARGET, "Name cannot be empty")

        player_id = str(uuid.uuid4())[:8]
        try:
            room = self.directory.create(player_id)
        except GameError as e:
            logger.warning(f"Room creation refused: {e.message}")
            return ActionResult.error(e.code, e.message)

        with self.directory.lock_for(room.code):
            token = secrets.token_urlsafe(16)
            room.players[player_id] = Player(
                id=player_id, name=host_name, role=ROLE_HOST, rejoin_token=token
            )
            changes = self._commit(room, 'room_created', room.phase, player_id=player_id)
        self._emit(changes)
        logger.info(f"[{room.code}] {host_name} ({player_id}) created the room")
        return ActionResult.ok(room_code=room.code, player_id=player_id, rejoin_token=token)

    def join_room(self, code: str, name: str) -> ActionResult:
        name = (name or '').strip()
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            if room.game_started:
                return ActionResult.error(INVALID_PHASE, "Game already started")
            if len(room.players) >= self.rules.max_players:
                return ActionResult.error(CAPACITY, "Room is full")
            if not name:
                return ActionResult.error(INVALID_TARGET, "Name cannot be empty")
            if any(p.name == name for p in room.players.values()):
                return ActionResult.error(ALREADY_ACTED, "Name already taken")

            player_id = str(uuid.uuid4())[:8]
            token = secrets.token_urlsafe(16)
            room.players[player_id] = Player(id=player_id, name=name, rejoin_token=token)
            changes = self._commit(room, 'player_joined', room.phase, player_id=player_id)
        self._emit(changes)
        logger.info(f"[{code}] {name} ({player_id}) joined, {len(room.players)} players")
        return ActionResult.ok(room_code=code, player_id=player_id, rejoin_token=token)

    def leave_room(self, code: str, player_id: str) -> ActionResult:
        """
        Remove a player from the lobby, or mark them gone once the game runs.

        Once the game has started the player stays keyed in ``players`` so the
        population count never changes; they are flagged as left and the
        reveal, ready and ballot checks stop waiting for them. The room is
        deleted when nobody connected is left.
        """
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            player = room.players.get(player_id)
            if not player:
                return ActionResult.error(NOT_FOUND, "Player not found")

            phase_before = room.phase
            if room.game_started:
                player.connected = False
                player.left = True
                remaining = [p for p in room.players.values() if p.connected]
            else:
                del room.players[player_id]
                remaining = list(room.players.values())

            if not remaining:
                self.directory.delete(code)
                changes = [StateChange(code, 'room_deleted', {'player_id': player_id})]
                room_deleted = True
            else:
                if room.host_id == player_id:
                    self._migrate_host(room, player, remaining)
                if room.game_started:
                    self._settle_phase(room)
                changes = self._commit(room, 'player_left', phase_before, player_id=player_id)
                room_deleted = False
        if room_deleted:
            self._drop_epilogue_lock(code)
        self._emit(changes)
        logger.info(f"[{code}] {player.name} ({player_id}) left" + (", room closed" if room_deleted else ""))
        return ActionResult.ok(room_deleted=room_deleted, host_id=None if room_deleted else room.host_id)

    def _migrate_host(self, room: RoomState, old_host: Player, candidates: List[Player]) -> None:
        # Insertion order of the room's own player mapping decides
        new_host = next(
            (p for p in candidates if room.is_active(p.id)),
            candidates[0]
        )
        old_host.role = ROLE_PARTICIPANT
        new_host.role = ROLE_HOST
        room.host_id = new_host.id
        logger.info(f"[{room.code}] Host passed from {old_host.name} to {new_host.name}")

    def set_connected(self, code: str, player_id: str, connected: bool) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            player = room.players.get(player_id)
            if not player:
                return ActionResult.error(NOT_FOUND, "Player not found")
            if connected and player.left:
                return ActionResult.error(FORBIDDEN, "Player has left the game")
            if player.connected == connected:
                return ActionResult.ok(connected=connected)
            player.connected = connected
            changes = self._commit(
                room, 'connection_changed', room.phase, player_id=player_id, connected=connected
            )
        self._emit(changes)
        return ActionResult.ok(connected=connected)

    def rejoin_room(self, code: str, player_id: str, token: str) -> ActionResult:
        """Reattach a disconnected player who proves their seat with the token from create/join."""
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            player = room.players.get(player_id)
            if not player:
                return ActionResult.error(NOT_FOUND, "Player not found")
            if not token or not secrets.compare_digest(player.rejoin_token, token):
                return ActionResult.error(FORBIDDEN, "Invalid rejoin token")
            if player.left:
                return ActionResult.error(FORBIDDEN, "Player has left the game")

            player.connected = True
            changes = self._commit(room, 'player_rejoined', room.phase, player_id=player_id)
        self._emit(changes)
        logger.info(f"[{code}] {player.name} ({player_id}) rejoined")
        return ActionResult.ok(room_code=code, player_id=player_id)

    def _check_host(self, room: RoomState, caller_id: str) -> Optional[ActionResult]:
        if caller_id not in room.players:
            return ActionResult.error(NOT_FOUND, "Player not found")
        if room.host_id != caller_id:
            return ActionResult.error(FORBIDDEN, "Only the host can do that")
        return None

    def select_mission(self, code: str, caller_id: str, mission_id: str) -> ActionResult:
        # Content lookup happens outside the room lock
        mission = self.missions.get_mission(mission_id) if self.missions else None

        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            denied = self._check_host(room, caller_id)
            if denied:
                return denied
            if room.phase != PHASE_LOBBY:
                return ActionResult.error(INVALID_PHASE, "Mission can only be chosen in the lobby")
            if mission is None:
                return ActionResult.error(NOT_FOUND, "Mission not found")

            room.selected_mission = mission
            changes = self._commit(room, 'mission_selected', room.phase, mission_id=mission.id)
        self._emit(changes)
        logger.info(f"[{code}] Mission '{mission.name}' selected")
        return ActionResult.ok(mission_id=mission.id)

    def set_target_survivors(self, code: str, caller_id: str, target: int) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            denied = self._check_host(room, caller_id)
            if denied:
                return denied
            if room.game_started:
                return ActionResult.error(INVALID_PHASE, "Game already started")
            if not 1 <= target < len(room.players):
                return ActionResult.error(
                    CAPACITY,
                    f"Survivor target must be between 1 and {len(room.players) - 1}"
                )

            room.target_survivors = target
            changes = self._commit(room, 'target_survivors_set', room.phase, target_survivors=target)
        self._emit(changes)
        return ActionResult.ok(target_survivors=target)

    def start_game(self, code: str, caller_id: str) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            denied = self._check_host(room, caller_id)
            if denied:
                return denied
            if room.phase != PHASE_LOBBY:
                return ActionResult.error(INVALID_PHASE, "Game already started")
            if len(room.players) < self.rules.min_players:
                return ActionResult.error(
                    CAPACITY, f"Need at least {self.rules.min_players} players"
                )
            if room.selected_mission is None:
                return ActionResult.error(NOT_FOUND, "Select a mission first")

            for player_id in room.players:
                character = self.character_factory.generate()
                room.characters[player_id] = character
                room.active_abilities[player_id] = detect_abilities(
                    character, max_uses=self.rules.max_ability_uses
                )

            room.strike_team_size = room.target_survivors
            room.round = 1
            room.game_started = True
            room.eliminated_players = []
            room.consecutive_skips = 0
            phase_before = room.phase
            self._enter_phase(room, PHASE_BRIEFING)
            changes = self._commit(room, 'game_started', phase_before)
        self._emit(changes)
        granted = sum(len(a) for a in room.active_abilities.values())
        logger.info(f"[{code}] Game started with {len(room.players)} players, {granted} abilities granted")
        return ActionResult.ok(round=room.round)

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def _enter_phase(self, room: RoomState, phase: str) -> None:
        """Move to a phase and apply that phase's per-player reset."""
        if phase == PHASE_REVEAL:
            for player in room.active_players():
                player.has_revealed = False
                player.revealed_category = None
                player.ready_to_vote = False
        elif phase == PHASE_DISCUSSION:
            for player in room.active_players():
                player.ready_to_vote = False
        elif phase == PHASE_VOTING:
            room.votes.clear()
            for player in room.active_players():
                player.has_voted = False
                player.vote_target = None
        logger.info(f"[{room.code}] Phase {room.phase} -> {phase} (round {room.round})")
        room.phase = phase

    def _settle_phase(self, room: RoomState) -> None:
        """Take the automatic edge out of the current phase once nobody is left to wait for."""
        acting = room.acting_players()
        if room.phase == PHASE_REVEAL and all(p.has_revealed for p in acting):
            self._enter_phase(room, PHASE_DISCUSSION)
        elif room.phase == PHASE_DISCUSSION and all(p.ready_to_vote for p in acting):
            self._enter_phase(room, PHASE_VOTING)
        elif room.phase == PHASE_VOTING and room.pending_timer is None and self._all_ballots_in(room):
            self._schedule_tally(room)

    def advance_phase(self, code: str, caller_id: str) -> ActionResult:
        """Host-triggered move along a manual edge. Closing voting tallies the ballots cast so far."""
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            denied = self._check_host(room, caller_id)
            if denied:
                return denied
            next_phase = MANUAL_ADVANCE.get(room.phase)
            if next_phase is None:
                return ActionResult.error(
                    INVALID_PHASE, f"Phase {room.phase} cannot be advanced manually"
                )

            phase_before = room.phase
            if next_phase == PHASE_ROUND_END:
                self._cancel_timer(room)
                self._close_voting(room)
            else:
                self._enter_phase(room, next_phase)
            changes = self._commit(room, 'phase_advanced', phase_before, by=caller_id)
        self._emit(changes)
        return ActionResult.ok(phase=room.phase)

    def toggle_ready(self, code: str, player_id: str) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            player = room.players.get(player_id)
            if not player:
                return ActionResult.error(NOT_FOUND, "Player not found")
            if room.phase != PHASE_DISCUSSION:
                return ActionResult.error(INVALID_PHASE, "Not the discussion phase")
            if not room.is_active(player_id):
                return ActionResult.error(FORBIDDEN, "Eliminated players cannot vote")

            player.ready_to_vote = not player.ready_to_vote
            ready = player.ready_to_vote
            phase_before = room.phase
            self._settle_phase(room)
            changes = self._commit(room, 'ready_toggled', phase_before, player_id=player_id, ready=ready)
        self._emit(changes)
        return ActionResult.ok(ready=ready, phase=room.phase)

    # ------------------------------------------------------------------
    # Reveal
    # ------------------------------------------------------------------

    def reveal_characteristic(self, code: str, player_id: str, category_index: int) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            player = room.players.get(player_id)
            if not player:
                return ActionResult.error(NOT_FOUND, "Player not found")
            if room.phase != PHASE_REVEAL:
                return ActionResult.error(INVALID_PHASE, "Not the reveal phase")
            if not room.is_active(player_id):
                return ActionResult.error(FORBIDDEN, "Eliminated players cannot reveal")
            if player.has_revealed:
                return ActionResult.error(ALREADY_ACTED, "You already revealed this round")
            if not isinstance(category_index, int) or not 0 <= category_index < len(CATEGORY_KEYS):
                return ActionResult.error(INVALID_TARGET, "Unknown category")

            characteristic = room.characters[player_id].category(category_index)
            if characteristic.revealed:
                return ActionResult.error(ALREADY_ACTED, "That category is already revealed")

            characteristic.revealed = True
            player.has_revealed = True
            player.revealed_category = category_index
            revealed = RevealedCharacteristic(
                player_id=player_id,
                category_index=category_index,
                category_name=CATEGORY_NAMES[category_index],
                value=format_value(characteristic.value),
                round=room.round,
            )
            room.revealed_characteristics.append(revealed)

            phase_before = room.phase
            self._settle_phase(room)
            changes = self._commit(
                room, 'characteristic_revealed', phase_before,
                player_id=player_id, category_index=category_index
            )
        self._emit(changes)
        logger.info(f"[{code}] {player.name} revealed {revealed.category_name}: {revealed.value}")
        return ActionResult.ok(revealed=revealed, phase=room.phase)

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def submit_vote(self, code: str, player_id: str, target_id: Optional[str]) -> ActionResult:
        """Cast one ballot; ``target_id`` of None skips."""
        if target_id == SKIP:
            target_id = None

        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            checked = validate_ballot(room, player_id, target_id)
            if not checked:
                return checked

            player = room.players[player_id]
            player.has_voted = True
            player.vote_target = target_id
            room.votes[player_id] = target_id if target_id is not None else SKIP

            phase_before = room.phase
            all_voted = self._all_ballots_in(room)
            if all_voted:
                self._schedule_tally(room)
            changes = self._commit(room, 'vote_cast', phase_before, player_id=player_id)
        self._emit(changes)
        logger.info(f"[{code}] {player.name} voted" + (" (all ballots in)" if all_voted else ""))
        return ActionResult.ok(all_voted=all_voted, phase=room.phase)

    def _all_ballots_in(self, room: RoomState) -> bool:
        # Bound players cannot vote and leavers never will, so neither is waited for
        return all(
            p.has_voted for p in room.acting_players() if p.id not in room.blocked_votes
        )

    def _schedule_tally(self, room: RoomState) -> None:
        """Tally now or after the configured delay; caller holds the room lock."""
        if self.rules.tally_delay <= 0:
            self._close_voting(room)
            return
        self._cancel_timer(room)
        timer = threading.Timer(self.rules.tally_delay, self._on_tally_timer, args=(room.code,))
        timer.daemon = True
        room.pending_timer = timer
        timer.start()

    def _on_tally_timer(self, code: str) -> None:
        timer = threading.current_thread()
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            # Cancelled, superseded, or the room is gone
            if room is None or room.pending_timer is not timer:
                return
            room.pending_timer = None
            if room.phase != PHASE_VOTING:
                return
            phase_before = room.phase
            self._close_voting(room)
            changes = self._commit(room, 'votes_tallied', phase_before)
        self._emit(changes)

    def _cancel_timer(self, room: RoomState) -> None:
        if room.pending_timer is not None:
            room.pending_timer.cancel()
            room.pending_timer = None

    def _close_voting(self, room: RoomState) -> None:
        """Tally and move to round_end as one step; caller holds the room lock."""
        tally_votes(room)
        self._enter_phase(room, PHASE_ROUND_END)

    # ------------------------------------------------------------------
    # Abilities
    # ------------------------------------------------------------------

    def use_ability(
        self,
        code: str,
        player_id: str,
        ability_id: str,
        target_id: Optional[str] = None
    ) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            checked = validate_usage(room, player_id, ability_id, target_id)
            if not checked:
                return checked

            phase_before = room.phase
            result = apply_effect(room, player_id, checked.data['ability'], target_id)
            if not result:
                return result
            activation = result.data['activation']
            if room.phase == PHASE_VOTING and room.pending_timer is None and self._all_ballots_in(room):
                self._schedule_tally(room)
            changes = self._commit(
                room, 'ability_used', phase_before,
                player_id=player_id,
                ability_name=activation.ability_name,
                target_id=target_id,
            )
        self._emit(changes)
        return result

    # ------------------------------------------------------------------
    # Round resolution
    # ------------------------------------------------------------------

    def next_round(self, code: str, caller_id: str) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            denied = self._check_host(room, caller_id)
            if denied:
                return denied
            if room.phase != PHASE_ROUND_END:
                return ActionResult.error(INVALID_PHASE, "Not the end of a round")

            phase_before = room.phase
            result = room.last_vote_result
            victim = result.eliminated_id if result else None
            eliminated_id = None
            resurrected = False
            if victim is not None:
                if trigger_resurrect(room, victim):
                    resurrected = True
                elif victim not in room.eliminated_players:
                    room.eliminated_players.append(victim)
                    eliminated_id = victim
                    logger.info(f"[{code}] {room.players[victim].name} eliminated in round {room.round}")

            room.round_history.append(RoundHistory(
                round=room.round,
                eliminated_player_id=eliminated_id,
                revealed_characteristics=[
                    r for r in room.revealed_characteristics if r.round == room.round
                ],
                skipped=victim is None,
            ))

            if room.remaining_players() <= room.target_survivors:
                self._complete(room)
            else:
                room.round += 1
                room.clear_overlays()
                room.votes.clear()
                room.last_vote_result = None
                for player in room.active_players():
                    player.has_voted = False
                    player.vote_target = None
                self._enter_phase(room, PHASE_REVEAL)

            changes = self._commit(
                room, 'round_resolved', phase_before,
                eliminated_id=eliminated_id, resurrected=resurrected
            )
        self._emit(changes)
        return ActionResult.ok(
            eliminated_id=eliminated_id,
            resurrected_id=victim if resurrected else None,
            game_ended=room.game_ended,
            round=room.round,
        )

    def _complete(self, room: RoomState) -> None:
        """End the game and disclose every remaining hidden category."""
        room.game_ended = True
        for character in room.characters.values():
            for characteristic in character.categories():
                characteristic.revealed = True
        self._enter_phase(room, PHASE_COMPLETE)
        logger.info(
            f"[{room.code}] Game complete after {room.round} rounds, "
            f"{room.remaining_players()} survivors"
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def get_projection(self, code: str, viewer_id: Optional[str] = None) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            return ActionResult.ok(state=sanitize_state(room, viewer_id))

    def get_own_character(self, code: str, player_id: str) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            if player_id not in room.players:
                return ActionResult.error(NOT_FOUND, "Player not found")
            character = room.characters.get(player_id)
            if character is None:
                return ActionResult.error(INVALID_PHASE, "Game has not started")
            return ActionResult.ok(character=serialize_character(character))

    def get_own_abilities(self, code: str, player_id: str) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            if player_id not in room.players:
                return ActionResult.error(NOT_FOUND, "Player not found")
            return ActionResult.ok(abilities=[
                serialize_ability(a) for a in room.active_abilities.get(player_id, [])
            ])

    def get_game_stats(self, code: str) -> ActionResult:
        with self.directory.lock_for(code):
            room = self.directory.get(code)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            if not room.game_ended:
                return ActionResult.error(INVALID_PHASE, "Game has not ended")
            strike_team = room.active_player_ids()
            return ActionResult.ok(
                total_players=len(room.players),
                total_rounds=room.round,
                eliminated_players=list(room.eliminated_players),
                strike_team=strike_team,
                casualties=len(room.eliminated_players),
                mission=room.selected_mission.name if room.selected_mission else None,
                epilogue=room.epilogue,
            )

    # ------------------------------------------------------------------
    # Epilogue
    # ------------------------------------------------------------------

    def _build_summary(self, room: RoomState) -> MissionSummary:
        elimination_rounds = {
            h.eliminated_player_id: h.round for h in room.round_history if h.eliminated_player_id
        }
        return MissionSummary(
            room_code=room.code,
            mission=room.selected_mission,
            survivors=[
                (p.name, room.characters[p.id]) for p in room.active_players()
            ],
            eliminated=[
                (room.players[pid].name, room.characters[pid], elimination_rounds.get(pid, 0))
                for pid in room.eliminated_players
            ],
            total_rounds=room.round,
            consecutive_skips=room.consecutive_skips,
        )

    def generate_epilogue(
        self,
        code: str,
        caller_id: str,
        generator: Optional[EpilogueGenerator] = None
    ) -> ActionResult:
        """
        Produce the mission epilogue once per room and cache it.

        The slow LLM call runs outside the room lock. A per-room generation
        lock makes concurrent requests wait for the first one and then return
        its cached result. A failed generation caches nothing.
        """
        with self._epilogue_lock_for(code):
            with self.directory.lock_for(code):
                room = self.directory.get(code)
                if not room:
                    return ActionResult.error(NOT_FOUND, "Room not found")
                denied = self._check_host(room, caller_id)
                if denied:
                    return denied
                if room.phase != PHASE_COMPLETE:
                    return ActionResult.error(INVALID_PHASE, "Game is not complete")
                if room.epilogue is not None:
                    return ActionResult.ok(epilogue=room.epilogue, cached=True)
                room.is_generating_epilogue = True
                summary = self._build_summary(room)
                changes = self._commit(room, 'epilogue_started', room.phase)
            self._emit(changes)

            generator = generator or EpilogueGenerator()
            try:
                epilogue = generator.generate(summary)
            except NarrativeError as e:
                logger.error(f"[{code}] {e.message}")
                epilogue = None
                error = e
            else:
                error = None

            with self.directory.lock_for(code):
                room = self.directory.get(code)
                if room is None:
                    return ActionResult.error(NOT_FOUND, "Room not found")
                room.is_generating_epilogue = False
                if epilogue is not None:
                    room.epilogue = epilogue
                changes = self._commit(room, 'epilogue_ready', room.phase, success=error is None)
            self._emit(changes)

        if error is not None:
            return ActionResult.error(INTERNAL_ERROR, error.message)
        return ActionResult.ok(epilogue=epilogue, cached=False)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def delete_room(self, code: str) -> bool:
        with self.directory.lock_for(code):
            deleted = self.directory.delete(code)
        self._drop_epilogue_lock(code)
        if deleted:
            self._emit([StateChange(code, 'room_deleted')])
        return deleted

    def sweep_idle_rooms(self, now: Optional[float] = None) -> List[str]:
        """Delete rooms with no connected players past the idle window."""
        now = time.time() if now is None else now
        removed = []
        for code in self.directory.codes():
            with self.directory.lock_for(code):
                room = self.directory.get(code)
                # Gone already, or reclaimed since the listing
                if room is None or not self.directory.is_idle(room, now):
                    continue
                self.directory.delete(code)
            self._drop_epilogue_lock(code)
            removed.append(code)
        if removed:
            logger.info(f"Swept {len(removed)} idle rooms: {removed}")
            self._emit([StateChange(code, 'room_deleted') for code in removed])
        return removed
