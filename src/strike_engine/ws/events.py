"""
WebSocket event models and validation.
"""

import time
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Inbound event types."""
    CREATE_ROOM = "create_room"
    JOIN_ROOM = "join_room"
    REJOIN = "rejoin"
    LEAVE_ROOM = "leave_room"
    SELECT_MISSION = "select_mission"
    SET_TARGET_SURVIVORS = "set_target_survivors"
    START_GAME = "start_game"
    ADVANCE_PHASE = "advance_phase"
    TOGGLE_READY = "toggle_ready"
    REVEAL = "reveal"
    VOTE = "vote"
    USE_ABILITY = "use_ability"
    NEXT_ROUND = "next_round"
    REQUEST_STATE = "request_state"
    GENERATE_EPILOGUE = "generate_epilogue"


class OutboundEventType(str, Enum):
    """Outbound event types."""
    ACK = "ack"
    GAME_STATE = "game_state"
    CHARACTER = "character"
    ABILITIES = "abilities"
    ABILITY_USED = "ability_used"
    ROOM_CLOSED = "room_closed"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Error codes for client events: engine reason codes plus transport failures."""
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_PHASE = "invalid_phase"
    ALREADY_ACTED = "already_acted"
    INVALID_TARGET = "invalid_target"
    CAPACITY = "capacity"
    ABILITY_UNAVAILABLE = "ability_unavailable"
    INVALID_EVENT = "invalid_event"
    NOT_IN_ROOM = "not_in_room"
    INTERNAL = "internal"


# Inbound event models
class BaseEvent(BaseModel):
    """Base event model."""
    type: EventType


class CreateRoomEvent(BaseEvent):
    type: EventType = EventType.CREATE_ROOM
    name: str = Field(..., min_length=1, max_length=30)


class JoinRoomEvent(BaseEvent):
    type: EventType = EventType.JOIN_ROOM
    room_code: str = Field(..., min_length=1, max_length=12)
    name: str = Field(..., min_length=1, max_length=30)


class RejoinEvent(BaseEvent):
    """Reattach a new socket to a player already in the room."""
    type: EventType = EventType.REJOIN
    room_code: str = Field(..., min_length=1, max_length=12)
    player_id: str = Field(..., min_length=1)
    rejoin_token: str = Field(..., min_length=1)


class LeaveRoomEvent(BaseEvent):
    type: EventType = EventType.LEAVE_ROOM


class SelectMissionEvent(BaseEvent):
    type: EventType = EventType.SELECT_MISSION
    mission_id: str = Field(..., min_length=1)


class SetTargetSurvivorsEvent(BaseEvent):
    type: EventType = EventType.SET_TARGET_SURVIVORS
    target_survivors: int = Field(..., ge=1)


class StartGameEvent(BaseEvent):
    type: EventType = EventType.START_GAME


class AdvancePhaseEvent(BaseEvent):
    type: EventType = EventType.ADVANCE_PHASE


class ToggleReadyEvent(BaseEvent):
    type: EventType = EventType.TOGGLE_READY


class RevealEvent(BaseEvent):
    type: EventType = EventType.REVEAL
    category_index: int = Field(..., ge=0, le=8)


class VoteEvent(BaseEvent):
    """Vote event; a null target is a skip."""
    type: EventType = EventType.VOTE
    target_id: Optional[str] = None


class UseAbilityEvent(BaseEvent):
    type: EventType = EventType.USE_ABILITY
    ability_id: str = Field(..., min_length=1)
    target_id: Optional[str] = None


class NextRoundEvent(BaseEvent):
    type: EventType = EventType.NEXT_ROUND


class RequestStateEvent(BaseEvent):
    type: EventType = EventType.REQUEST_STATE


class GenerateEpilogueEvent(BaseEvent):
    type: EventType = EventType.GENERATE_EPILOGUE


# Union type for all inbound events
InboundEvent = Union[
    CreateRoomEvent,
    JoinRoomEvent,
    RejoinEvent,
    LeaveRoomEvent,
    SelectMissionEvent,
    SetTargetSurvivorsEvent,
    StartGameEvent,
    AdvancePhaseEvent,
    ToggleReadyEvent,
    RevealEvent,
    VoteEvent,
    UseAbilityEvent,
    NextRoundEvent,
    RequestStateEvent,
    GenerateEpilogueEvent,
]

EVENT_MODELS = {
    EventType.CREATE_ROOM: CreateRoomEvent,
    EventType.JOIN_ROOM: JoinRoomEvent,
    EventType.REJOIN: RejoinEvent,
    EventType.LEAVE_ROOM: LeaveRoomEvent,
    EventType.SELECT_MISSION: SelectMissionEvent,
    EventType.SET_TARGET_SURVIVORS: SetTargetSurvivorsEvent,
    EventType.START_GAME: StartGameEvent,
    EventType.ADVANCE_PHASE: AdvancePhaseEvent,
    EventType.TOGGLE_READY: ToggleReadyEvent,
    EventType.REVEAL: RevealEvent,
    EventType.VOTE: VoteEvent,
    EventType.USE_ABILITY: UseAbilityEvent,
    EventType.NEXT_ROUND: NextRoundEvent,
    EventType.REQUEST_STATE: RequestStateEvent,
    EventType.GENERATE_EPILOGUE: GenerateEpilogueEvent,
}


# Outbound event models
class AckEvent(BaseModel):
    """Confirms a request; ``data`` is visible to the requester only."""
    type: OutboundEventType = OutboundEventType.ACK
    event: EventType
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float


class GameStateEvent(BaseModel):
    type: OutboundEventType = OutboundEventType.GAME_STATE
    state: Dict[str, Any]
    timestamp: float


class CharacterEvent(BaseModel):
    type: OutboundEventType = OutboundEventType.CHARACTER
    character: List[Dict[str, Any]]
    timestamp: float


class AbilitiesEvent(BaseModel):
    type: OutboundEventType = OutboundEventType.ABILITIES
    abilities: List[Dict[str, Any]]
    timestamp: float


class AbilityUsedEvent(BaseModel):
    """Public notice of an activation, without any private disclosure."""
    type: OutboundEventType = OutboundEventType.ABILITY_USED
    player_id: str
    player_name: str
    ability_name: str
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    timestamp: float


class RoomClosedEvent(BaseModel):
    type: OutboundEventType = OutboundEventType.ROOM_CLOSED
    room_code: str
    timestamp: float


class ErrorEvent(BaseModel):
    type: OutboundEventType = OutboundEventType.ERROR
    code: ErrorCode
    message: str
    timestamp: float


OutboundEvent = Union[
    AckEvent,
    GameStateEvent,
    CharacterEvent,
    AbilitiesEvent,
    AbilityUsedEvent,
    RoomClosedEvent,
    ErrorEvent,
]


def parse_inbound_event(data: Dict[str, Any]) -> InboundEvent:
    """
    Parse raw event data into appropriate event model.

    Args:
        data: Raw event data from WebSocket

    Returns:
        Parsed event model

    Raises:
        ValueError: If event type is invalid or data is malformed
    """
    if not isinstance(data, dict):
        raise ValueError("Event must be a JSON object")

    event_type = data.get("type")
    if not event_type:
        raise ValueError("Missing event type")

    try:
        event_type = EventType(event_type)
    except ValueError:
        raise ValueError(f"Invalid event type: {event_type}")

    try:
        return EVENT_MODELS[event_type](**data)
    except Exception as e:
        raise ValueError(f"Invalid event data: {str(e)}")


def create_ack_event(event: EventType, data: Optional[Dict[str, Any]] = None) -> AckEvent:
    return AckEvent(event=event, data=data or {}, timestamp=time.time())


def create_game_state_event(state: Dict[str, Any]) -> GameStateEvent:
    return GameStateEvent(state=state, timestamp=time.time())


def create_character_event(character: List[Dict[str, Any]]) -> CharacterEvent:
    return CharacterEvent(character=character, timestamp=time.time())


def create_abilities_event(abilities: List[Dict[str, Any]]) -> AbilitiesEvent:
    return AbilitiesEvent(abilities=abilities, timestamp=time.time())


def create_ability_used_event(activation) -> AbilityUsedEvent:
    """Create the public notice for an AbilityActivation."""
    return AbilityUsedEvent(
        player_id=activation.player_id,
        player_name=activation.player_name,
        ability_name=activation.ability_name,
        target_id=activation.target_id,
        target_name=activation.target_name,
        timestamp=time.time()
    )


def create_room_closed_event(room_code: str) -> RoomClosedEvent:
    return RoomClosedEvent(room_code=room_code, timestamp=time.time())


def create_error_event(code: Union[ErrorCode, str], message: str) -> ErrorEvent:
    """Create an error event."""
    return ErrorEvent(code=ErrorCode(code), message=message, timestamp=time.time())
