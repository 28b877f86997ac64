"""
WebSocket connection handling for the strike team game.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

import orjson
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from ..engine import StateChange, StrikeEngine
from ..errors import ActionResult
from ..narrative import EpilogueGenerator
from .events import (
    ErrorCode, EventType, InboundEvent, create_abilities_event, create_ability_used_event,
    create_ack_event, create_character_event, create_error_event, create_game_state_event,
    create_room_closed_event, parse_inbound_event
)

logger = logging.getLogger(__name__)

# Events a socket may send before it is attached to a room
ROOMLESS_EVENTS = (EventType.CREATE_ROOM, EventType.JOIN_ROOM, EventType.REJOIN)


class ConnectionManager:
    """Tracks which socket belongs to which player in which room."""

    def __init__(self):
        self.room_connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self.connection_players: Dict[WebSocket, str] = {}
        self.connection_rooms: Dict[WebSocket, str] = {}

    def connect(self, websocket: WebSocket, room_code: str, player_id: str):
        """Attach an accepted socket to a room."""
        self.disconnect(websocket)
        self.room_connections[room_code].add(websocket)
        self.connection_players[websocket] = player_id
        self.connection_rooms[websocket] = room_code
        logger.info(f"Player {player_id} connected to room {room_code}")

    def disconnect(self, websocket: WebSocket) -> Tuple[Optional[str], Optional[str]]:
        """Detach a socket from its room."""
        player_id = self.connection_players.pop(websocket, None)
        room_code = self.connection_rooms.pop(websocket, None)

        if room_code and websocket in self.room_connections.get(room_code, ()):
            self.room_connections[room_code].discard(websocket)
            # Clean up empty room connections
            if not self.room_connections[room_code]:
                del self.room_connections[room_code]

        if player_id:
            logger.info(f"Player {player_id} disconnected from room {room_code}")
        return player_id, room_code

    def identity(self, websocket: WebSocket) -> Tuple[Optional[str], Optional[str]]:
        return self.connection_rooms.get(websocket), self.connection_players.get(websocket)

    def connections(self, room_code: str) -> List[WebSocket]:
        return list(self.room_connections.get(room_code, ()))

    def drop_room(self, room_code: str) -> List[WebSocket]:
        sockets = self.connections(room_code)
        for websocket in sockets:
            self.connection_players.pop(websocket, None)
            self.connection_rooms.pop(websocket, None)
        self.room_connections.pop(room_code, None)
        return sockets

    def count(self) -> int:
        return sum(len(conns) for conns in self.room_connections.values())


async def send_event(websocket: WebSocket, event: BaseModel) -> bool:
    try:
        await websocket.send_text(orjson.dumps(event.model_dump()).decode())
        return True
    except Exception as e:
        logger.error(f"Error sending {event.type} event: {e}")
        return False


class GameSocketManager:
    """Routes inbound socket events to the engine and fans state back out."""

    def __init__(self, engine: StrikeEngine, epilogue_generator: Optional[EpilogueGenerator] = None):
        self.engine = engine
        self.epilogue_generator = epilogue_generator or EpilogueGenerator()
        self.connections = ConnectionManager()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.handlers = {
            EventType.CREATE_ROOM: self.handle_create_room,
            EventType.JOIN_ROOM: self.handle_join_room,
            EventType.REJOIN: self.handle_rejoin,
            EventType.LEAVE_ROOM: self.handle_leave_room,
            EventType.SELECT_MISSION: self.handle_select_mission,
            EventType.SET_TARGET_SURVIVORS: self.handle_set_target_survivors,
            EventType.START_GAME: self.handle_start_game,
            EventType.ADVANCE_PHASE: self.handle_advance_phase,
            EventType.TOGGLE_READY: self.handle_toggle_ready,
            EventType.REVEAL: self.handle_reveal,
            EventType.VOTE: self.handle_vote,
            EventType.USE_ABILITY: self.handle_use_ability,
            EventType.NEXT_ROUND: self.handle_next_round,
            EventType.REQUEST_STATE: self.handle_request_state,
            EventType.GENERATE_EPILOGUE: self.handle_generate_epilogue,
        }
        engine.add_listener(self.on_state_change)

    # ------------------------------------------------------------------
    # Engine notifications
    # ------------------------------------------------------------------

    def on_state_change(self, change: StateChange):
        """Engine listener; may be called from a timer or worker thread."""
        if self.loop is None or self.loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self.loop.create_task(self.handle_state_change(change))
        else:
            asyncio.run_coroutine_threadsafe(self.handle_state_change(change), self.loop)

    async def handle_state_change(self, change: StateChange):
        if change.kind == 'room_deleted':
            closed = create_room_closed_event(change.room_code)
            for websocket in self.connections.drop_room(change.room_code):
                await send_event(websocket, closed)
            return
        await self.broadcast_state(change.room_code)

    async def broadcast_state(self, room_code: str):
        """Send each connection in a room its own projection."""
        for websocket in self.connections.connections(room_code):
            _, player_id = self.connections.identity(websocket)
            result = self.engine.get_projection(room_code, player_id)
            if not result:
                return
            if not await send_event(websocket, create_game_state_event(result.data['state'])):
                self.connections.disconnect(websocket)

    async def send_private_views(self, room_code: str):
        """Send every connected player their own card and abilities."""
        for websocket in self.connections.connections(room_code):
            _, player_id = self.connections.identity(websocket)
            await self.send_own_views(websocket, room_code, player_id)

    async def send_own_views(self, websocket: WebSocket, room_code: str, player_id: str):
        character = self.engine.get_own_character(room_code, player_id)
        if character:
            await send_event(websocket, create_character_event(character.data['character']))
        abilities = self.engine.get_own_abilities(room_code, player_id)
        if abilities:
            await send_event(websocket, create_abilities_event(abilities.data['abilities']))

    # ------------------------------------------------------------------
    # Socket loop
    # ------------------------------------------------------------------

    async def handle_websocket(self, websocket: WebSocket):
        """Main WebSocket loop."""
        await websocket.accept()
        self.loop = asyncio.get_running_loop()
        logger.info("WebSocket connection accepted")

        try:
            while True:
                raw_data = await websocket.receive_text()
                try:
                    event = parse_inbound_event(orjson.loads(raw_data))
                    await self.handle_event(websocket, event)
                except ValueError as e:
                    await send_event(websocket, create_error_event(ErrorCode.INVALID_EVENT, str(e)))
                except Exception as e:
                    logger.error(f"Error handling event: {e}")
                    await send_event(
                        websocket, create_error_event(ErrorCode.INTERNAL, "Internal server error")
                    )
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected")
        finally:
            player_id, room_code = self.connections.disconnect(websocket)
            if player_id and room_code:
                self.engine.set_connected(room_code, player_id, False)

    async def handle_event(self, websocket: WebSocket, event: InboundEvent):
        if event.type in ROOMLESS_EVENTS:
            await self.handlers[event.type](websocket, event)
            return

        room_code, player_id = self.connections.identity(websocket)
        if not room_code or not player_id:
            await send_event(websocket, create_error_event(ErrorCode.NOT_IN_ROOM, "Not in a room"))
            return
        await self.handlers[event.type](websocket, event, room_code, player_id)

    async def respond(self, websocket: WebSocket, event_type: EventType, result: ActionResult, **data) -> bool:
        """Ack a successful result or report its reason code."""
        if not result:
            await send_event(websocket, create_error_event(result.error_code, result.error_message))
            return False
        await send_event(websocket, create_ack_event(event_type, data or result.data))
        return True

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_create_room(self, websocket: WebSocket, event):
        result = self.engine.create_room(event.name)
        if result:
            self.connections.connect(websocket, result.data['room_code'], result.data['player_id'])
        await self.respond(websocket, event.type, result)

    async def handle_join_room(self, websocket: WebSocket, event):
        room_code = event.room_code.upper()
        result = self.engine.join_room(room_code, event.name)
        if result:
            self.connections.connect(websocket, room_code, result.data['player_id'])
        await self.respond(websocket, event.type, result)

    async def handle_rejoin(self, websocket: WebSocket, event):
        room_code = event.room_code.upper()
        result = self.engine.rejoin_room(room_code, event.player_id, event.rejoin_token)
        if result:
            self.connections.connect(websocket, room_code, event.player_id)
        if await self.respond(websocket, event.type, result):
            await self.send_own_views(websocket, room_code, event.player_id)

    async def handle_leave_room(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.leave_room(room_code, player_id)
        if result:
            self.connections.disconnect(websocket)
        await self.respond(websocket, event.type, result)

    async def handle_select_mission(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.select_mission(room_code, player_id, event.mission_id)
        await self.respond(websocket, event.type, result)

    async def handle_set_target_survivors(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.set_target_survivors(room_code, player_id, event.target_survivors)
        await self.respond(websocket, event.type, result)

    async def handle_start_game(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.start_game(room_code, player_id)
        if await self.respond(websocket, event.type, result):
            await self.send_private_views(room_code)

    async def handle_advance_phase(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.advance_phase(room_code, player_id)
        await self.respond(websocket, event.type, result)

    async def handle_toggle_ready(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.toggle_ready(room_code, player_id)
        await self.respond(websocket, event.type, result)

    async def handle_reveal(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.reveal_characteristic(room_code, player_id, event.category_index)
        if await self.respond(websocket, event.type, result):
            await self.send_own_views(websocket, room_code, player_id)

    async def handle_vote(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.submit_vote(room_code, player_id, event.target_id)
        await self.respond(websocket, event.type, result)

    async def handle_use_ability(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.use_ability(room_code, player_id, event.ability_id, event.target_id)
        if not await self.respond(websocket, event.type, result):
            return
        notice = create_ability_used_event(result.data['activation'])
        for connection in self.connections.connections(room_code):
            await send_event(connection, notice)
        # Heal and suppression change cards, so refresh everyone's private view
        await self.send_private_views(room_code)

    async def handle_next_round(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.next_round(room_code, player_id)
        if await self.respond(websocket, event.type, result):
            await self.send_private_views(room_code)

    async def handle_request_state(self, websocket: WebSocket, event, room_code: str, player_id: str):
        result = self.engine.get_projection(room_code, player_id)
        if not result:
            await send_event(websocket, create_error_event(result.error_code, result.error_message))
            return
        await send_event(websocket, create_game_state_event(result.data['state']))
        await self.send_own_views(websocket, room_code, player_id)

    async def handle_generate_epilogue(self, websocket: WebSocket, event, room_code: str, player_id: str):
        # The LLM call blocks, so keep it off the event loop
        result = await asyncio.to_thread(
            self.engine.generate_epilogue, room_code, player_id, self.epilogue_generator
        )
        await self.respond(websocket, event.type, result)
