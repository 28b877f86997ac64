"""FastAPI application for the strike team game backend"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .engine import StrikeEngine
from .errors import (
    ALREADY_ACTED, CAPACITY, FORBIDDEN, INVALID_PHASE, INVALID_TARGET, NOT_FOUND, ActionResult
)
from .missions import MissionStore
from .narrative import EpilogueGenerator
from .rules import RuleConfig
from .ws.server import GameSocketManager

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DIFFICULTY_PATTERN = "^(Easy|Medium|Hard|Extreme)$"

STATUS_CODES = {
    NOT_FOUND: 404,
    FORBIDDEN: 403,
    INVALID_PHASE: 409,
    ALREADY_ACTED: 409,
    INVALID_TARGET: 422,
    CAPACITY: 422,
}


class MissionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1)
    threat: str = Field(..., min_length=1)
    objectives: List[str] = Field(default_factory=list)
    danger_factors: List[str] = Field(default_factory=list)
    difficulty: str = Field(default="Medium", pattern=DIFFICULTY_PATTERN)
    created_by: Optional[str] = None


class MissionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    threat: Optional[str] = None
    objectives: Optional[List[str]] = None
    danger_factors: Optional[List[str]] = None
    difficulty: Optional[str] = Field(default=None, pattern=DIFFICULTY_PATTERN)


def raise_for_result(result: ActionResult):
    """Map a failed engine result onto an HTTP error."""
    if not result:
        raise HTTPException(
            status_code=STATUS_CODES.get(result.error_code, 500),
            detail={"code": result.error_code, "message": result.error_message}
        )


def create_app(
    engine: Optional[StrikeEngine] = None,
    missions: Optional[MissionStore] = None,
    epilogue_generator: Optional[EpilogueGenerator] = None,
    admin_password: Optional[str] = None
) -> FastAPI:
    rules = engine.rules if engine else RuleConfig.from_env()
    engine = engine or StrikeEngine(rules=rules)
    admin_password = admin_password or os.getenv("STRIKE_ADMIN_PASSWORD", "admin123")
    socket_manager = GameSocketManager(engine, epilogue_generator)

    async def sweep_loop():
        while True:
            await asyncio.sleep(engine.rules.sweep_interval)
            try:
                engine.sweep_idle_rooms()
            except Exception as e:
                logger.error(f"Idle room sweep failed: {e}")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.missions is None:
            app.state.missions = MissionStore(os.getenv("STRIKE_MISSIONS_DB", "missions.db"))
        engine.missions = app.state.missions
        sweeper = asyncio.create_task(sweep_loop())
        logger.info(f"Strike engine ready: {len(app.state.missions.default_missions)} built-in missions")
        try:
            yield
        finally:
            sweeper.cancel()

    app = FastAPI(title="Strike Team Game API", version="1.0.0", lifespan=lifespan)
    app.state.engine = engine
    app.state.missions = missions
    app.state.socket_manager = socket_manager
    engine.missions = missions

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("STRIKE_CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_missions() -> MissionStore:
        return app.state.missions

    def verify_admin(x_admin_password: Optional[str] = Header(default=None)):
        if x_admin_password != admin_password:
            raise HTTPException(status_code=401, detail="Invalid admin password")

    @app.get("/")
    async def root():
        return {"message": "Strike Team Game API", "version": "1.0.0"}

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "rooms": len(engine.directory),
            "connections": socket_manager.connections.count(),
        }

    @app.get("/api/missions")
    async def list_missions(
        difficulty: Optional[List[str]] = Query(default=None),
        is_custom: Optional[bool] = None,
        store: MissionStore = Depends(get_missions)
    ):
        return [asdict(m) for m in store.list_missions(difficulty, is_custom)]

    @app.get("/api/missions/{mission_id}")
    async def get_mission(mission_id: str, store: MissionStore = Depends(get_missions)):
        mission = store.get_mission(mission_id)
        if mission is None:
            raise HTTPException(status_code=404, detail="Mission not found")
        return asdict(mission)

    @app.get("/api/missions/{mission_id}/briefing")
    async def get_briefing(mission_id: str, store: MissionStore = Depends(get_missions)):
        briefing = store.get_briefing(mission_id)
        if briefing is None:
            raise HTTPException(status_code=404, detail="Mission not found")
        return asdict(briefing)

    @app.get("/api/rooms/{room_code}")
    async def get_room(room_code: str):
        result = engine.get_projection(room_code.upper())
        raise_for_result(result)
        return result.data["state"]

    @app.get("/api/rooms/{room_code}/stats")
    async def get_room_stats(room_code: str):
        result = engine.get_game_stats(room_code.upper())
        raise_for_result(result)
        return result.data

    @app.post("/api/admin/missions", status_code=201, dependencies=[Depends(verify_admin)])
    async def create_mission(body: MissionCreate, store: MissionStore = Depends(get_missions)):
        return asdict(store.create_mission(body.model_dump()))

    @app.put("/api/admin/missions/{mission_id}", dependencies=[Depends(verify_admin)])
    async def update_mission(
        mission_id: str,
        body: MissionUpdate,
        store: MissionStore = Depends(get_missions)
    ):
        mission = store.update_mission(mission_id, body.model_dump(exclude_none=True))
        if mission is None:
            raise HTTPException(status_code=404, detail="Custom mission not found")
        return asdict(mission)

    @app.delete("/api/admin/missions/{mission_id}", dependencies=[Depends(verify_admin)])
    async def delete_mission(mission_id: str, store: MissionStore = Depends(get_missions)):
        if not store.delete_mission(mission_id):
            raise HTTPException(status_code=404, detail="Custom mission not found")
        return {"deleted": mission_id}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await socket_manager.handle_websocket(websocket)

    return app


app = create_app()
